"""Backlog (PRD.md) parsing — actionable-item detection and task progress."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigurationError

# "- task", "* task", "1. task", "[ ] task"; not "- ...", not bare bullets
TASK_LINE = re.compile(r"^\s*(?:[-*]|\d+\.|\[ \])\s+(?!\.\.\.)(?!\s*$).+")
CHECKBOX_LINE = re.compile(r"^\s*(?:[-*]\s+)?\[([xX ])\]\s+(.+)$")
CHECKMARK_LINE = re.compile(r"^\s*(?:[-*]\s+)?✅\s+(.+)$")
PHASE_LINE = re.compile(r"^###\s+(.+)$")


@dataclass
class BacklogTask:
    text: str
    completed: bool
    phase: str | None = None


def _read(path: Path) -> str | None:
    try:
        return path.read_text()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ConfigurationError(f"Failed to read backlog at {path}: {e}") from e


def has_tasks(path: Path) -> bool:
    """True when the backlog has at least one actionable list item."""
    text = _read(path)
    if text is None:
        return False
    return any(TASK_LINE.match(line) for line in text.splitlines())


def parse_tasks(path: Path) -> list[BacklogTask]:
    text = _read(path)
    if text is None:
        return []

    tasks: list[BacklogTask] = []
    phase: str | None = None
    for line in text.splitlines():
        m = PHASE_LINE.match(line)
        if m:
            phase = m.group(1).strip()
            continue
        m = CHECKBOX_LINE.match(line)
        if m:
            tasks.append(BacklogTask(m.group(2).strip(), m.group(1).lower() == "x", phase))
            continue
        m = CHECKMARK_LINE.match(line)
        if m:
            tasks.append(BacklogTask(m.group(1).strip(), True, phase))
    return tasks


def task_progress(tasks: list[BacklogTask]) -> tuple[int, int]:
    return sum(1 for t in tasks if t.completed), len(tasks)
