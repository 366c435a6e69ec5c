"""Iteration controller — one bounded agent call plus its bookkeeping."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path

from .display import debug_log
from .errors import ConfigurationError, file_not_found_error
from .models import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    AgentResult,
    IterationRecord,
    now_iso,
)
from .prompt import DEFAULT_TASK, build_context, failure_note
from .runner import AgentAdapter

BACKLOG_FILE = "PRD.md"
PROGRESS_FILE = "progress.txt"


class IterationController:
    """Assembles the per-iteration context and calls the adapter exactly once.

    Agent failures and cancellation come back inside the IterationRecord.
    The only exception raised is ConfigurationError, when the backlog is
    missing or unreadable: there is nothing for the agent to act on.
    """

    def __init__(
        self,
        ralph_dir: Path,
        adapter: AgentAdapter,
        task: str = DEFAULT_TASK,
        continuation_token: str | None = None,
        debug: bool = False,
    ) -> None:
        self.ralph_dir = ralph_dir
        self.adapter = adapter
        self.task = task
        self.continuation_token = continuation_token
        self.debug = debug
        self.last_result: AgentResult | None = None

    @property
    def backlog_path(self) -> Path:
        return self.ralph_dir / BACKLOG_FILE

    @property
    def progress_path(self) -> Path:
        return self.ralph_dir / PROGRESS_FILE

    def build_context(self) -> str:
        try:
            backlog_text = self.backlog_path.read_text()
        except FileNotFoundError:
            raise file_not_found_error(
                str(self.backlog_path),
                "Create .ralph/PRD.md with at least one task before starting a run",
            ) from None
        except OSError as e:
            raise ConfigurationError(f"Failed to read PRD.md at {self.backlog_path}: {e}") from e

        try:
            progress_text = self.progress_path.read_text()
        except OSError:
            progress_text = ""

        return build_context(
            backlog_text,
            progress_text,
            self.task,
            PROGRESS_FILE,
            failure_note(self.last_result),
        )

    async def run(self, iteration: int, cancel: asyncio.Event | None = None) -> IterationRecord:
        started_at = now_iso()
        start = time.monotonic()

        context = self.build_context()
        debug_log(f"Iteration {iteration} context: {len(context)} chars", self.debug)

        try:
            result = await self.adapter.invoke(context, self.continuation_token, cancel)
        except Exception as e:
            result = AgentResult(success=False, error=f"{e.__class__.__name__}: {e}")
        self.last_result = result
        debug_log(
            f"Iteration {iteration}: exit={result.exit_code} turns={result.num_turns} "
            f"timed_out={result.timed_out} idle_timed_out={result.idle_timed_out}",
            self.debug,
        )

        if result.continuation_token:
            self.continuation_token = result.continuation_token

        if result.cancelled:
            status = STATUS_CANCELLED
        elif result.success:
            status = STATUS_COMPLETED
        else:
            status = STATUS_FAILED

        return IterationRecord(
            iteration=iteration,
            started_at=started_at,
            completed_at=now_iso(),
            duration_seconds=round(time.monotonic() - start, 1),
            success=result.success and not result.cancelled,
            output=result.output,
            status=status,
            usage=result.usage,
            backlog_complete=result.success and result.backlog_complete,
            error=result.error,
        )
