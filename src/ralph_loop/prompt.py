"""Context construction for each iteration."""

from __future__ import annotations

from .models import AgentResult

COMPLETION_SIGNAL = "<promise>COMPLETE</promise>"
MAX_PROGRESS_SIZE = 50_000
PROGRESS_TAIL_SIZE = 20_000

DEFAULT_TASK = (
    "Pick the highest-priority unfinished item from the PRD and complete it. "
    "Work on one item only, verify it, and commit your changes."
)


def is_backlog_complete(output: str) -> bool:
    return COMPLETION_SIGNAL in output


def failure_note(prev: AgentResult | None) -> str:
    """Explain how the previous attempt ended, for the next one to adjust."""
    if prev is None or prev.success or prev.cancelled:
        return ""
    if prev.timed_out:
        return (
            "The previous attempt hit the hard timeout. "
            "It may have been stuck in a long-running operation. "
            "Break the work into smaller steps."
        )
    if prev.idle_timed_out:
        return (
            "The previous attempt timed out due to inactivity. "
            "Prefer smaller, faster operations and avoid long-running commands."
        )
    if prev.exit_code is not None and prev.exit_code != 0:
        return (
            f"The previous attempt crashed with exit code {prev.exit_code}. "
            "Check the progress log for what was completed and continue from there."
        )
    return ""


def _trim_progress(progress_text: str) -> str:
    if len(progress_text) <= MAX_PROGRESS_SIZE:
        return progress_text
    return (
        f"[Earlier iterations omitted — showing last "
        f"{PROGRESS_TAIL_SIZE // 1000}K chars]\n\n"
        + progress_text[-PROGRESS_TAIL_SIZE:]
    )


def build_context(
    backlog_text: str,
    progress_text: str,
    task: str = DEFAULT_TASK,
    progress_name: str = "progress.txt",
    previous_failure: str = "",
) -> str:
    parts: list[str] = []

    parts.append("# PRD (Product Requirements Document)")
    parts.append("")
    parts.append(backlog_text.rstrip())
    parts.append("")
    parts.append("---")
    parts.append("")
    parts.append("# Progress Log")
    parts.append("")
    progress = _trim_progress(progress_text).rstrip()
    parts.append(progress if progress.strip() else "(No progress yet)")
    parts.append("")
    parts.append("---")
    parts.append("")
    if previous_failure:
        parts.append("# Previous Attempt")
        parts.append("")
        parts.append(previous_failure)
        parts.append("")
        parts.append("---")
        parts.append("")
    parts.append("# Task")
    parts.append("")
    parts.append(task)
    parts.append("")
    parts.append(
        f"After completing work, update the {progress_name} file with what you accomplished."
    )
    parts.append(
        f"If all tasks in the PRD are complete, include {COMPLETION_SIGNAL} in your response."
    )

    return "\n".join(parts)
