"""Iteration log files and end-of-session summary."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .display import fmt_duration, fmt_tokens
from .models import IterationRecord, Session


def write_iteration_log(log_dir: Path, record: IterationRecord, attempt: int) -> Path:
    """Write one attempt's output with a short header block."""
    log_dir.mkdir(parents=True, exist_ok=True)
    path = log_dir / f"iteration-{record.iteration}-{attempt}.log"

    usage = record.usage
    lines = [
        f"# Iteration {record.iteration} (attempt {attempt})",
        f"- Status: {record.status}{'' if record.success else ' (failed)'}",
        f"- Started: {record.started_at}",
        f"- Completed: {record.completed_at}",
        f"- Duration: {fmt_duration(record.duration_seconds)}",
        f"- Cost: ${record.cost_usd:.4f}",
    ]
    if usage is not None:
        lines.append(
            f"- Tokens: {fmt_tokens(usage.input_tokens)} in / "
            f"{fmt_tokens(usage.output_tokens)} out"
        )
    if record.backlog_complete:
        lines.append("- PRD complete")
    if record.error:
        lines.append(f"- Error: {record.error}")
    lines.append("")
    lines.append("---")
    lines.append("")
    lines.append(record.output)

    path.write_text("\n".join(lines))
    return path


@dataclass
class SessionSummary:
    attempts: int
    iterations_completed: int
    successes: int
    failures: int
    duration_seconds: float
    total_cost_usd: float
    input_tokens: int
    output_tokens: int
    cache_read_tokens: int
    cache_creation_tokens: int
    backlog_complete: bool


def summarize_session(session: Session) -> SessionSummary:
    records = session.iterations
    input_tokens = output_tokens = cache_read = cache_write = 0
    for r in records:
        if r.usage is None:
            continue
        input_tokens += r.usage.input_tokens
        output_tokens += r.usage.output_tokens
        cache_read += r.usage.cache_read_tokens or 0
        cache_write += r.usage.cache_creation_tokens or 0

    return SessionSummary(
        attempts=len(records),
        iterations_completed=len({r.iteration for r in records if r.success}),
        successes=sum(1 for r in records if r.success),
        failures=sum(1 for r in records if not r.success),
        duration_seconds=sum(r.duration_seconds for r in records),
        total_cost_usd=session.total_cost_usd,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_read_tokens=cache_read,
        cache_creation_tokens=cache_write,
        backlog_complete=any(r.backlog_complete for r in records),
    )
