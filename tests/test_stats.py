"""Tests for iteration logs and the session summary."""

from ralph_loop.models import IterationRecord, Session, Usage
from ralph_loop.stats import summarize_session, write_iteration_log


def record(iteration, success=True, usage=None, complete=False, error=None):
    return IterationRecord(
        iteration=iteration,
        started_at="2026-01-01T00:00:00.000Z",
        completed_at="2026-01-01T00:01:30.000Z",
        duration_seconds=90.0,
        success=success,
        output="agent output here",
        status="completed" if success else "failed",
        usage=usage,
        backlog_complete=complete,
        error=error,
    )


def test_write_iteration_log(tmp_path):
    r = record(2, success=False, usage=Usage(2000, 500, 0.05), error="claude exited with code 1")
    path = write_iteration_log(tmp_path / "logs", r, attempt=3)
    assert path.name == "iteration-2-3.log"
    text = path.read_text()
    assert "# Iteration 2 (attempt 3)" in text
    assert "(failed)" in text
    assert "Duration: 1m30s" in text
    assert "2K in / 500 out" in text
    assert "Error: claude exited with code 1" in text
    assert text.endswith("agent output here")


def test_summarize_session():
    records = [
        record(1, usage=Usage(100, 10, 0.1, cache_read_tokens=1000)),
        record(2, success=False, usage=Usage(50, 5, 0.05)),
        record(2, usage=Usage(100, 10, 0.1, cache_creation_tokens=20), complete=True),
        record(3, success=False),
    ]
    session = Session(
        id="s", started_at="t", start_commit="c", branch="main",
        iterations=records, total_cost_usd=0.25,
    )
    s = summarize_session(session)
    assert s.attempts == 4
    assert s.iterations_completed == 2
    assert s.successes == 2
    assert s.failures == 2
    assert s.duration_seconds == 360.0
    assert s.total_cost_usd == 0.25
    assert s.input_tokens == 250
    assert s.output_tokens == 25
    assert s.cache_read_tokens == 1000
    assert s.cache_creation_tokens == 20
    assert s.backlog_complete
