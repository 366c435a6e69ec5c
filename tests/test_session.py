"""Tests for the session & checkpoint store."""

import json
from pathlib import Path

import pytest

from conftest import FakeGit
from ralph_loop.errors import PersistenceError
from ralph_loop.models import IterationRecord, Usage
from ralph_loop.session import SessionStore


def record(iteration, success=True, cost=None) -> IterationRecord:
    return IterationRecord(
        iteration=iteration,
        started_at="2026-01-01T00:00:00.000Z",
        completed_at="2026-01-01T00:01:00.000Z",
        duration_seconds=60.0,
        success=success,
        status="completed" if success else "failed",
        usage=Usage(total_cost_usd=cost) if cost is not None else None,
    )


@pytest.mark.asyncio
async def test_create_session_is_not_persisted(store):
    session = await store.create_session()
    assert session.branch == "main"
    assert session.start_commit == "abc123"
    assert session.iterations == []
    assert session.total_cost_usd == 0.0
    assert not store.path.exists()


@pytest.mark.asyncio
async def test_create_session_unknown_when_git_unavailable(ralph_dir):
    store = SessionStore(ralph_dir, FakeGit(commit=None, branch=None))
    session = await store.create_session()
    assert session.branch == "unknown"
    assert session.start_commit == "unknown"


@pytest.mark.asyncio
async def test_save_and_load_round_trip(store):
    session = await store.create_session("feature/x")
    session = store.append_iteration_result(session, record(1, cost=0.25))
    session.continuation_token = "tok-1"
    await store.save_session(session)

    raw = json.loads(store.path.read_text())
    assert raw["startCommit"] == "abc123"
    assert raw["iterations"][0]["usage"]["totalCostUsd"] == 0.25
    assert raw["continuationToken"] == "tok-1"

    loaded = await store.load_session()
    assert loaded == session
    assert not list(store.ralph_dir.glob("*.tmp"))


@pytest.mark.asyncio
async def test_load_missing_returns_none(store):
    assert await store.load_session() is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    [
        "not json at all",
        "{}",
        '{"id": "x", "startedAt": "t", "startCommit": "c", "branch": "main"}',
        '{"id": "", "startedAt": "t", "startCommit": "c", "branch": "main", "iterations": []}',
        '{"id": "x", "startedAt": "t", "startCommit": "c", "branch": "main", "iterations": "nope"}',
    ],
)
async def test_load_invalid_returns_none(store, content):
    store.path.write_text(content)
    assert await store.load_session() is None


@pytest.mark.asyncio
async def test_load_drops_checkpoint_without_successful_record(store):
    session = store.append_iteration_result(await store.create_session(), record(1, success=False))
    data = session.to_dict()
    data["checkpoint"] = {"iteration": 1, "commit": "abc123", "timestamp": "t"}
    store.path.write_text(json.dumps(data))

    loaded = await store.load_session()
    assert loaded is not None
    assert loaded.checkpoint is None


@pytest.mark.asyncio
async def test_append_sums_cost_and_keeps_original(store):
    session = await store.create_session()
    first = store.append_iteration_result(session, record(1, cost=0.40))
    second = store.append_iteration_result(first, record(2, cost=0.70))
    third = store.append_iteration_result(second, record(3, cost=None))

    assert session.iterations == []
    assert len(third.iterations) == 3
    assert third.total_cost_usd == pytest.approx(1.10)
    assert third.total_cost_usd == pytest.approx(sum(r.cost_usd for r in third.iterations))


@pytest.mark.asyncio
async def test_save_checkpoint(store):
    session = store.append_iteration_result(await store.create_session(), record(1))
    updated = await store.save_checkpoint(session, 1)
    assert updated.checkpoint is not None
    assert updated.checkpoint.iteration == 1
    assert updated.checkpoint.commit == "abc123"
    assert session.checkpoint is None

    loaded = await store.load_session()
    assert loaded.checkpoint == updated.checkpoint


@pytest.mark.asyncio
async def test_checkpoint_commit_falls_back_to_unknown(ralph_dir):
    store = SessionStore(ralph_dir, FakeGit(commit=None))
    session = store.append_iteration_result(await store.create_session(), record(1))
    updated = await store.build_checkpoint(session, 1)
    assert updated.checkpoint.commit == "unknown"


@pytest.mark.asyncio
async def test_checkpoint_requires_successful_record(store):
    session = store.append_iteration_result(await store.create_session(), record(1, success=False))
    with pytest.raises(ValueError):
        await store.build_checkpoint(session, 1)
    with pytest.raises(ValueError):
        await store.build_checkpoint(session, 2)


@pytest.mark.asyncio
async def test_clear_session(store):
    await store.clear_session()
    assert not store.path.exists()

    session = store.append_iteration_result(await store.create_session(), record(1))
    await store.save_checkpoint(session, 1)
    await store.clear_session()
    assert store.path.read_text() == "{}"
    assert await store.load_session() is None
    assert await store.can_resume() is False


@pytest.mark.asyncio
async def test_resume_point_is_iteration_after_checkpoint(store):
    session = await store.create_session()
    for i in range(1, 5):
        session = store.append_iteration_result(session, record(i))
    await store.save_checkpoint(session, 4)

    point = await store.resume_from_checkpoint()
    assert point is not None
    assert point.resume_iteration == 5
    assert len(point.session.iterations) == 4
    assert await store.can_resume() is True


@pytest.mark.asyncio
async def test_no_checkpoint_means_no_resume(store):
    session = store.append_iteration_result(await store.create_session(), record(1, success=False))
    await store.save_session(session)
    assert await store.resume_from_checkpoint() is None


@pytest.mark.asyncio
async def test_write_failure_raises_persistence_error(tmp_path: Path, fake_git):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    store = SessionStore(blocker / ".ralph", fake_git)
    session = await store.create_session()
    with pytest.raises(PersistenceError):
        await store.save_session(session)


@pytest.mark.asyncio
async def test_unreadable_record_is_no_session(store, monkeypatch):
    store.path.mkdir()
    assert await store.load_session() is None
    store.path.rmdir()

    def denied(self, *args, **kwargs):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(type(store.path), "exists", denied)
    assert await store.load_session() is None
    assert await store.resume_from_checkpoint() is None
    await store.clear_session()
