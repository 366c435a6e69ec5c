"""Shared fixtures: a scratch .ralph directory and fake collaborators."""

from __future__ import annotations

from pathlib import Path

import pytest

from ralph_loop.config import RalphConfig
from ralph_loop.controller import IterationController
from ralph_loop.loop import SessionLoop
from ralph_loop.models import AgentResult, Usage
from ralph_loop.plugins import PluginDispatcher
from ralph_loop.prompt import COMPLETION_SIGNAL
from ralph_loop.session import SessionStore


class FakeGit:
    def __init__(self, commit: str | None = "abc123", branch: str | None = "main") -> None:
        self.commit = commit
        self.branch = branch

    async def current_commit(self) -> str | None:
        return self.commit

    async def current_branch(self) -> str | None:
        return self.branch


class ScriptedAdapter:
    """Returns queued AgentResults in order and records every call."""

    def __init__(self, results: list[AgentResult]) -> None:
        self.results = list(results)
        self.calls: list[tuple[str, str | None]] = []

    async def invoke(self, context, continuation_token=None, cancel=None) -> AgentResult:
        self.calls.append((context, continuation_token))
        return self.results.pop(0)


def ok(cost: float | None = None, complete: bool = False, token: str | None = None) -> AgentResult:
    output = "did work"
    if complete:
        output += f"\n{COMPLETION_SIGNAL}"
    return AgentResult(
        success=True,
        output=output,
        backlog_complete=complete,
        usage=Usage(input_tokens=100, output_tokens=50, total_cost_usd=cost) if cost is not None else None,
        continuation_token=token,
    )


def failed(cost: float | None = None) -> AgentResult:
    return AgentResult(
        success=False,
        output="",
        error="claude exited with code 1",
        usage=Usage(total_cost_usd=cost) if cost is not None else None,
    )


def cancelled() -> AgentResult:
    return AgentResult(success=False, cancelled=True, error="cancelled")


@pytest.fixture
def ralph_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".ralph"
    d.mkdir()
    (d / "PRD.md").write_text("# PRD\n\n- [ ] Build the thing\n- [ ] Test the thing\n")
    return d


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def store(ralph_dir: Path, fake_git: FakeGit) -> SessionStore:
    return SessionStore(ralph_dir, fake_git)


@pytest.fixture
def make_loop(ralph_dir: Path, store: SessionStore):
    def _make(results, config: RalphConfig | None = None, plugins=None, **kwargs):
        adapter = ScriptedAdapter(results)
        controller = IterationController(ralph_dir, adapter)
        dispatcher = PluginDispatcher()
        for p in plugins or []:
            dispatcher.register(p)
        loop = SessionLoop(
            config or RalphConfig(),
            store,
            controller,
            dispatcher,
            repo_root=ralph_dir.parent,
            **kwargs,
        )
        return loop, adapter

    return _make
