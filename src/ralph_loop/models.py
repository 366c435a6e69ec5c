"""Data models for ralph-loop.

Field names are snake_case in Python; the durable session record uses the
camelCase keys below so existing .ralph/session.json files stay readable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

REQUIRED_SESSION_KEYS = ("id", "startedAt", "startCommit", "branch", "iterations")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class Usage:
    """Token usage and cost reported by the agent for one attempt."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_cost_usd: float = 0.0
    cache_read_tokens: int | None = None
    cache_creation_tokens: int | None = None

    def to_dict(self) -> dict:
        data = {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalCostUsd": self.total_cost_usd,
        }
        if self.cache_read_tokens is not None:
            data["cacheReadTokens"] = self.cache_read_tokens
        if self.cache_creation_tokens is not None:
            data["cacheCreationTokens"] = self.cache_creation_tokens
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Usage:
        return cls(
            input_tokens=int(data.get("inputTokens", 0)),
            output_tokens=int(data.get("outputTokens", 0)),
            total_cost_usd=float(data.get("totalCostUsd", 0.0)),
            cache_read_tokens=data.get("cacheReadTokens"),
            cache_creation_tokens=data.get("cacheCreationTokens"),
        )


@dataclass
class IterationRecord:
    """Bookkeeping for one completed attempt at an iteration."""

    iteration: int
    started_at: str
    completed_at: str
    duration_seconds: float
    success: bool
    output: str = ""
    status: str = STATUS_COMPLETED
    usage: Usage | None = None
    backlog_complete: bool = False
    cost_limit_exceeded: bool = False
    cost_limit_reason: str | None = None
    error: str | None = None

    @property
    def cost_usd(self) -> float:
        return self.usage.total_cost_usd if self.usage else 0.0

    @property
    def cancelled(self) -> bool:
        return self.status == STATUS_CANCELLED

    def to_dict(self) -> dict:
        data: dict = {
            "iteration": self.iteration,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "durationSeconds": self.duration_seconds,
            "success": self.success,
            "output": self.output,
            "status": self.status,
            "backlogComplete": self.backlog_complete,
        }
        if self.usage is not None:
            data["usage"] = self.usage.to_dict()
        if self.cost_limit_exceeded:
            data["costLimitExceeded"] = True
            data["costLimitReason"] = self.cost_limit_reason
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict) -> IterationRecord:
        usage = data.get("usage")
        return cls(
            iteration=int(data["iteration"]),
            started_at=data["startedAt"],
            completed_at=data["completedAt"],
            duration_seconds=data["durationSeconds"],
            success=bool(data["success"]),
            output=data.get("output", ""),
            status=data.get("status", STATUS_COMPLETED),
            usage=Usage.from_dict(usage) if isinstance(usage, dict) else None,
            backlog_complete=bool(data.get("backlogComplete", False)),
            cost_limit_exceeded=bool(data.get("costLimitExceeded", False)),
            cost_limit_reason=data.get("costLimitReason"),
            error=data.get("error"),
        )


@dataclass
class Checkpoint:
    """Last successfully completed iteration."""

    iteration: int
    commit: str
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "iteration": self.iteration,
            "commit": self.commit,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Checkpoint:
        return cls(
            iteration=int(data["iteration"]),
            commit=data["commit"],
            timestamp=data["timestamp"],
        )


@dataclass
class Session:
    """One continuous (possibly resumed) run tied to a branch."""

    id: str
    started_at: str
    start_commit: str
    branch: str
    iterations: list[IterationRecord] = field(default_factory=list)
    total_cost_usd: float = 0.0
    checkpoint: Checkpoint | None = None
    continuation_token: str | None = None

    def to_dict(self) -> dict:
        data: dict = {
            "id": self.id,
            "startedAt": self.started_at,
            "startCommit": self.start_commit,
            "branch": self.branch,
            "iterations": [r.to_dict() for r in self.iterations],
            "totalCostUsd": self.total_cost_usd,
        }
        if self.checkpoint is not None:
            data["checkpoint"] = self.checkpoint.to_dict()
        if self.continuation_token is not None:
            data["continuationToken"] = self.continuation_token
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Session:
        """Rebuild a session; raises KeyError/TypeError/ValueError when invalid."""
        for key in REQUIRED_SESSION_KEYS:
            if not data.get(key) and data.get(key) != []:
                raise KeyError(key)
        if not isinstance(data["iterations"], list):
            raise TypeError("iterations must be a list")
        checkpoint = data.get("checkpoint")
        return cls(
            id=str(data["id"]),
            started_at=data["startedAt"],
            start_commit=data["startCommit"],
            branch=data["branch"],
            iterations=[IterationRecord.from_dict(r) for r in data["iterations"]],
            total_cost_usd=float(data.get("totalCostUsd", 0.0)),
            checkpoint=Checkpoint.from_dict(checkpoint) if checkpoint else None,
            continuation_token=data.get("continuationToken"),
        )


@dataclass
class AgentResult:
    """Result of one agent invocation."""

    success: bool
    output: str = ""
    backlog_complete: bool = False
    usage: Usage | None = None
    continuation_token: str | None = None
    error: str | None = None
    cancelled: bool = False
    exit_code: int | None = None
    timed_out: bool = False
    idle_timed_out: bool = False
    num_turns: int = 0
