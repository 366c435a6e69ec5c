"""Error taxonomy for the session engine.

Only ConfigurationError and PersistenceError are ever raised out of engine
components. The adapter and iteration controller encode agent failures and
cancellation into their result shapes; the loop attaches AgentInvocationError,
CancellationError or CostLimitExceeded to the outcome of a run that ends on one.
"""

from __future__ import annotations


class RalphError(Exception):
    """Base error carrying an optional actionable suggestion."""

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion

    def format(self) -> str:
        if self.suggestion:
            return f"{self.message}\n  → {self.suggestion}"
        return self.message


class ConfigurationError(RalphError):
    """Fatal setup problem. Never retried."""


class AgentInvocationError(RalphError):
    """Transient agent failure, retried up to max_retries."""


class CancellationError(RalphError):
    """Cooperative cancellation of an in-flight attempt."""


class CostLimitExceeded(RalphError):
    """A cost ceiling was crossed; fatal to the session."""

    def __init__(self, reason: str, actual: float, limit: float) -> None:
        scope = "Iteration" if reason == "iteration" else "Session"
        super().__init__(
            f"{scope} cost limit exceeded: ${actual:.2f} > ${limit:.2f}",
            "Raise MAX_COST_PER_ITERATION / MAX_COST_PER_SESSION in .ralph/config "
            "or pass --max-cost",
        )
        self.reason = reason
        self.actual = actual
        self.limit = limit


class PersistenceError(RalphError):
    """The durable session record could not be written."""


def file_not_found_error(path: str, suggestion: str | None = None) -> ConfigurationError:
    return ConfigurationError(f"File not found: {path}", suggestion)
