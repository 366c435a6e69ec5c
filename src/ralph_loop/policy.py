"""Cost & retry policy — what to do after an attempt completes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .config import RalphConfig
from .models import IterationRecord

WARN_FRACTION = 0.8


class Decision(Enum):
    CONTINUE = "continue"
    RETRY_SAME_ITERATION = "retry_same_iteration"
    STOP_COST_LIMIT_ITERATION = "stop_cost_limit_iteration"
    STOP_COST_LIMIT_SESSION = "stop_cost_limit_session"
    STOP_BACKLOG_COMPLETE = "stop_backlog_complete"
    STOP_ITERATION_LIMIT_REACHED = "stop_iteration_limit_reached"
    STOP_RETRIES_EXHAUSTED = "stop_retries_exhausted"

    @property
    def is_terminal(self) -> bool:
        return self not in (Decision.CONTINUE, Decision.RETRY_SAME_ITERATION)

    @property
    def is_cost_stop(self) -> bool:
        return self in (Decision.STOP_COST_LIMIT_ITERATION, Decision.STOP_COST_LIMIT_SESSION)


def decide(
    record: IterationRecord,
    config: RalphConfig,
    prior_session_cost: float,
    retry_count: int,
    total_iterations: int | None = None,
) -> Decision:
    """Map a completed attempt to the next step. First matching rule wins.

    Cost ceilings are checked before completion so that a "complete" but
    over-budget iteration still stops as a cost stop.
    """
    cost = record.cost_usd
    if config.max_cost_per_iteration is not None and cost > config.max_cost_per_iteration:
        return Decision.STOP_COST_LIMIT_ITERATION
    if (
        config.max_cost_per_session is not None
        and prior_session_cost + cost > config.max_cost_per_session
    ):
        return Decision.STOP_COST_LIMIT_SESSION
    if record.backlog_complete:
        return Decision.STOP_BACKLOG_COMPLETE
    if total_iterations is None:
        total_iterations = config.default_iterations
    if record.iteration >= total_iterations:
        return Decision.STOP_ITERATION_LIMIT_REACHED
    if not record.success:
        if retry_count < config.max_retries:
            return Decision.RETRY_SAME_ITERATION
        return Decision.STOP_RETRIES_EXHAUSTED
    return Decision.CONTINUE


def describe(
    decision: Decision,
    record: IterationRecord,
    config: RalphConfig,
    prior_session_cost: float,
    retry_count: int,
) -> str:
    """User-facing explanation of a decision."""
    cost = record.cost_usd
    if decision is Decision.STOP_COST_LIMIT_ITERATION:
        return (
            f"Iteration {record.iteration} cost ${cost:.2f} exceeded the per-iteration "
            f"limit of ${config.max_cost_per_iteration:.2f}"
        )
    if decision is Decision.STOP_COST_LIMIT_SESSION:
        total = prior_session_cost + cost
        return (
            f"Session cost ${total:.2f} exceeded the per-session "
            f"limit of ${config.max_cost_per_session:.2f}"
        )
    if decision is Decision.STOP_BACKLOG_COMPLETE:
        return f"PRD complete after iteration {record.iteration}"
    if decision is Decision.STOP_ITERATION_LIMIT_REACHED:
        return f"Reached iteration limit ({record.iteration})"
    if decision is Decision.RETRY_SAME_ITERATION:
        return (
            f"Iteration {record.iteration} failed, retrying "
            f"({retry_count + 1}/{config.max_retries})"
        )
    if decision is Decision.STOP_RETRIES_EXHAUSTED:
        return (
            f"Iteration {record.iteration} failed after {retry_count} "
            f"{'retry' if retry_count == 1 else 'retries'}"
        )
    return f"Iteration {record.iteration} complete"


def cost_limit_reason(decision: Decision) -> str | None:
    if decision is Decision.STOP_COST_LIMIT_ITERATION:
        return "iteration"
    if decision is Decision.STOP_COST_LIMIT_SESSION:
        return "session"
    return None


def warn_threshold(config: RalphConfig) -> float | None:
    if config.warn_cost_threshold is not None:
        return config.warn_cost_threshold
    return config.max_cost_per_session


def cost_warning_level(session_total: float, config: RalphConfig) -> int:
    """0 = fine, 1 = approaching the threshold (80%+), 2 = at or over it."""
    threshold = warn_threshold(config)
    if threshold is None:
        return 0
    if session_total >= threshold:
        return 2
    if session_total >= threshold * WARN_FRACTION:
        return 1
    return 0


@dataclass
class CostProjection:
    avg_cost_per_iteration: float
    projected_total: float
    projected_remaining: float
    would_exceed_limit: bool


def project_cost(
    records: list[IterationRecord],
    current_iteration: int,
    total_iterations: int,
    session_total: float,
    max_cost_per_session: float | None,
) -> CostProjection | None:
    """Project the session's final cost from the average of past attempts."""
    costs = [r.cost_usd for r in records if r.cost_usd > 0]
    if not costs:
        return None
    avg = sum(costs) / len(costs)
    remaining = avg * max(total_iterations - current_iteration, 0)
    projected = session_total + remaining
    return CostProjection(
        avg_cost_per_iteration=avg,
        projected_total=projected,
        projected_remaining=remaining,
        would_exceed_limit=max_cost_per_session is not None and projected > max_cost_per_session,
    )
