"""Observer seam between the loop and an optional dashboard.

The loop pushes a LoopSnapshot, holding its own copy of the session, to every
observer after each state change. Observers steer the loop only through a
LoopControl, whose requests are honored at the next decision point, never
mid-attempt.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from .models import Session


@dataclass(frozen=True)
class LoopSnapshot:
    session: Session
    current_iteration: int
    total_iterations: int
    retry_count: int
    phase: str
    status: str | None = None
    paused_after_iteration: bool = False


class LoopObserver(Protocol):
    def on_state_change(self, snapshot: LoopSnapshot) -> None: ...


class LoopControl:
    """Commands an observer may issue to a running loop."""

    def __init__(self) -> None:
        self.total_iterations: int | None = None
        self.pause_after_iteration = False
        self.stop_requested = False

    def set_total_iterations(self, total: int) -> None:
        if total < 1:
            raise ValueError("total iterations must be at least 1")
        self.total_iterations = total

    def set_pause_after_iteration(self, pause: bool) -> None:
        self.pause_after_iteration = pause

    def request_stop(self) -> None:
        self.stop_requested = True
