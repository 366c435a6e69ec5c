"""Orchestration loop — runs attempts until the policy says stop.

    IDLE → RUNNING(iteration, retry) → {RUNNING | RETRYING}
         → {COMPLETED | COST_LIMITED | RETRIES_EXHAUSTED | CONFIG_ERROR | STOPPED | ERROR}

Per attempt: before_iteration → controller → record appended and persisted →
after_iteration → checkpoint (successful attempts only) → act on the decision.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path

from .config import RalphConfig
from .controller import IterationController
from .display import GREEN, RED, RESET, YELLOW, log, warn
from .errors import (
    AgentInvocationError,
    CancellationError,
    ConfigurationError,
    CostLimitExceeded,
    PersistenceError,
    RalphError,
)
from .models import IterationRecord, Session
from .observer import LoopControl, LoopObserver, LoopSnapshot
from .plugins import IterationContext, PluginContext, PluginDispatcher
from .policy import (
    Decision,
    cost_limit_reason,
    cost_warning_level,
    decide,
    describe,
    warn_threshold,
)
from .session import SessionStore
from .stats import write_iteration_log


class Phase(Enum):
    IDLE = "idle"
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    COST_LIMITED = "cost_limited"
    RETRIES_EXHAUSTED = "retries_exhausted"
    CONFIG_ERROR = "config_error"
    STOPPED = "stopped"
    ERROR = "error"

    @property
    def is_error(self) -> bool:
        return self in (Phase.CONFIG_ERROR, Phase.ERROR)


DECISION_PHASES = {
    Decision.STOP_BACKLOG_COMPLETE: Phase.COMPLETED,
    Decision.STOP_ITERATION_LIMIT_REACHED: Phase.COMPLETED,
    Decision.STOP_COST_LIMIT_ITERATION: Phase.COST_LIMITED,
    Decision.STOP_COST_LIMIT_SESSION: Phase.COST_LIMITED,
    Decision.STOP_RETRIES_EXHAUSTED: Phase.RETRIES_EXHAUSTED,
}


@dataclass
class LoopOutcome:
    phase: Phase
    session: Session | None
    message: str = ""
    decision: Decision | None = None
    error: BaseException | None = None
    resumable: bool = True
    last_iteration: int = 0
    total_iterations: int = 0


class SessionLoop:
    def __init__(
        self,
        config: RalphConfig,
        store: SessionStore,
        controller: IterationController,
        dispatcher: PluginDispatcher | None = None,
        *,
        repo_root: Path,
        verbose: bool = False,
        dry_run: bool = False,
        observers: list[LoopObserver] | None = None,
        control: LoopControl | None = None,
        cancel: asyncio.Event | None = None,
        log_dir: Path | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.controller = controller
        self.dispatcher = dispatcher or PluginDispatcher()
        self.repo_root = repo_root
        self.verbose = verbose
        self.dry_run = dry_run
        self.observers = list(observers or [])
        self.control = control or LoopControl()
        self.cancel = cancel or asyncio.Event()
        self.log_dir = log_dir

        self.phase = Phase.IDLE
        self.session: Session | None = None
        self.branch = ""
        self.iteration = 1
        self.retry_count = 0
        self.total_iterations = config.default_iterations
        self.resumable = True
        self.status: str | None = None
        self._cost_warning_level = 0

    # -- contexts & notifications ------------------------------------------

    def _context(self) -> PluginContext:
        return PluginContext(
            config=self.config,
            session=copy.deepcopy(self.session),
            repo_root=self.repo_root,
            branch=self.branch,
            verbose=self.verbose,
            dry_run=self.dry_run,
        )

    def _iteration_context(self, result: IterationRecord | None = None) -> IterationContext:
        assert self.session is not None
        # copied together so ctx.result stays the last record of ctx.session
        session, result = copy.deepcopy((self.session, result))
        return IterationContext(
            config=self.config,
            session=session,
            repo_root=self.repo_root,
            branch=self.branch,
            verbose=self.verbose,
            dry_run=self.dry_run,
            iteration=self.iteration,
            total_iterations=self.total_iterations,
            result=result,
        )

    def snapshot(self) -> LoopSnapshot | None:
        if self.session is None:
            return None
        return LoopSnapshot(
            session=copy.deepcopy(self.session),
            current_iteration=self.iteration,
            total_iterations=self.total_iterations,
            retry_count=self.retry_count,
            phase=self.phase.value,
            status=self.status,
            paused_after_iteration=self.control.pause_after_iteration,
        )

    def _notify(self) -> None:
        snapshot = self.snapshot()
        if snapshot is None:
            return
        for observer in self.observers:
            try:
                observer.on_state_change(snapshot)
            except Exception as e:
                warn(f"Observer {observer.__class__.__name__} failed: {e}")

    def _apply_control_total(self) -> None:
        # never below the iteration in flight
        if self.control.total_iterations is not None:
            self.total_iterations = max(self.control.total_iterations, self.iteration)

    # -- persistence ---------------------------------------------------------

    async def _persist(self, session: Session) -> None:
        try:
            await self.store.save_session(session)
        except PersistenceError as e:
            if self.resumable:
                warn(f"{RED}{e.format()}{RESET}")
            self.resumable = False

    async def _checkpoint(self, iteration: int) -> None:
        assert self.session is not None
        self.session = await self.store.build_checkpoint(self.session, iteration)
        await self._persist(self.session)

    def _write_log(self, record: IterationRecord, attempt: int) -> None:
        if self.log_dir is None:
            return
        try:
            write_iteration_log(self.log_dir, record, attempt)
        except OSError as e:
            warn(f"Could not write iteration log: {e}")

    def _check_cost_warning(self) -> None:
        assert self.session is not None
        level = cost_warning_level(self.session.total_cost_usd, self.config)
        if level <= self._cost_warning_level:
            return
        self._cost_warning_level = level
        threshold = warn_threshold(self.config) or 0.0
        total = self.session.total_cost_usd
        if level == 2:
            warn(f"{RED}Cost threshold reached: ${total:.2f} / ${threshold:.2f}{RESET}")
        else:
            pct = round(total / threshold * 100) if threshold else 0
            warn(f"{YELLOW}Approaching cost threshold: ${total:.2f} / ${threshold:.2f} ({pct}%){RESET}")

    # -- lifecycle -----------------------------------------------------------

    def _finish(
        self,
        phase: Phase,
        message: str,
        decision: Decision | None = None,
        error: BaseException | None = None,
    ) -> LoopOutcome:
        self.phase = phase
        self.status = message
        self._notify()
        return LoopOutcome(
            phase=phase,
            session=self.session,
            message=message,
            decision=decision,
            error=error,
            resumable=self.resumable,
            last_iteration=self.iteration,
            total_iterations=self.total_iterations,
        )

    def _stop_error(
        self, decision: Decision, record: IterationRecord, prior_cost: float
    ) -> RalphError | None:
        if decision is Decision.STOP_COST_LIMIT_ITERATION:
            assert self.config.max_cost_per_iteration is not None
            return CostLimitExceeded("iteration", record.cost_usd, self.config.max_cost_per_iteration)
        if decision is Decision.STOP_COST_LIMIT_SESSION:
            assert self.config.max_cost_per_session is not None
            return CostLimitExceeded(
                "session", prior_cost + record.cost_usd, self.config.max_cost_per_session
            )
        if decision is Decision.STOP_RETRIES_EXHAUSTED:
            return AgentInvocationError(
                record.error or f"Iteration {record.iteration} failed",
                "Check the iteration log or rerun with --verbose",
            )
        return None

    async def _start(self, requested: int, resume: bool, branch: str | None) -> None:
        if resume:
            point = await self.store.resume_from_checkpoint()
            if point is not None:
                self.session = point.session
                self.branch = point.session.branch
                self.iteration = point.resume_iteration
                self.total_iterations = requested + point.resume_iteration
                if point.session.continuation_token:
                    self.controller.continuation_token = point.session.continuation_token
                log(
                    f"Resuming session {point.session.id[:8]} at iteration "
                    f"{self.iteration} of {self.total_iterations}"
                )
                return
            log(f"{YELLOW}No resumable session found, starting fresh{RESET}")

        self.session = await self.store.create_session(branch)
        self.branch = self.session.branch
        self.iteration = 1
        self.total_iterations = requested
        await self._persist(self.session)

    async def run(
        self,
        iterations: int | None = None,
        *,
        resume: bool = False,
        branch: str | None = None,
    ) -> LoopOutcome:
        """Run until a terminal phase; fires done or on_error exactly once."""
        requested = iterations or self.config.default_iterations
        try:
            await self._start(requested, resume, branch)
            self.phase = Phase.RUNNING
            await self.dispatcher.before_run(self._context())
            outcome = await self._iterate()
        except ConfigurationError as e:
            outcome = self._finish(Phase.CONFIG_ERROR, e.format(), error=e)
        except Exception as e:
            outcome = self._finish(Phase.ERROR, f"Unexpected error: {e}", error=e)

        if outcome.phase.is_error:
            await self.dispatcher.on_error(self._context(), outcome.error)
        else:
            await self.dispatcher.done(self._context())
        return outcome

    async def _iterate(self) -> LoopOutcome:
        assert self.session is not None
        while True:
            self._apply_control_total()
            if self.control.stop_requested:
                return self._finish(Phase.STOPPED, "Stop requested")
            if self.cancel.is_set():
                return self._finish(Phase.STOPPED, "Interrupted")
            if self.iteration > self.total_iterations:
                return self._finish(
                    Phase.COMPLETED,
                    f"Reached iteration limit ({self.total_iterations})",
                    Decision.STOP_ITERATION_LIMIT_REACHED,
                )

            self.phase = Phase.RUNNING if self.retry_count == 0 else Phase.RETRYING
            self.status = f"Iteration {self.iteration} of {self.total_iterations}"
            await self.dispatcher.before_iteration(self._iteration_context())
            self._notify()

            record = await self.controller.run(self.iteration, self.cancel)
            if record.cancelled:
                err = CancellationError(f"Iteration {record.iteration} cancelled")
                return self._finish(Phase.STOPPED, err.message, error=err)

            # the total may have been lowered while the attempt ran
            self._apply_control_total()
            prior_cost = self.session.total_cost_usd
            decision = decide(
                record, self.config, prior_cost, self.retry_count, self.total_iterations
            )
            if decision.is_cost_stop:
                record.cost_limit_exceeded = True
                record.cost_limit_reason = cost_limit_reason(decision)

            self.session = replace(
                self.store.append_iteration_result(self.session, record),
                continuation_token=self.controller.continuation_token,
            )
            await self._persist(self.session)
            self._write_log(record, self.retry_count + 1)

            await self.dispatcher.after_iteration(self._iteration_context(record))

            if record.success:
                await self._checkpoint(record.iteration)
            self._check_cost_warning()

            message = describe(decision, record, self.config, prior_cost, self.retry_count)
            if decision is Decision.RETRY_SAME_ITERATION:
                log(f"{YELLOW}{message}{RESET}")
                if record.error:
                    log(f"{RED}{record.error}{RESET}")
                self.retry_count += 1
                continue
            if decision.is_terminal:
                return self._finish(
                    DECISION_PHASES[decision],
                    message,
                    decision,
                    self._stop_error(decision, record, prior_cost),
                )

            log(f"{GREEN}{message}{RESET}")
            self.iteration += 1
            self.retry_count = 0
            if self.control.pause_after_iteration:
                return self._finish(
                    Phase.STOPPED, f"Paused after iteration {record.iteration}"
                )
