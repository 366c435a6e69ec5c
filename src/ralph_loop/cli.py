"""ralph-loop CLI — resumable outer loop around Claude Code."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from .backlog import has_tasks, parse_tasks, task_progress
from .config import RalphConfig, load_config
from .controller import BACKLOG_FILE, IterationController
from .display import (
    BLUE,
    BOLD,
    CLEAR_LINE,
    CYAN,
    DIM,
    GREEN,
    PANEL_WIDTH,
    RED,
    RESET,
    WHITE,
    YELLOW,
    draw_box_line,
    fmt_cost,
    fmt_duration,
    fmt_tokens,
    log,
)
from .errors import ConfigurationError
from .git import GitClient
from .loop import LoopOutcome, Phase, SessionLoop
from .observer import LoopSnapshot
from .plugins import PluginDispatcher, load_plugins
from .policy import project_cost
from .runner import ClaudeCodeAdapter
from .session import SessionStore
from .stats import summarize_session

RALPH_DIR = ".ralph"


class ConsoleListener:
    """Prints streamed agent text (verbose only) and tool status lines."""

    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose

    def on_text(self, chunk: str) -> None:
        if not self.verbose:
            return
        print(CLEAR_LINE, end="")
        for line in chunk.split("\n"):
            print(draw_box_line(line), flush=True)

    def on_status(self, status: str) -> None:
        log(f"{CYAN}→{RESET} {DIM}{status}{RESET}")


class ConsoleObserver:
    """Prints an iteration header whenever a new attempt starts."""

    def __init__(self) -> None:
        self._last: tuple[int, int] | None = None

    def on_state_change(self, snapshot: LoopSnapshot) -> None:
        if snapshot.phase not in (Phase.RUNNING.value, Phase.RETRYING.value):
            return
        key = (snapshot.current_iteration, snapshot.retry_count)
        if key == self._last:
            return
        self._last = key
        retry = f"  {YELLOW}retry {snapshot.retry_count}{RESET}" if snapshot.retry_count else ""
        print(
            f"\n  {BOLD}{BLUE}━━━ Iteration {snapshot.current_iteration} of "
            f"{snapshot.total_iterations} ━━━{RESET}{retry}"
            f"  {DIM}{fmt_cost(snapshot.session.total_cost_usd)} spent{RESET}"
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ralph-loop",
        description="Run Claude Code against .ralph/PRD.md in resumable iterations.",
    )
    parser.add_argument("task", nargs="?", default=None, help="Task instruction (optional)")
    parser.add_argument(
        "-n", "--iterations", type=int, default=None,
        help="Number of iterations (default: DEFAULT_ITERATIONS from config)",
    )
    parser.add_argument("--ralph-dir", default=None, help="Path to the .ralph directory")
    parser.add_argument("--resume", action="store_true", help="Resume from the last checkpoint")
    parser.add_argument("--reset", action="store_true", help="Clear the saved session first")
    parser.add_argument("--branch", default=None, help="Create/switch to this branch first")
    parser.add_argument(
        "--max-cost", type=float, default=None,
        help="Override MAX_COST_PER_SESSION (USD)",
    )
    parser.add_argument("--model", default=None, help="Claude model (default: config MODEL)")
    parser.add_argument("--logs", action="store_true", help="Save each iteration's output")
    parser.add_argument("--no-plugins", action="store_true", help="Do not load plugins")
    parser.add_argument("--skip-preflight", action="store_true", help="Skip the PRD task check")
    parser.add_argument("--dry-run", action="store_true", help="Show what would run and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Stream agent output")
    parser.add_argument("--debug", action="store_true", help="Enable debug output")
    return parser


def apply_overrides(config: RalphConfig, args: argparse.Namespace) -> RalphConfig:
    if args.max_cost is not None:
        if args.max_cost <= 0:
            raise ConfigurationError("--max-cost must be a positive USD amount")
        config.max_cost_per_session = args.max_cost
    if args.model:
        config.model = args.model
    if args.logs:
        config.save_output = True
    return config


def print_banner(config: RalphConfig, iterations: int, ralph_dir: Path, resume: bool) -> None:
    print()
    print(f"  {BOLD}{CYAN}◉ RALPH LOOP{RESET}")
    print(f"  {DIM}{'─' * PANEL_WIDTH}{RESET}")
    col1 = f"{DIM}Iterations:{RESET} {WHITE}{iterations}{RESET}"
    col2 = f"{DIM}Retries:{RESET} {WHITE}{config.max_retries}{RESET}"
    col3 = f"{DIM}Model:{RESET} {WHITE}{config.model}{RESET}"
    print(f"  {col1}  {DIM}│{RESET}  {col2}  {DIM}│{RESET}  {col3}")
    limits = []
    if config.max_cost_per_iteration is not None:
        limits.append(f"{fmt_cost(config.max_cost_per_iteration)}/iteration")
    if config.max_cost_per_session is not None:
        limits.append(f"{fmt_cost(config.max_cost_per_session)}/session")
    print(f"  {DIM}Cost limits:{RESET} {WHITE}{', '.join(limits) or 'none'}{RESET}")
    if resume:
        print(f"  {DIM}Resume:{RESET}  from last checkpoint")
    print(f"  {DIM}Ralph dir:{RESET} {ralph_dir}")
    print(f"  {DIM}{'─' * PANEL_WIDTH}{RESET}")


def print_dry_run(config: RalphConfig, controller: IterationController, iterations: int) -> None:
    print(f"\n  {BOLD}{CYAN}Dry run{RESET}  {DIM}(the agent will not be invoked){RESET}")
    print(f"  {DIM}Max retries:{RESET}     {config.max_retries}")
    print(f"  {DIM}Iterations:{RESET}      {iterations}")
    print(f"  {DIM}Save output:{RESET}     {'yes' if config.save_output else 'no'}")
    done, total = task_progress(parse_tasks(controller.backlog_path))
    print(f"  {DIM}PRD:{RESET}             {controller.backlog_path}")
    print(f"  {DIM}Has tasks:{RESET}       {'yes' if has_tasks(controller.backlog_path) else 'no'}")
    if total:
        print(f"  {DIM}Task progress:{RESET}   {done}/{total} complete")
    context = controller.build_context()
    print(f"\n  {BOLD}{WHITE}Prompt preview{RESET}")
    print(f"  {DIM}{'─' * PANEL_WIDTH}{RESET}")
    for line in context[:800].splitlines():
        print(f"  {DIM}{line}{RESET}")
    if len(context) > 800:
        print(f"  {DIM}... ({len(context)} chars total){RESET}")


def print_summary(outcome: LoopOutcome, config: RalphConfig) -> None:
    print()
    print(f"  {DIM}{'━' * PANEL_WIDTH}{RESET}")
    print(f"  {BOLD}{WHITE}Summary{RESET}")
    print(f"  {DIM}{'─' * PANEL_WIDTH}{RESET}")

    color = GREEN if outcome.phase in (Phase.COMPLETED, Phase.STOPPED) else RED
    if outcome.phase is Phase.COST_LIMITED:
        color = YELLOW
    print(f"  {color}{outcome.phase.value}{RESET}  {outcome.message}")

    if outcome.session is not None:
        s = summarize_session(outcome.session)
        print(
            f"  {DIM}Iterations:{RESET} {WHITE}{s.iterations_completed}{RESET}"
            f"  {DIM}│{RESET}  {DIM}Attempts:{RESET} {WHITE}{s.attempts}{RESET}"
            f" {DIM}({s.failures} failed){RESET}"
            f"  {DIM}│{RESET}  {DIM}Time:{RESET} {WHITE}{fmt_duration(s.duration_seconds)}{RESET}"
            f"  {DIM}│{RESET}  {DIM}Cost:{RESET} {BOLD}{fmt_cost(s.total_cost_usd)}{RESET}"
        )
        print(
            f"  {DIM}Tokens:{RESET} {WHITE}{fmt_tokens(s.input_tokens)} in / "
            f"{fmt_tokens(s.output_tokens)} out{RESET}"
            f"  {DIM}(cache {fmt_tokens(s.cache_read_tokens)} read / "
            f"{fmt_tokens(s.cache_creation_tokens)} write){RESET}"
        )
        print(f"  {DIM}PRD:{RESET} {'complete' if s.backlog_complete else 'in progress'}")

        if outcome.phase is Phase.STOPPED:
            projection = project_cost(
                outcome.session.iterations,
                outcome.last_iteration,
                outcome.total_iterations,
                outcome.session.total_cost_usd,
                config.max_cost_per_session,
            )
            if projection is not None:
                note = f"  {RED}over limit{RESET}" if projection.would_exceed_limit else ""
                print(
                    f"  {DIM}Projected:{RESET} {fmt_cost(projection.projected_total)} for "
                    f"{outcome.total_iterations} iterations "
                    f"{DIM}(~{fmt_cost(projection.avg_cost_per_iteration)}/iteration){RESET}{note}"
                )

    if not outcome.resumable:
        print(f"  {RED}Session state could not be saved; this run cannot be resumed.{RESET}")
    elif outcome.session is not None and outcome.session.checkpoint is not None:
        print(f"  {DIM}Resume:{RESET}  ralph-loop --resume")
    print(f"  {DIM}{'━' * PANEL_WIDTH}{RESET}")
    print()


async def find_ralph_dir(explicit: str | None) -> Path:
    if explicit:
        return Path(explicit).expanduser().resolve()
    root = await GitClient(Path.cwd()).repo_root()
    return (root or Path.cwd()) / RALPH_DIR


async def async_main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    ralph_dir = await find_ralph_dir(args.ralph_dir)
    repo_root = ralph_dir.parent
    git = GitClient(repo_root)

    try:
        config = apply_overrides(load_config(ralph_dir), args)
    except ConfigurationError as e:
        print(f"  {RED}{e.format()}{RESET}")
        return 1
    iterations = args.iterations or config.default_iterations
    if iterations < 1:
        print(f"  {RED}--iterations must be at least 1{RESET}")
        return 1

    adapter = ClaudeCodeAdapter(
        cwd=repo_root,
        model=config.model,
        timeout=config.timeout,
        idle_timeout=config.idle_timeout,
        debug=args.debug,
    )
    adapter.add_listener(ConsoleListener(args.verbose))
    controller = IterationController(ralph_dir, adapter, debug=args.debug)
    if args.task:
        controller.task = args.task

    if args.dry_run:
        try:
            print_dry_run(config, controller, iterations)
        except ConfigurationError as e:
            print(f"  {RED}{e.format()}{RESET}")
            return 1
        return 0

    if not args.skip_preflight:
        try:
            ready = has_tasks(controller.backlog_path)
        except ConfigurationError as e:
            print(f"  {RED}{e.format()}{RESET}")
            return 1
        if not ready:
            print(
                f"  {YELLOW}{BACKLOG_FILE} has no tasks. "
                f"Add tasks to {controller.backlog_path} first.{RESET}"
            )
            return 1

    store = SessionStore(ralph_dir, git)
    if args.reset:
        await store.clear_session()
        log("Session reset")
    elif not args.resume and await store.can_resume():
        log(f"{DIM}A previous session has a checkpoint; pass --resume to continue it{RESET}")

    branch = None
    if args.branch:
        if await git.create_branch(args.branch):
            branch = args.branch
        else:
            log(f"{YELLOW}Could not switch to branch {args.branch}; staying on current{RESET}")

    plugins = [] if args.no_plugins else load_plugins(ralph_dir)
    if plugins:
        log(f"Loaded plugins: {', '.join(p.name for p in plugins)}")

    cancel = asyncio.Event()
    loop = SessionLoop(
        config,
        store,
        controller,
        PluginDispatcher(plugins),
        repo_root=repo_root,
        verbose=args.verbose,
        observers=[ConsoleObserver()],
        cancel=cancel,
        log_dir=(ralph_dir / config.output_dir) if config.save_output else None,
    )

    event_loop = asyncio.get_running_loop()

    def handle_interrupt() -> None:
        if cancel.is_set():
            log(f"{RED}Force quit.{RESET}")
            event_loop.stop()
            return
        cancel.set()
        log(f"{YELLOW}Stopping current iteration... (Ctrl+C again to force){RESET}")

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            event_loop.add_signal_handler(sig, handle_interrupt)
        except (NotImplementedError, RuntimeError):
            pass

    print_banner(config, iterations, ralph_dir, args.resume)
    outcome = await loop.run(iterations, resume=args.resume, branch=branch)
    print_summary(outcome, config)

    return 0 if outcome.phase in (Phase.COMPLETED, Phase.STOPPED) else 1


def main() -> None:
    """Entry point for the ralph-loop CLI."""
    try:
        code = asyncio.run(async_main())
    except KeyboardInterrupt:
        print(f"\n{DIM}Interrupted.{RESET}", flush=True)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
