"""Plugin discovery and lifecycle hook dispatch.

A plugin is any object (or module) exposing one or more of the hook
functions below. Hooks may be plain functions or coroutines. They run in
registration order and a failing hook is logged, never propagated.

    # .ralph/plugins/notify.py
    name = "notify"

    async def done(ctx):
        ...
"""

from __future__ import annotations

import importlib.util
import inspect
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import RalphConfig
from .display import warn
from .models import IterationRecord, Session

BEFORE_RUN = "before_run"
BEFORE_ITERATION = "before_iteration"
AFTER_ITERATION = "after_iteration"
DONE = "done"
ON_ERROR = "on_error"
HOOKS = (BEFORE_RUN, BEFORE_ITERATION, AFTER_ITERATION, DONE, ON_ERROR)

PLUGINS_DIR = "plugins"
PLUGINS_CONFIG = "plugins.json"


@dataclass
class PluginContext:
    config: RalphConfig
    # a copy; None only for on_error when the session could not be created
    session: Session | None
    repo_root: Path
    branch: str
    verbose: bool = False
    dry_run: bool = False


@dataclass
class IterationContext(PluginContext):
    iteration: int = 0
    total_iterations: int = 0
    result: IterationRecord | None = None


@dataclass
class Plugin:
    name: str
    target: Any

    def hook(self, hook_name: str):
        fn = getattr(self.target, hook_name, None)
        return fn if callable(fn) else None


def as_plugin(target: Any, default_name: str) -> Plugin | None:
    """Validate a candidate structurally; None if it exposes no hooks."""
    if not any(callable(getattr(target, h, None)) for h in HOOKS):
        return None
    name = getattr(target, "name", None)
    if not isinstance(name, str) or not name:
        name = default_name
    return Plugin(name=name, target=target)


def load_plugin_file(path: Path) -> Plugin | None:
    module_name = f"ralph_plugin_{path.stem}"
    try:
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            warn(f"Plugin at {path} cannot be imported")
            return None
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
    except Exception as e:
        warn(f"Failed to load plugin from {path}: {e}")
        return None

    target = getattr(module, "plugin", module)
    plugin = as_plugin(target, path.stem)
    if plugin is None:
        warn(f"Plugin at {path} defines none of: {', '.join(HOOKS)}")
    return plugin


def load_plugins(ralph_dir: Path) -> list[Plugin]:
    """Load .ralph/plugins/*.py, then any extra paths listed in plugins.json."""
    plugins: list[Plugin] = []
    seen: set[Path] = set()

    plugins_dir = ralph_dir / PLUGINS_DIR
    if plugins_dir.is_dir():
        for path in sorted(plugins_dir.glob("*.py")):
            if path.name.startswith("_"):
                continue
            seen.add(path.resolve())
            plugin = load_plugin_file(path)
            if plugin is not None:
                plugins.append(plugin)

    config_path = ralph_dir / PLUGINS_CONFIG
    try:
        refs = json.loads(config_path.read_text()).get("plugins", [])
    except FileNotFoundError:
        refs = []
    except (OSError, json.JSONDecodeError, AttributeError) as e:
        warn(f"Invalid {PLUGINS_CONFIG}: {e}")
        refs = []

    for ref in refs:
        if not isinstance(ref, str):
            continue
        path = Path(ref) if Path(ref).is_absolute() else ralph_dir / ref
        if path.resolve() in seen or any(p.name == ref for p in plugins):
            continue
        seen.add(path.resolve())
        plugin = load_plugin_file(path)
        if plugin is not None:
            plugins.append(plugin)

    return plugins


class PluginDispatcher:
    """Invokes lifecycle hooks on every registered plugin, isolating failures."""

    def __init__(self, plugins: list[Plugin] | None = None) -> None:
        self.plugins = list(plugins or [])

    def register(self, target: Any, name: str | None = None) -> Plugin | None:
        plugin = as_plugin(target, name or getattr(target, "__name__", "plugin"))
        if plugin is not None:
            self.plugins.append(plugin)
        return plugin

    async def run_hook(
        self,
        hook_name: str,
        context: PluginContext,
        error: BaseException | None = None,
    ) -> None:
        for plugin in self.plugins:
            fn = plugin.hook(hook_name)
            if fn is None:
                continue
            try:
                if hook_name == ON_ERROR:
                    outcome = fn(context, error)
                else:
                    outcome = fn(context)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                warn(f'Plugin "{plugin.name}" error in {hook_name}: {e}')

    async def before_run(self, context: PluginContext) -> None:
        await self.run_hook(BEFORE_RUN, context)

    async def before_iteration(self, context: IterationContext) -> None:
        await self.run_hook(BEFORE_ITERATION, context)

    async def after_iteration(self, context: IterationContext) -> None:
        await self.run_hook(AFTER_ITERATION, context)

    async def done(self, context: PluginContext) -> None:
        await self.run_hook(DONE, context)

    async def on_error(self, context: PluginContext, error: BaseException) -> None:
        await self.run_hook(ON_ERROR, context, error)
