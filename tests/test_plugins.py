"""Tests for plugin loading and hook dispatch."""

import json
from pathlib import Path
from types import SimpleNamespace

import pytest

from ralph_loop.config import RalphConfig
from ralph_loop.models import Session
from ralph_loop.plugins import (
    PluginContext,
    PluginDispatcher,
    as_plugin,
    load_plugin_file,
    load_plugins,
)


def context(tmp_path: Path) -> PluginContext:
    session = Session(id="s1", started_at="t", start_commit="abc", branch="main")
    return PluginContext(config=RalphConfig(), session=session, repo_root=tmp_path, branch="main")


def test_object_without_hooks_is_rejected():
    assert as_plugin(SimpleNamespace(name="x", other=lambda ctx: None), "x") is None
    assert as_plugin(SimpleNamespace(done="not callable"), "x") is None


def test_name_falls_back_to_default():
    plugin = as_plugin(SimpleNamespace(done=lambda ctx: None), "fallback")
    assert plugin is not None
    assert plugin.name == "fallback"


@pytest.mark.asyncio
async def test_hooks_run_in_registration_order(tmp_path):
    calls = []

    async def async_done(ctx):
        calls.append("first")

    dispatcher = PluginDispatcher()
    dispatcher.register(SimpleNamespace(name="a", done=async_done))
    dispatcher.register(SimpleNamespace(name="b", done=lambda ctx: calls.append("second")))
    dispatcher.register(SimpleNamespace(name="c", before_run=lambda ctx: calls.append("nope")))

    await dispatcher.done(context(tmp_path))
    assert calls == ["first", "second"]


@pytest.mark.asyncio
async def test_failing_hook_is_isolated(tmp_path, capsys):
    calls = []

    def boom(ctx):
        raise RuntimeError("kaboom")

    dispatcher = PluginDispatcher()
    dispatcher.register(SimpleNamespace(name="broken", before_run=boom))
    dispatcher.register(SimpleNamespace(name="ok", before_run=lambda ctx: calls.append(ctx.branch)))

    await dispatcher.before_run(context(tmp_path))
    assert calls == ["main"]
    out = capsys.readouterr().out
    assert 'Plugin "broken" error in before_run: kaboom' in out


@pytest.mark.asyncio
async def test_on_error_receives_error(tmp_path):
    seen = []
    dispatcher = PluginDispatcher()
    dispatcher.register(SimpleNamespace(name="p", on_error=lambda ctx, err: seen.append(err)))
    err = ValueError("bad")
    await dispatcher.on_error(context(tmp_path), err)
    assert seen == [err]


def test_load_plugins_from_directory_and_config(ralph_dir: Path, tmp_path: Path):
    plugins_dir = ralph_dir / "plugins"
    plugins_dir.mkdir()
    (plugins_dir / "b_notify.py").write_text('name = "notify"\n\ndef done(ctx):\n    pass\n')
    (plugins_dir / "a_audit.py").write_text("async def after_iteration(ctx):\n    pass\n")
    (plugins_dir / "_helpers.py").write_text("def done(ctx):\n    pass\n")
    (plugins_dir / "empty.py").write_text("VALUE = 1\n")
    (plugins_dir / "broken.py").write_text("raise ImportError('missing dep')\n")

    extra = tmp_path / "extra_plugin.py"
    extra.write_text(
        "class Extra:\n"
        "    name = 'extra'\n"
        "    def before_run(self, ctx):\n"
        "        pass\n"
        "\n"
        "plugin = Extra()\n"
    )
    (ralph_dir / "plugins.json").write_text(
        json.dumps({"plugins": [str(extra), "plugins/b_notify.py", 42]})
    )

    plugins = load_plugins(ralph_dir)
    assert [p.name for p in plugins] == ["a_audit", "notify", "extra"]


def test_load_plugins_without_plugin_dir(ralph_dir: Path):
    assert load_plugins(ralph_dir) == []


def test_invalid_plugins_json_is_ignored(ralph_dir: Path, capsys):
    (ralph_dir / "plugins.json").write_text("{not json")
    assert load_plugins(ralph_dir) == []
    assert "Invalid plugins.json" in capsys.readouterr().out


def test_load_plugin_file_missing_path(tmp_path: Path):
    assert load_plugin_file(tmp_path / "nope.py") is None
