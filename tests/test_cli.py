"""Tests for argument handling and the pre-run paths of the CLI."""

import pytest

from ralph_loop.cli import apply_overrides, async_main, build_parser
from ralph_loop.config import RalphConfig
from ralph_loop.errors import ConfigurationError


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.task is None
    assert args.iterations is None
    assert not args.resume
    assert not args.dry_run


def test_parser_flags():
    args = build_parser().parse_args(
        ["Fix the tests", "-n", "3", "--resume", "--max-cost", "2.5", "--model", "opus", "-v"]
    )
    assert args.task == "Fix the tests"
    assert args.iterations == 3
    assert args.resume
    assert args.max_cost == 2.5
    assert args.model == "opus"
    assert args.verbose


def test_apply_overrides():
    args = build_parser().parse_args(["--max-cost", "3", "--model", "haiku", "--logs"])
    config = apply_overrides(RalphConfig(), args)
    assert config.max_cost_per_session == 3.0
    assert config.model == "haiku"
    assert config.save_output is True


def test_apply_overrides_rejects_non_positive_cost():
    args = build_parser().parse_args(["--max-cost", "0"])
    with pytest.raises(ConfigurationError):
        apply_overrides(RalphConfig(), args)


@pytest.mark.asyncio
async def test_dry_run_does_not_touch_session(ralph_dir, capsys):
    code = await async_main(["--ralph-dir", str(ralph_dir), "--dry-run", "-n", "4"])
    assert code == 0
    out = capsys.readouterr().out
    assert "Dry run" in out
    assert "0/2 complete" in out
    assert not (ralph_dir / "session.json").exists()


@pytest.mark.asyncio
async def test_preflight_rejects_empty_backlog(ralph_dir, capsys):
    (ralph_dir / "PRD.md").write_text("# PRD\n\n## Tasks\n\n- ...\n")
    code = await async_main(["--ralph-dir", str(ralph_dir)])
    assert code == 1
    assert "has no tasks" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_invalid_iteration_count(ralph_dir, capsys):
    code = await async_main(["--ralph-dir", str(ralph_dir), "-n", "-2"])
    assert code == 1
    assert "--iterations must be at least 1" in capsys.readouterr().out
