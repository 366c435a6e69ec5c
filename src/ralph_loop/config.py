"""Configuration loaded from the .ralph/config key=value file."""

from __future__ import annotations

import re
from dataclasses import dataclass, fields
from pathlib import Path

from .display import warn

CONFIG_FILE = "config"
MAX_DEFAULT_ITERATIONS = 100


@dataclass
class RalphConfig:
    max_retries: int = 3
    default_iterations: int = 10
    max_cost_per_iteration: float | None = None
    max_cost_per_session: float | None = None
    warn_cost_threshold: float | None = None
    save_output: bool = False
    output_dir: str = "logs"
    model: str = "sonnet"
    timeout: int | None = None
    idle_timeout: int | None = None


VALID_KEYS = [f.name.upper() for f in fields(RalphConfig)]


def _strip_value(raw: str) -> str:
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return re.sub(r"\$SCRIPT_DIR/?", "", value)


def _parse_bool(value: str) -> bool:
    return value.lower() == "true" or value == "1"


def _positive_float(value: str) -> float | None:
    try:
        parsed = float(value)
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def _int_in_range(value: str, low: int, high: int | None = None) -> int | None:
    try:
        parsed = int(value)
    except ValueError:
        return None
    if parsed < low or (high is not None and parsed > high):
        return None
    return parsed


def _apply(config: RalphConfig, key: str, value: str, line_no: int) -> None:
    name = key.lower()
    default = getattr(RalphConfig(), name, None)

    def invalid(expected: str) -> None:
        warn(
            f"Invalid value for {key} on line {line_no}: {value!r} "
            f"({expected}). Using default: {default}"
        )

    if name == "max_retries":
        parsed = _int_in_range(value, 0)
        if parsed is None:
            invalid("expected an integer >= 0")
        else:
            config.max_retries = parsed
    elif name == "default_iterations":
        parsed = _int_in_range(value, 1, MAX_DEFAULT_ITERATIONS)
        if parsed is None:
            invalid(f"expected an integer between 1 and {MAX_DEFAULT_ITERATIONS}")
        else:
            config.default_iterations = parsed
    elif name in ("max_cost_per_iteration", "max_cost_per_session", "warn_cost_threshold"):
        parsed_cost = _positive_float(value)
        if parsed_cost is None:
            invalid("expected a positive USD amount such as 0.50")
        else:
            setattr(config, name, parsed_cost)
    elif name in ("timeout", "idle_timeout"):
        parsed = _int_in_range(value, 1)
        if parsed is None:
            invalid("expected a positive number of seconds")
        else:
            setattr(config, name, parsed)
    elif name == "save_output":
        config.save_output = _parse_bool(value)
    elif name in ("output_dir", "model"):
        if not value:
            invalid("must not be empty")
        else:
            setattr(config, name, value)
    else:
        warn(
            f"Unknown config key on line {line_no}: {key} "
            f"(valid keys: {', '.join(VALID_KEYS)})"
        )


def parse_config(text: str) -> RalphConfig:
    """Parse config file contents, warning about bad lines and keeping defaults."""
    config = RalphConfig()
    for line_no, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            warn(f"Invalid config line {line_no}: missing '=' separator ({stripped[:50]!r})")
            continue
        key, _, raw = stripped.partition("=")
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export "):].strip()
        _apply(config, key, _strip_value(raw), line_no)
    return config


def load_config(ralph_dir: Path) -> RalphConfig:
    config_path = ralph_dir / CONFIG_FILE
    try:
        text = config_path.read_text()
    except FileNotFoundError:
        return RalphConfig()
    except OSError as e:
        warn(f"Could not read {config_path}: {e}. Using default configuration.")
        return RalphConfig()
    return parse_config(text)
