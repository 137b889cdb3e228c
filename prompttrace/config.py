"""Configuration: a JSON file in the prompttrace home, merged over defaults."""

import json
import logging
import os
from pathlib import Path

from .modes import ExecutionMode

logger = logging.getLogger(__name__)

HOME_ENV_VAR = "PROMPTTRACE_HOME"

DEFAULTS = {
    "output_dir": None,  # resolved to <home>/output
    "max_size_mb": 10,
    "kill_timeout": 3.0,
    "cols": 80,
    "rows": 24,
    "retention_days": 30,
    "strip_ansi": False,
    "terminal_commands": ["claude"],
}

_TRUE = ("1", "true", "yes", "y", "on")
_FALSE = ("0", "false", "no", "n", "off")


def home_dir():
    """The prompttrace home: $PROMPTTRACE_HOME or ~/.prompttrace."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".prompttrace"


def config_file():
    return home_dir() / "config.json"


def default_output_dir():
    return home_dir() / "output"


def load_config():
    """Return the effective configuration (defaults plus the saved file)."""
    config = dict(DEFAULTS)
    path = config_file()
    if path.exists():
        try:
            with open(path, "r") as f:
                saved = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable config %s: %s", path, e)
        else:
            if isinstance(saved, dict):
                config.update({k: v for k, v in saved.items() if k in DEFAULTS})
            else:
                logger.warning("Ignoring config %s: not a JSON object", path)
    if not config.get("output_dir"):
        config["output_dir"] = str(default_output_dir())
    return config


def save_config(config):
    path = config_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(config, f, indent=2)
    return path


def _positive_int(key, value):
    try:
        number = int(value)
    except ValueError:
        raise ValueError(f"Invalid value for {key}: must be an integer")
    if number <= 0:
        raise ValueError(f"Invalid value for {key}: must be positive")
    return number


def _positive_float(key, value):
    try:
        number = float(value)
    except ValueError:
        raise ValueError(f"Invalid value for {key}: must be a number")
    if number <= 0:
        raise ValueError(f"Invalid value for {key}: must be positive")
    return number


def _boolean(key, value):
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"Invalid value for {key}: use true or false")


def _command_list(key, value):
    return [name.strip() for name in value.split(",") if name.strip()]


_PARSERS = {
    "output_dir": lambda key, value: str(Path(value).expanduser()),
    "max_size_mb": _positive_float,
    "kill_timeout": _positive_float,
    "cols": _positive_int,
    "rows": _positive_int,
    "retention_days": _positive_int,
    "strip_ansi": _boolean,
    "terminal_commands": _command_list,
}


def set_value(config, key, raw):
    """Parse ``raw`` for ``key`` and store it in ``config``. Returns the value."""
    if key not in _PARSERS:
        valid = ", ".join(sorted(_PARSERS))
        raise ValueError(f"Invalid key: {key}. Use one of: {valid}")
    value = _PARSERS[key](key, raw)
    config[key] = value
    return value


def command_modes(config):
    """Mode table for ModeSelector built from ``terminal_commands``."""
    return {name: ExecutionMode.PTY_DIRECT for name in config.get("terminal_commands", [])}


def max_output_bytes(config):
    return int(float(config["max_size_mb"]) * 1024 * 1024)
