"""Configuration file loading and merging for turing.

Reads TOML config from ~/.config/turing/config.toml (global) and
<base_dir>/turing.toml (project). Precedence: CLI > environment > project >
global > defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .gateway import DEFAULT_MODEL
from .executors import DEFAULT_COMMAND_TIMEOUT

_UNSET = object()  # Sentinel for "not set by CLI"

API_KEY_ENV = "GEMINI_API_KEY"
MODEL_ENV = "GEMINI_MODEL"


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "model": str,
    "api_key": str,
    "system_prompt": str,
    "no_system_prompt": bool,
    "temperature": (int, float),
    "max_output_tokens": int,
    "command_timeout": int,
    "debug_log": str,
    "color": bool,
    "quiet": bool,
    "yolo": bool,
}

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "model": DEFAULT_MODEL,
    "api_key": None,
    "system_prompt": None,
    "no_system_prompt": False,
    "temperature": None,
    "max_output_tokens": None,
    "command_timeout": DEFAULT_COMMAND_TIMEOUT,
    "debug_log": None,
    "color": False,
    "no_color": False,
    "quiet": False,
    "yolo": False,
}


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "turing"
    return Path.home() / ".config" / "turing"


def _type_name(expected: type | tuple[type, ...]) -> str:
    """Format an expected type spec as a human-readable string."""
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate types and mutual exclusions in a parsed config dict.

    Raises ConfigError for type mismatches or invalid combinations.
    Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int, so reject bools for non-bool fields explicitly.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )

    if config.get("system_prompt") and config.get("no_system_prompt"):
        raise ConfigError(
            f"{source}: 'system_prompt' and 'no_system_prompt' are mutually exclusive"
        )
    if "command_timeout" in config and config["command_timeout"] < 1:
        raise ConfigError(f"{source}: 'command_timeout' must be at least 1")


def _resolve_paths(config: dict, config_dir: Path) -> None:
    """Resolve a relative debug_log path against the config file's directory."""
    if "debug_log" in config:
        p = Path(config["debug_log"]).expanduser()
        if not p.is_absolute():
            p = config_dir / p
        config["debug_log"] = str(p)


def _git_root(path: Path) -> Path | None:
    """Return the nearest ancestor of path holding a .git entry, if any."""
    for parent in path.parents:
        if (parent / ".git").exists():
            return parent
    return None


def _warn_committed_key(config: dict, config_path: Path) -> None:
    """A project turing.toml inside a repository may end up in version control."""
    if "api_key" not in config:
        return
    repo = _git_root(config_path)
    if repo is not None:
        print(
            f"warning: {config_path}: this file is inside the repository at {repo}, "
            f"so its 'api_key' could be committed. Put the key in {API_KEY_ENV} "
            "or in a git-ignored .env file instead.",
            file=sys.stderr,
        )


def _read_toml(path: Path) -> dict:
    """Parse and validate one config file; a missing file counts as empty."""
    label = str(path)
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except (FileNotFoundError, IsADirectoryError):
        return {}
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e

    _validate_config(config, label)
    known = {}
    for key, value in config.items():
        if key in CONFIG_KEYS:
            known[key] = value
    return known


# --- Public API ---


def load_config(base_dir: Path) -> dict:
    """Load and merge global + project config.

    Returns a flat dict with only the keys that were actually set in
    config files (no defaults injected).
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _read_toml(global_path)
    if global_config:
        _resolve_paths(global_config, global_path.parent)

    project_path = Path(base_dir).resolve() / "turing.toml"
    project_config = _read_toml(project_path)
    if project_config:
        _warn_committed_key(project_config, project_path)
        _resolve_paths(project_config, project_path.parent)

    merged = {**global_config, **project_config}

    # Re-validate mutual exclusion on merged result (could conflict across files)
    if merged.get("system_prompt") and merged.get("no_system_prompt"):
        raise ConfigError(
            "'system_prompt' and 'no_system_prompt' are mutually exclusive "
            "(set across global and project config)"
        )
    return merged


def apply_env_to_args(args: argparse.Namespace, environ=None) -> None:
    """Fill model and api_key from the environment where the CLI left them unset."""
    environ = os.environ if environ is None else environ
    for dest, var in (("api_key", API_KEY_ENV), ("model", MODEL_ENV)):
        value = environ.get(var)
        if value and getattr(args, dest, _UNSET) is _UNSET:
            setattr(args, dest, value)


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to argparse namespace where CLI didn't set a value.

    After processing all config keys, sweeps remaining _UNSET sentinels and
    replaces them with hardcoded defaults from _ARGPARSE_DEFAULTS.
    """

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key controls the mutually exclusive --color/--no-color pair
    if "color" in config:
        if _is_unset("color") and _is_unset("no_color"):
            args.color = config["color"]
            args.no_color = not config["color"]

    for key, value in config.items():
        if key == "color":
            continue
        if _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


def require_api_key(args: argparse.Namespace) -> str:
    """Return the resolved credential; its absence is fatal at startup."""
    key = getattr(args, "api_key", None)
    if not key:
        raise ConfigError(
            f"{API_KEY_ENV} not found. Set it in your environment, in a .env file, "
            "or pass --api-key."
        )
    return key


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# Turing configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'<project>/turing.toml' if project else '~/.config/turing/config.toml'}",
        "#",
        "# CLI flags and environment variables override these values.",
        "",
        "# --- Model ---",
        f'# model = "{DEFAULT_MODEL}"',
        f'# api_key = "..."                 # prefer the {API_KEY_ENV} env var',
        "# temperature = 1.0",
        "# max_output_tokens = 8192",
        '# system_prompt = "You are a helpful assistant."',
        "# no_system_prompt = false",
        "",
        "# --- Actions ---",
        f"# command_timeout = {DEFAULT_COMMAND_TIMEOUT}",
        "# yolo = false                    # one-shot mode: confirm every action",
        "",
        "# --- Output ---",
        '# debug_log = "debug.log"',
        "# color = true       # true = force color, false = force no-color, absent = auto",
        "# quiet = false",
        "",
    ]
    return "\n".join(lines)
