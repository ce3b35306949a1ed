"""Tests for turing.config: TOML loading, merging, environment and CLI integration."""

import argparse
import tomllib
from pathlib import Path

import pytest

from turing.config import (
    _UNSET,
    ConfigError,
    apply_config_to_args,
    apply_env_to_args,
    generate_config,
    global_config_dir,
    load_config,
    require_api_key,
)
from turing.executors import DEFAULT_COMMAND_TIMEOUT
from turing.gateway import DEFAULT_MODEL


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_toml(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _make_args(**overrides):
    """Build a namespace mimicking build_parser() with _UNSET sentinels."""
    defaults = {
        "model": _UNSET,
        "api_key": _UNSET,
        "system_prompt": _UNSET,
        "no_system_prompt": _UNSET,
        "temperature": _UNSET,
        "max_output_tokens": _UNSET,
        "command_timeout": _UNSET,
        "debug_log": _UNSET,
        "yolo": _UNSET,
        "color": _UNSET,
        "no_color": _UNSET,
        "quiet": _UNSET,
    }
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


@pytest.fixture
def no_global(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "empty"))


# ===========================================================================
# Config loading
# ===========================================================================


class TestLoadConfig:
    def test_missing_files_returns_empty(self, tmp_path, no_global):
        assert load_config(tmp_path) == {}

    def test_global_only(self, tmp_path, monkeypatch):
        global_dir = tmp_path / "global_cfg"
        monkeypatch.setenv("XDG_CONFIG_HOME", str(global_dir))
        _write_toml(global_dir / "turing" / "config.toml", 'model = "openai/gpt-4o"\n')
        result = load_config(tmp_path / "project")
        assert result["model"] == "openai/gpt-4o"

    def test_project_only(self, tmp_path, no_global):
        _write_toml(tmp_path / "turing.toml", "command_timeout = 30\n")
        assert load_config(tmp_path)["command_timeout"] == 30

    def test_project_overrides_global(self, tmp_path, monkeypatch):
        global_dir = tmp_path / "global"
        monkeypatch.setenv("XDG_CONFIG_HOME", str(global_dir))
        _write_toml(global_dir / "turing" / "config.toml", "command_timeout = 10\n")
        _write_toml(tmp_path / "turing.toml", "command_timeout = 50\n")
        assert load_config(tmp_path)["command_timeout"] == 50

    def test_unknown_keys_warn(self, tmp_path, no_global, capsys):
        _write_toml(tmp_path / "turing.toml", 'unknown_key = "hi"\n')
        result = load_config(tmp_path)
        assert "unknown_key" not in result
        assert "unknown config key" in capsys.readouterr().err

    def test_wrong_type_raises(self, tmp_path, no_global):
        _write_toml(tmp_path / "turing.toml", 'command_timeout = "soon"\n')
        with pytest.raises(ConfigError, match="command_timeout.*expected int.*got str"):
            load_config(tmp_path)

    def test_bool_for_int_field_raises(self, tmp_path, no_global):
        _write_toml(tmp_path / "turing.toml", "max_output_tokens = true\n")
        with pytest.raises(ConfigError, match="got bool"):
            load_config(tmp_path)

    def test_int_for_float_field(self, tmp_path, no_global):
        _write_toml(tmp_path / "turing.toml", "temperature = 1\n")
        assert load_config(tmp_path)["temperature"] == 1

    def test_timeout_must_be_positive(self, tmp_path, no_global):
        _write_toml(tmp_path / "turing.toml", "command_timeout = 0\n")
        with pytest.raises(ConfigError, match="at least 1"):
            load_config(tmp_path)

    def test_invalid_toml_raises(self, tmp_path, no_global):
        _write_toml(tmp_path / "turing.toml", "invalid = [\n")
        with pytest.raises(ConfigError, match="invalid TOML"):
            load_config(tmp_path)

    def test_system_prompt_conflict_across_files(self, tmp_path, monkeypatch):
        global_dir = tmp_path / "global"
        monkeypatch.setenv("XDG_CONFIG_HOME", str(global_dir))
        _write_toml(global_dir / "turing" / "config.toml", 'system_prompt = "hi"\n')
        _write_toml(tmp_path / "turing.toml", "no_system_prompt = true\n")
        with pytest.raises(ConfigError, match="mutually exclusive"):
            load_config(tmp_path)

    def test_relative_debug_log_resolves_to_config_dir(self, tmp_path, no_global):
        _write_toml(tmp_path / "turing.toml", 'debug_log = "logs/debug.log"\n')
        result = load_config(tmp_path)
        assert result["debug_log"] == str(tmp_path.resolve() / "logs" / "debug.log")

    def test_directory_named_like_config_ignored(self, tmp_path, no_global):
        (tmp_path / "turing.toml").mkdir()
        assert load_config(tmp_path) == {}


class TestGenerateConfig:
    def test_is_valid_toml(self):
        lines = []
        for line in generate_config().splitlines():
            stripped = line.lstrip("# ").strip()
            if "=" in stripped and not stripped.startswith("--"):
                lines.append(stripped)
        parsed = tomllib.loads("\n".join(lines))
        assert parsed["model"] == DEFAULT_MODEL

    def test_project_flag(self):
        assert "Project config" in generate_config(project=True)
        assert "Global config" in generate_config(project=False)


# ===========================================================================
# Applying config, environment and defaults
# ===========================================================================


class TestApplyConfig:
    def test_config_fills_unset(self):
        args = _make_args()
        apply_config_to_args(args, {"command_timeout": 5})
        assert args.command_timeout == 5

    def test_cli_beats_config(self):
        args = _make_args(model="cli/model")
        apply_config_to_args(args, {"model": "config/model"})
        assert args.model == "cli/model"

    def test_sentinels_resolve_to_defaults(self):
        args = _make_args()
        apply_config_to_args(args, {})
        assert args.model == DEFAULT_MODEL
        assert args.command_timeout == DEFAULT_COMMAND_TIMEOUT
        assert args.api_key is None
        assert args.yolo is False
        assert args.quiet is False

    def test_color_config_false(self):
        args = _make_args()
        apply_config_to_args(args, {"color": False})
        assert args.color is False
        assert args.no_color is True

    def test_no_color_cli_overrides_config(self):
        args = _make_args(no_color=True)
        apply_config_to_args(args, {"color": True})
        assert args.no_color is True
        assert args.color is False


class TestEnvironment:
    def test_env_fills_key_and_model(self):
        args = _make_args()
        apply_env_to_args(args, {"GEMINI_API_KEY": "k", "GEMINI_MODEL": "gemini/x"})
        assert args.api_key == "k"
        assert args.model == "gemini/x"

    def test_cli_beats_env(self):
        args = _make_args(api_key="cli-key")
        apply_env_to_args(args, {"GEMINI_API_KEY": "env-key"})
        assert args.api_key == "cli-key"

    def test_env_beats_config(self):
        args = _make_args()
        apply_env_to_args(args, {"GEMINI_MODEL": "env/model"})
        apply_config_to_args(args, {"model": "config/model"})
        assert args.model == "env/model"

    def test_missing_api_key_is_fatal(self):
        args = _make_args()
        apply_config_to_args(args, {})
        with pytest.raises(ConfigError, match="GEMINI_API_KEY"):
            require_api_key(args)

    def test_api_key_present(self):
        assert require_api_key(_make_args(api_key="k")) == "k"


class TestApiKeyWarning:
    def test_api_key_in_git_repo_warns(self, tmp_path, no_global, capsys):
        (tmp_path / ".git").mkdir()
        _write_toml(tmp_path / "turing.toml", 'api_key = "secret"\n')
        load_config(tmp_path)
        err = capsys.readouterr().err
        assert "api_key" in err
        assert ".env" in err
        assert "GEMINI_API_KEY" in err

    def test_nested_project_finds_repo_root(self, tmp_path, no_global, capsys):
        (tmp_path / ".git").mkdir()
        project = tmp_path / "sub" / "project"
        _write_toml(project / "turing.toml", 'api_key = "secret"\n')
        load_config(project)
        assert str(tmp_path) in capsys.readouterr().err

    def test_no_repo_no_warning(self, tmp_path, no_global, capsys):
        _write_toml(tmp_path / "turing.toml", 'api_key = "secret"\n')
        load_config(tmp_path)
        assert "api_key" not in capsys.readouterr().err


class TestGlobalConfigDir:
    def test_respects_xdg(self, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", "/custom/xdg")
        assert global_config_dir() == Path("/custom/xdg/turing")

    def test_default_home(self, monkeypatch):
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        assert global_config_dir() == Path.home() / ".config" / "turing"
