"""Tests for the command-line entry point and one-shot mode."""

import asyncio
import json
import logging
import sys
import types

import pytest

from turing import cli, fmt
from turing.config import _UNSET
from turing.errors import AgentError
from turing.executors import Executors, ShellResult
from turing.gateway import ModelGateway
from turing.orchestrator import Orchestrator


def _make_tool_call(name, arguments, call_id="call_1"):
    tc = types.SimpleNamespace()
    tc.id = call_id
    tc.function = types.SimpleNamespace(name=name, arguments=json.dumps(arguments))
    return tc


def _make_response(content=None, tool_calls=None):
    msg = types.SimpleNamespace(content=content, tool_calls=tool_calls)
    return types.SimpleNamespace(choices=[types.SimpleNamespace(message=msg)])


class FakeCompletion:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    async def __call__(self, **kwargs):
        self.requests.append(kwargs)
        return self.responses.pop(0)


@pytest.fixture(autouse=True)
def _restore_output_state(monkeypatch):
    """main() and configure_logging() reconfigure module-level output state."""
    monkeypatch.setattr(fmt, "_console", fmt._console)
    monkeypatch.setattr(fmt, "_quiet", fmt._quiet)
    logger = logging.getLogger("turing")
    handlers, propagate, level = list(logger.handlers), logger.propagate, logger.level
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers[:] = handlers
    logger.propagate = propagate
    logger.setLevel(level)


def _orchestrator(tmp_path, completion, shell_calls=None):
    async def shell(command, cwd, timeout):
        if shell_calls is not None:
            shell_calls.append(command)
        return ShellResult(error=None, stdout=f"ran {command}\n", stderr="")

    gateway = ModelGateway("test/model", completion=completion)
    executors = Executors(str(tmp_path), shell=shell)
    return Orchestrator(gateway, executors)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class TestParser:
    def test_defaults_are_unset(self):
        args = cli.build_parser().parse_args([])
        assert args.question is None
        assert args.model is _UNSET
        assert args.yolo is _UNSET
        assert args.base_dir == "."

    def test_question_and_flags(self):
        args = cli.build_parser().parse_args(
            ["--model", "openai/gpt-4o", "--yolo", "-q", "what is here?"]
        )
        assert args.question == "what is here?"
        assert args.model == "openai/gpt-4o"
        assert args.yolo is True
        assert args.quiet is True

    def test_system_prompt_flags_exclusive(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["--system-prompt", "x", "--no-system-prompt"])

    def test_color_flags_exclusive(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["--color", "--no-color"])


# ---------------------------------------------------------------------------
# System prompt and logging
# ---------------------------------------------------------------------------


def test_default_system_prompt_mentions_cwd(tmp_path):
    prompt = cli.build_system_prompt(str(tmp_path), None, False)
    assert str(tmp_path.resolve()) in prompt
    assert "{cwd}" not in prompt


def test_custom_and_disabled_system_prompt(tmp_path):
    assert cli.build_system_prompt(str(tmp_path), "be terse", False) == "be terse"
    assert cli.build_system_prompt(str(tmp_path), None, True) is None


def test_debug_log_written(tmp_path):
    log_file = tmp_path / "debug.log"
    cli.configure_logging(str(log_file))
    logging.getLogger("turing.test").debug("hello from test")
    for handler in logging.getLogger("turing").handlers:
        handler.flush()
    assert "hello from test" in log_file.read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# One-shot mode
# ---------------------------------------------------------------------------


class TestRunOnce:
    def test_plain_answer(self, tmp_path):
        orch = _orchestrator(tmp_path, FakeCompletion(_make_response("42")))
        answer, blocked = asyncio.run(cli.run_once(orch, "meaning?"))
        assert answer == "42"
        assert blocked is None

    def test_safe_command_then_answer(self, tmp_path):
        calls = []
        completion = FakeCompletion(
            _make_response(
                None, [_make_tool_call("run_command", {"command": "ls", "safe": True})]
            ),
            _make_response("One file."),
        )
        orch = _orchestrator(tmp_path, completion, calls)
        answer, blocked = asyncio.run(cli.run_once(orch, "list"))
        assert answer == "One file."
        assert calls == ["ls"]

    def test_unsafe_command_blocks(self, tmp_path):
        calls = []
        completion = FakeCompletion(
            _make_response(
                None,
                [_make_tool_call("run_command", {"command": "rm x", "safe": False})],
            )
        )
        orch = _orchestrator(tmp_path, completion, calls)
        answer, blocked = asyncio.run(cli.run_once(orch, "delete x"))
        assert answer is None
        assert blocked.name == "run_command"
        assert calls == []

    def test_yolo_confirms(self, tmp_path):
        calls = []
        completion = FakeCompletion(
            _make_response(
                None,
                [_make_tool_call("run_command", {"command": "rm x", "safe": False})],
            ),
            _make_response("Removed."),
        )
        orch = _orchestrator(tmp_path, completion, calls)
        answer, blocked = asyncio.run(cli.run_once(orch, "delete x", yolo=True))
        assert answer == "Removed."
        assert blocked is None
        assert calls == ["rm x"]

    def test_empty_question(self, tmp_path):
        orch = _orchestrator(tmp_path, FakeCompletion())
        with pytest.raises(AgentError):
            asyncio.run(cli.run_once(orch, "  "))


# ---------------------------------------------------------------------------
# main()
# ---------------------------------------------------------------------------


class TestMain:
    @pytest.fixture(autouse=True)
    def _isolated(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
        # setenv first so undo also removes anything load_dotenv() added
        for var in ("GEMINI_API_KEY", "GEMINI_MODEL"):
            monkeypatch.setenv(var, "")
            monkeypatch.delenv(var)
        monkeypatch.chdir(tmp_path)

    def test_missing_api_key_exits_1(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["turing", "hello"])
        with pytest.raises(SystemExit) as exc:
            cli.main()
        assert exc.value.code == 1
        assert "GEMINI_API_KEY" in capsys.readouterr().err

    def test_init_config(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["turing", "--init-config", "--project"])
        with pytest.raises(SystemExit) as exc:
            cli.main()
        assert exc.value.code == 0
        assert "turing.toml" in capsys.readouterr().out

    def test_one_shot_prints_answer(self, tmp_path, monkeypatch, capsys):
        completion = FakeCompletion(_make_response("Hi there."))
        monkeypatch.setenv("GEMINI_API_KEY", "test-key")
        monkeypatch.setattr(sys, "argv", ["turing", "-q", "hello"])
        monkeypatch.setattr(
            cli,
            "ModelGateway",
            lambda model, **kw: ModelGateway(model, completion=completion, **kw),
        )
        cli.main()
        assert capsys.readouterr().out.strip() == "Hi there."
        assert completion.requests[0]["api_key"] == "test-key"

    def test_one_shot_blocked_exits_3(self, tmp_path, monkeypatch):
        completion = FakeCompletion(
            _make_response(
                None,
                [_make_tool_call("run_command", {"command": "rm x", "safe": False})],
            )
        )
        monkeypatch.setenv("GEMINI_API_KEY", "test-key")
        monkeypatch.setattr(sys, "argv", ["turing", "-q", "delete x"])
        monkeypatch.setattr(
            cli,
            "ModelGateway",
            lambda model, **kw: ModelGateway(model, completion=completion, **kw),
        )
        with pytest.raises(SystemExit) as exc:
            cli.main()
        assert exc.value.code == cli.EXIT_NEEDS_CONFIRMATION

    def test_dotenv_supplies_api_key(self, tmp_path, monkeypatch, capsys):
        (tmp_path / ".env").write_text("GEMINI_API_KEY=from-dotenv\n", encoding="utf-8")
        completion = FakeCompletion(_make_response("ok"))
        monkeypatch.setattr(sys, "argv", ["turing", "-q", "hello"])
        monkeypatch.setattr(
            cli,
            "ModelGateway",
            lambda model, **kw: ModelGateway(model, completion=completion, **kw),
        )
        cli.main()
        assert completion.requests[0]["api_key"] == "from-dotenv"
