"""Command-line entry point: argument parsing, startup and one-shot mode."""

import argparse
import asyncio
import logging
import sys
from importlib import metadata
from pathlib import Path

from . import fmt
from .config import (
    _UNSET,
    apply_config_to_args,
    apply_env_to_args,
    generate_config,
    load_config,
    require_api_key,
)
from .errors import AgentError
from .executors import Executors
from .gateway import ModelGateway
from .models import Mode, Role, ToolCall
from .orchestrator import Orchestrator

DEFAULT_SYSTEM_PROMPT_FILE = Path(__file__).parent / "system_prompt.txt"
MAX_PREVIEW = 500

# Exit codes for one-shot mode
EXIT_NEEDS_CONFIRMATION = 3


def build_parser():
    """Build and return the argument parser.

    Options that can also come from config files default to _UNSET so that
    apply_config_to_args() can tell "not given" from "given".
    """
    parser = argparse.ArgumentParser(
        prog="turing",
        usage="%(prog)s [options] [question]",
        description=(
            "A terminal assistant that can run commands and edit files. "
            "Without a question, starts the interactive interface."
        ),
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "question",
        nargs="?",
        default=None,
        help="Ask a single question and print the answer (one-shot mode).",
    )
    parser.add_argument(
        "--model",
        default=_UNSET,
        help="LiteLLM model identifier (default: gemini/gemini-2.0-flash, or $GEMINI_MODEL).",
    )
    parser.add_argument(
        "--api-key",
        default=_UNSET,
        help="API key for the provider (overrides $GEMINI_API_KEY).",
    )
    parser.add_argument(
        "--base-dir",
        default=".",
        help="Working directory for commands and file paths (default: current directory).",
    )

    prompt_group = parser.add_mutually_exclusive_group()
    prompt_group.add_argument(
        "--system-prompt",
        default=_UNSET,
        help="System instruction to send instead of the built-in one.",
    )
    prompt_group.add_argument(
        "--no-system-prompt",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Omit the system instruction entirely.",
    )

    parser.add_argument(
        "--temperature",
        type=float,
        default=_UNSET,
        help="Sampling temperature (default: provider default).",
    )
    parser.add_argument(
        "--max-output-tokens",
        type=int,
        default=_UNSET,
        help="Maximum output tokens per model response (default: provider default).",
    )
    parser.add_argument(
        "--command-timeout",
        type=int,
        default=_UNSET,
        help="Seconds before a shell command is killed (default: 120).",
    )
    parser.add_argument(
        "--debug-log",
        metavar="FILE",
        default=_UNSET,
        help="Write a debug log of model calls and actions to FILE.",
    )
    parser.add_argument(
        "--yolo",
        action="store_const",
        const=True,
        default=_UNSET,
        help="One-shot mode: run actions that need confirmation without asking.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Disable ANSI color even when stderr is a TTY.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_const",
        const=True,
        default=_UNSET,
        help="One-shot mode: suppress progress output, print only the answer.",
    )

    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a template config file and exit.",
    )
    parser.add_argument(
        "--project",
        action="store_true",
        help="With --init-config, print the project (turing.toml) template.",
    )
    return parser


def configure_logging(debug_log: str | None) -> None:
    """Send turing's log records to a file, or nowhere.

    Logging never goes to the terminal: it would corrupt the full-screen UI.
    """
    root = logging.getLogger("turing")
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.propagate = False
    if not debug_log:
        root.addHandler(logging.NullHandler())
        return
    handler = logging.FileHandler(debug_log, mode="w", encoding="utf-8")
    handler.setFormatter(
        logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    )
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)


def build_system_prompt(
    base_dir: str, system_prompt: str | None, no_system_prompt: bool
) -> str | None:
    if no_system_prompt:
        return None
    if system_prompt:
        return system_prompt
    template = DEFAULT_SYSTEM_PROMPT_FILE.read_text(encoding="utf-8")
    return template.replace("{cwd}", str(Path(base_dir).resolve()))


def build_orchestrator(args) -> Orchestrator:
    gateway = ModelGateway(
        args.model,
        api_key=args.api_key,
        system_instruction=build_system_prompt(
            args.base_dir, args.system_prompt, args.no_system_prompt
        ),
        temperature=args.temperature,
        max_output_tokens=args.max_output_tokens,
    )
    executors = Executors(args.base_dir, command_timeout=args.command_timeout)
    return Orchestrator(gateway, executors)


# ---------------------------------------------------------------------------
# One-shot mode
# ---------------------------------------------------------------------------


class ProgressReporter:
    """Prints tool calls and their results to stderr as the transcript changes."""

    def __init__(self, orchestrator: Orchestrator):
        self.orchestrator = orchestrator
        self._announced: set[str] = set()
        self._finished: set[str] = set()

    def __call__(self) -> None:
        for turn in self.orchestrator.transcript:
            for call in turn.tool_calls:
                if call.id not in self._announced:
                    self._announced.add(call.id)
                    if turn.content and call is turn.tool_calls[0]:
                        fmt.assistant_text(turn.content)
                    fmt.tool_call(call.name, call.describe(), safe=call.safe)
                if call.executed and call.id not in self._finished:
                    self._finished.add(call.id)
                    if call.result.startswith("Error:"):
                        fmt.tool_error(call.name, call.result)
                    else:
                        fmt.tool_result(call.name, call.result[:MAX_PREVIEW])


async def run_once(
    orchestrator: Orchestrator, question: str, *, yolo: bool = False
) -> tuple[str | None, ToolCall | None]:
    """Run one question to completion without a UI.

    Returns (answer, blocked_call). blocked_call is the call that needed
    confirmation when yolo is off; answer is then None.
    """
    orchestrator.set_input(question)
    if not orchestrator.submit_input():
        raise AgentError("question is empty")

    while True:
        await orchestrator.drain()
        if orchestrator.mode is not Mode.AWAITING_CONFIRMATION:
            break
        turn_index, call_index = orchestrator.pending_confirmation
        call = orchestrator.transcript[turn_index].tool_calls[call_index]
        if not yolo:
            return None, call
        orchestrator.confirm_pending_action()

    for turn in reversed(orchestrator.transcript):
        if turn.role is Role.ASSISTANT:
            return turn.content, None
    return None, None


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("turing")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config(project=args.project))
        sys.exit(0)

    from dotenv import load_dotenv

    load_dotenv(Path(args.base_dir) / ".env")

    try:
        config = load_config(Path(args.base_dir))
        apply_env_to_args(args)
        apply_config_to_args(args, config)
        fmt.init(color=args.color, no_color=args.no_color, quiet=args.quiet)
        require_api_key(args)
        if not Path(args.base_dir).is_dir():
            raise AgentError(f"base directory is not a directory: {args.base_dir}")
        configure_logging(args.debug_log)
        _run_main(args)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)


def _run_main(args):
    orchestrator = build_orchestrator(args)

    if args.question is None:
        from .ui import run_app

        run_app(orchestrator)
        return

    orchestrator.subscribe(ProgressReporter(orchestrator))
    answer, blocked = asyncio.run(run_once(orchestrator, args.question, yolo=args.yolo))
    if blocked is not None:
        fmt.warning(
            f"{blocked.name} needs confirmation; rerun with --yolo or use the "
            "interactive interface."
        )
        sys.exit(EXIT_NEEDS_CONFIRMATION)
    if answer is not None:
        print(answer)


if __name__ == "__main__":
    main()
