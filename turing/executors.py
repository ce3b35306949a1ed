"""Executors for the actions the model can request.

Each executor takes a validated action, performs the side effect and
returns an ActionOutcome. Executors never touch the transcript or the
conversation history; the orchestrator writes outcomes back.
"""

import asyncio
import logging
import os
import signal
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

from .edit import replace
from .models import ActionOutcome, EditFile, RunCommand, WriteFile

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 120
MAX_INLINE_OUTPUT = 10 * 1024  # 10KB, keeps a single result from flooding the context
NO_OUTPUT_MARKER = "Command executed successfully"
_KILL_WAIT_TIMEOUT = 5  # seconds to wait for process to die after kill signals


@dataclass
class ShellResult:
    """Outcome of the shell primitive: (error, stdout, stderr)."""

    error: str | None
    stdout: str
    stderr: str


def _kill_process_tree(proc: asyncio.subprocess.Process) -> None:
    """Kill a process and its descendants.

    On Unix the shell runs in its own session, so killing the process group
    takes its children with it.
    """
    if sys.platform != "win32":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except OSError:
            pass  # already exited
    try:
        proc.kill()
    except ProcessLookupError:
        pass


async def run_shell(command: str, cwd: str, timeout: int) -> ShellResult:
    """Run a shell string via the platform shell and capture its output."""
    popen_kwargs: dict = dict(
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        cwd=cwd,
    )
    if sys.platform != "win32":
        popen_kwargs["start_new_session"] = True

    try:
        proc = await asyncio.create_subprocess_shell(command, **popen_kwargs)
    except (OSError, ValueError) as e:
        return ShellResult(error=str(e), stdout="", stderr="")

    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        _kill_process_tree(proc)
        try:
            await asyncio.wait_for(proc.wait(), timeout=_KILL_WAIT_TIMEOUT)
        except asyncio.TimeoutError:
            pass  # give up, process is unkillable
        return ShellResult(
            error=f"command timed out after {timeout}s", stdout="", stderr=""
        )

    stdout = out.decode("utf-8", errors="replace")
    stderr = err.decode("utf-8", errors="replace")
    error = None
    if proc.returncode != 0:
        error = f"Command failed: {command}"
        if stderr.strip():
            error += f"\n{stderr.rstrip()}"
    return ShellResult(error=error, stdout=stdout, stderr=stderr)


def _truncate(text: str) -> str:
    data = text.encode("utf-8")
    if len(data) <= MAX_INLINE_OUTPUT:
        return text
    head = data[:MAX_INLINE_OUTPUT].decode("utf-8", errors="ignore")
    return head + f"\n[output truncated, {len(data)} bytes total]"


def command_outcome(result: ShellResult) -> ActionOutcome:
    """Pick the text reported for a finished command.

    Precedence: the error message, then stderr, then trimmed stdout, then a
    fixed marker when the command printed nothing.
    """
    if result.error:
        return ActionOutcome(f"Error: {result.error}", ok=False)
    if result.stderr:
        return ActionOutcome(_truncate(result.stderr), ok=True)
    stdout = result.stdout.strip()
    if stdout:
        return ActionOutcome(_truncate(stdout), ok=True)
    return ActionOutcome(NO_OUTPUT_MARKER, ok=True)


class Executors:
    """Runs actions relative to a working directory.

    ``shell`` is the command primitive; tests substitute a fake with the
    same signature as run_shell().
    """

    def __init__(
        self,
        base_dir: str = ".",
        command_timeout: int = DEFAULT_COMMAND_TIMEOUT,
        shell=run_shell,
    ):
        self.base_dir = base_dir
        self.command_timeout = command_timeout
        self.shell = shell

    def _resolve(self, path: str) -> Path:
        p = Path(path).expanduser()
        if not p.is_absolute():
            p = Path(self.base_dir) / p
        return p

    async def execute(self, action) -> ActionOutcome:
        if isinstance(action, RunCommand):
            return await self.run_command(action)
        if isinstance(action, EditFile):
            return await asyncio.to_thread(self.edit_file, action)
        if isinstance(action, WriteFile):
            return await asyncio.to_thread(self.write_file, action)
        raise TypeError(f"not an action: {action!r}")

    async def run_command(self, action: RunCommand) -> ActionOutcome:
        logger.info("running command: %s", action.command)
        result = await self.shell(action.command, self.base_dir, self.command_timeout)
        outcome = command_outcome(result)
        logger.debug("command finished ok=%s", outcome.ok)
        return outcome

    def edit_file(self, action: EditFile) -> ActionOutcome:
        """Replace search_pattern with replacement everywhere in an existing file."""
        resolved = self._resolve(action.path)
        if not resolved.is_file():
            return ActionOutcome(f"Error: File not found at {action.path}", ok=False)

        try:
            content = resolved.read_bytes().decode("utf-8")
        except (OSError, ValueError) as e:
            return ActionOutcome(f"Error: {e}", ok=False)

        try:
            new_content, count = replace(
                content, action.search_pattern, action.replacement, regex=action.regex
            )
        except ValueError as e:
            return ActionOutcome(f"Error: {e}", ok=False)

        if count == 0:
            return ActionOutcome(
                f'No occurrences of "{action.search_pattern}" found in {action.path}',
                ok=True,
            )

        try:
            resolved.write_bytes(new_content.encode("utf-8"))
        except (OSError, ValueError) as e:
            return ActionOutcome(f"Error: {e}", ok=False)

        plural = "" if count == 1 else "s"
        logger.info("edited %s (%d replacement%s)", resolved, count, plural)
        return ActionOutcome(
            f'Replaced {count} occurrence{plural} of "{action.search_pattern}" '
            f'with "{action.replacement}" in {action.path}',
            ok=True,
        )

    def write_file(self, action: WriteFile) -> ActionOutcome:
        """Create or overwrite a file, creating parent directories as needed."""
        resolved = self._resolve(action.path)
        try:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            verb = "Updated" if resolved.exists() else "Created"
            resolved.write_bytes(action.content.encode("utf-8"))
        except (OSError, ValueError) as e:
            return ActionOutcome(f"Error: {e}", ok=False)
        logger.info("%s %s", verb.lower(), resolved)
        return ActionOutcome(f"{verb} file at {action.path}", ok=True)
