"""ANSI-formatted stderr output using Rich.

Used outside the full-screen interface: startup diagnostics, fatal errors
and progress in one-shot mode.
"""

from rich.console import Console
from rich.text import Text

_console = Console(stderr=True)
_quiet = False


def init(*, color: bool = False, no_color: bool = False, quiet: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags.

    Call once at startup, before any output.
    """
    global _console, _quiet
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)
    _quiet = quiet


# -- Tool calls --------------------------------------------------------------


def tool_call(name: str, detail: str, *, safe: bool) -> None:
    if _quiet:
        return
    header = Text()
    header.append("  ▶ ", style="bold magenta")
    header.append(name, style="bold magenta")
    if not safe:
        header.append("  (needs confirmation)", style="yellow")
    _console.print(header)
    for line in detail.splitlines():
        _console.print(Text(f"    {line}", style="dim"))


def tool_result(name: str, preview: str) -> None:
    if _quiet:
        return
    _console.print(Text(f"  ✓ {name}", style="green"))
    if preview:
        _console.print(Text(f"    {preview}", style="dim"))


def tool_error(name: str, msg: str) -> None:
    if _quiet:
        return
    header = Text()
    header.append(f"  ✗ {name}", style="bold red")
    header.append(f"  {msg}", style="red")
    _console.print(header)


# -- Assistant text ----------------------------------------------------------


def assistant_text(text: str) -> None:
    if _quiet:
        return
    line = Text()
    line.append("  [assistant] ", style="blue")
    line.append(text)
    _console.print(line)


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    if _quiet:
        return
    _console.print(Text(f"  {msg}", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  ⚠ Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)
