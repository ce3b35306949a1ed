"""Full-screen terminal interface built on prompt_toolkit.

The interface only renders orchestrator state and turns keystrokes into
orchestrator verbs. It holds no conversation logic of its own.
"""

import asyncio

from prompt_toolkit.application import Application
from prompt_toolkit.data_structures import Point
from prompt_toolkit.filters import Condition
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout import HSplit, Layout, Window
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.styles import Style

from .models import Mode, Role, Turn
from .orchestrator import Orchestrator

STYLE = Style.from_dict(
    {
        "user": "bold ansigray",
        "assistant": "bold",
        "system": "italic ansigray",
        "selected": "bold reverse ansiblue",
        "dim": "ansigray",
        "call": "ansiyellow",
        "call.label": "ansicyan",
        "safe": "ansigreen",
        "unsafe": "ansired",
        "result": "",
        "hint": "bold ansiyellow",
        "thinking": "ansicyan",
        "status": "reverse",
        "prompt": "bold ansigreen",
    }
)

STATUS_TEXT = {
    Mode.IDLE: "Enter: send  Esc: earlier messages  Ctrl-C: quit",
    Mode.AWAITING_MODEL: "Waiting for the model...  Ctrl-C: quit",
    Mode.AWAITING_CONFIRMATION: "Enter: run the action  type a message to skip it  Ctrl-C: quit",
    Mode.EXECUTING: "Running action...  Ctrl-C: quit",
    Mode.RECALL: "Up/Down: choose message  Enter: edit from here  Esc: back",
}


def _call_fragments(orchestrator: Orchestrator, turn_index: int, turn: Turn) -> list:
    fragments = [("class:call", "  Function call:\n")]
    pending = orchestrator.pending_confirmation
    for call_index, call in enumerate(turn.tool_calls):
        fragments.append(("class:call", f"   • {call.name}\n"))
        for line in call.describe().splitlines():
            label, _, value = line.partition(": ")
            fragments.append(("class:call.label", f"     {label}: "))
            fragments.append(("", f"{value}\n"))
        if call.name == "run_command":
            fragments.append(("class:call.label", "     safe: "))
            if call.safe:
                fragments.append(("class:safe", "yes\n"))
            else:
                fragments.append(("class:unsafe", "no\n"))
        if call.executed:
            fragments.append(("class:call.label", "     result:\n"))
            for line in (call.result or "").splitlines():
                fragments.append(("class:result", f"       {line}\n"))
        elif call.result:
            fragments.append(("class:dim", f"     {call.result}\n"))
        elif pending == (turn_index, call_index):
            fragments.append(
                ("class:hint", "     Press Enter to run, or type a message to skip.\n")
            )
    return fragments


def render_transcript(orchestrator: Orchestrator) -> list:
    """Formatted-text fragments for the whole transcript.

    In recall mode, turns after the selected message are hidden and the
    selected message is highlighted.
    """
    transcript = orchestrator.transcript
    selected = orchestrator.recall_turn_index
    if selected is not None:
        transcript = transcript[: selected + 1]

    fragments: list = []
    for index, turn in enumerate(transcript):
        if turn.role is Role.USER:
            style = "class:selected" if index == selected else "class:user"
            fragments.append((style, "> You:"))
            fragments.append(("", "\n"))
            fragments.append(("class:user", f"  {turn.content}\n\n"))
            continue

        if turn.role is Role.SYSTEM:
            fragments.append(("class:system", f"  {turn.content}\n\n"))
            continue

        fragments.append(("class:assistant", ">> Turing:\n"))
        if turn.pending:
            fragments.append(("class:thinking", "  Thinking...\n\n"))
            continue
        for line in turn.content.splitlines():
            fragments.append(("", f"  {line}\n"))
        if turn.tool_calls:
            fragments.extend(_call_fragments(orchestrator, index, turn))
        fragments.append(("", "\n"))
    return fragments


def build_app(orchestrator: Orchestrator, **app_kwargs) -> Application:
    def transcript_cursor():
        # Keep the view scrolled to the newest line.
        text = "".join(f[1] for f in render_transcript(orchestrator))
        return Point(x=0, y=text.count("\n"))

    transcript_window = Window(
        FormattedTextControl(
            lambda: render_transcript(orchestrator),
            get_cursor_position=transcript_cursor,
            show_cursor=False,
        ),
        wrap_lines=True,
    )
    status_window = Window(
        FormattedTextControl(
            lambda: [("class:status", f" {STATUS_TEXT[orchestrator.mode]} ")]
        ),
        height=1,
    )
    input_window = Window(
        FormattedTextControl(
            lambda: [("class:prompt", "> "), ("", orchestrator.input_text)]
        ),
        height=1,
    )

    in_recall = Condition(lambda: orchestrator.mode is Mode.RECALL)
    kb = KeyBindings()

    @kb.add("c-c")
    def _quit(event):
        event.app.exit()

    @kb.add("enter")
    def _enter(event):
        if orchestrator.mode is Mode.RECALL:
            orchestrator.select_recall()
        else:
            orchestrator.handle_enter()

    @kb.add("escape", eager=True)
    def _escape(event):
        if orchestrator.mode is Mode.RECALL:
            orchestrator.cancel_recall()
        else:
            orchestrator.enter_recall()

    @kb.add("up", filter=in_recall)
    def _up(event):
        orchestrator.recall_prev()

    @kb.add("down", filter=in_recall)
    def _down(event):
        orchestrator.recall_next()

    @kb.add("backspace")
    def _backspace(event):
        orchestrator.backspace()

    @kb.add("<any>")
    def _char(event):
        data = event.data
        if data and data.isprintable():
            orchestrator.append_char(data)

    app = Application(
        layout=Layout(HSplit([transcript_window, status_window, input_window])),
        key_bindings=kb,
        style=STYLE,
        full_screen=True,
        **app_kwargs,
    )
    orchestrator.subscribe(app.invalidate)
    return app


async def serve(app: Application, orchestrator: Orchestrator) -> None:
    """Run the application, then wait for in-flight model calls and actions."""
    await app.run_async()
    await orchestrator.drain()


def run_app(orchestrator: Orchestrator) -> None:
    """Run the interface until Ctrl-C."""
    asyncio.run(serve(build_app(orchestrator), orchestrator))
