"""Transcript and protocol data types."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Union

from .errors import ToolCallAlreadyExecuted


class Role(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Mode(str, enum.Enum):
    """What the conversation is doing, as seen by the UI."""

    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    EXECUTING = "executing"
    RECALL = "recall"


# -- Actions -----------------------------------------------------------------


@dataclass(frozen=True)
class RunCommand:
    command: str
    safe: bool = False

    tool_name = "run_command"


@dataclass(frozen=True)
class EditFile:
    path: str
    search_pattern: str
    replacement: str
    regex: bool = False

    tool_name = "edit_file"


@dataclass(frozen=True)
class WriteFile:
    path: str
    content: str

    tool_name = "write_file"


Action = Union[RunCommand, EditFile, WriteFile]


@dataclass(frozen=True)
class ActionOutcome:
    """What an executor reports back: text for the model and a success flag."""

    display_result: str
    ok: bool


# -- Transcript --------------------------------------------------------------


@dataclass
class ToolCall:
    """One invocation requested by the model within an assistant turn.

    ``action`` is None when the model named a tool that is not registered;
    the orchestrator refuses to run such a call.
    """

    id: str
    name: str
    args: dict
    action: Action | None = None
    safe: bool = False
    executed: bool = False
    result: str | None = None

    def describe(self) -> str:
        """Arguments as short "key: value" lines for display."""
        action = self.action
        if isinstance(action, RunCommand):
            return f"command: {action.command}"
        if isinstance(action, EditFile):
            return (
                f"path: {action.path}\n"
                f"search: {action.search_pattern}\n"
                f"replace: {action.replacement}"
            )
        if isinstance(action, WriteFile):
            return f"path: {action.path} ({len(action.content)} chars)"
        return "\n".join(f"{k}: {v!r}" for k, v in self.args.items())

    def mark_executed(self, result: str) -> None:
        if self.executed:
            raise ToolCallAlreadyExecuted(
                f"tool call {self.id} ({self.name}) was already executed"
            )
        self.executed = True
        self.result = result


@dataclass(frozen=True)
class Continuation:
    """Protocol messages of an in-flight exchange.

    Holds everything needed to send a function result back to the model:
    the prior history, the message that opened the exchange, the assistant
    message carrying the tool calls and any tool results already sent.
    """

    messages: tuple[dict, ...]


@dataclass
class Turn:
    role: Role
    content: str = ""
    pending: bool = False
    tool_calls: list[ToolCall] = field(default_factory=list)
    continuation: Continuation | None = None
    # user turns only: history length when this input was submitted
    history_mark: int | None = None


@dataclass
class ModelResult:
    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    continuation: Continuation | None = None
    failed: bool = False
