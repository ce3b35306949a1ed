"""The conversation state machine.

The Orchestrator owns the transcript shown to the user, the history sent
to the model and the pending-action state. UI code calls its verbs
(submit_input, confirm_pending_action, append_char, ...) and observes its
state; it never mutates turns itself.

Every model call and every action execution runs as one asyncio task
created here. All state changes happen on the event loop thread, and the
change that records a decision is always made before the task that acts
on it is created.
"""

import asyncio
import logging

from . import registry
from .history import History
from .models import Mode, ModelResult, Role, ToolCall, Turn

logger = logging.getLogger(__name__)

PROGRESS_TEXT = "Processing results..."
SKIPPED_RESULT = "Skipped by user"


class Orchestrator:
    def __init__(self, gateway, executors, *, history: History | None = None):
        self.gateway = gateway
        self.executors = executors
        self.history = history if history is not None else History()
        self.input_text = ""

        self._transcript: list[Turn] = []
        self._awaiting_model = False
        self._executing = False
        self._confirmation: tuple[Turn, ToolCall] | None = None
        self._recall_index: int | None = None
        self._saved_input = ""
        # Bumped on every rollback; tasks started in an older epoch drop their results.
        self._epoch = 0
        self._tasks: set[asyncio.Task] = set()
        self._observers: list = []

    # -- Observable state ----------------------------------------------------

    @property
    def transcript(self) -> list[Turn]:
        return list(self._transcript)

    @property
    def busy(self) -> bool:
        """True while a model call or an action is in flight."""
        return self._awaiting_model or self._executing

    @property
    def mode(self) -> Mode:
        if self._recall_index is not None:
            return Mode.RECALL
        if self._executing:
            return Mode.EXECUTING
        if self._awaiting_model:
            return Mode.AWAITING_MODEL
        if self._confirmation is not None:
            return Mode.AWAITING_CONFIRMATION
        return Mode.IDLE

    @property
    def recall_index(self) -> int | None:
        """Selected position among user turns while in recall mode."""
        return self._recall_index

    @property
    def recall_turn_index(self) -> int | None:
        """Transcript index of the user turn selected in recall mode."""
        if self._recall_index is None:
            return None
        return self._user_turn_indices()[self._recall_index]

    @property
    def pending_confirmation(self) -> tuple[int, int] | None:
        """(turn index, call index) of the call waiting for the user, if any."""
        if self._confirmation is None:
            return None
        turn, call = self._confirmation
        return self._index_of(turn), turn.tool_calls.index(call)

    @property
    def tasks(self) -> set[asyncio.Task]:
        return set(self._tasks)

    def subscribe(self, callback) -> None:
        """Register a no-argument callback invoked after every state change."""
        self._observers.append(callback)

    async def drain(self) -> None:
        """Wait until no model call or execution is outstanding."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # -- Input buffer --------------------------------------------------------

    def append_char(self, c: str) -> None:
        if self._recall_index is not None:
            return
        self.input_text += c
        self._notify()

    def backspace(self) -> None:
        if self._recall_index is not None:
            return
        self.input_text = self.input_text[:-1]
        self._notify()

    def set_input(self, text: str) -> None:
        if self._recall_index is not None:
            return
        self.input_text = text
        self._notify()

    def handle_enter(self) -> bool:
        """Enter key: run the pending action, or send the typed message."""
        if self._confirmation is not None and not self.input_text.strip():
            return self.confirm_pending_action()
        return self.submit_input()

    # -- Conversation verbs --------------------------------------------------

    def submit_input(self) -> bool:
        """Send the input buffer to the model as a new user message."""
        text = self.input_text.strip()
        if self._recall_index is not None or self.busy or not text:
            return False

        if self._confirmation is not None:
            # Typing a new message instead of confirming declines the call.
            _, call = self._confirmation
            call.result = SKIPPED_RESULT
            self._confirmation = None
            logger.info("declined pending %s call", call.name)

        user_turn = Turn(Role.USER, content=text, history_mark=len(self.history))
        reply = Turn(Role.ASSISTANT, pending=True)
        self._transcript.extend([user_turn, reply])
        self.input_text = ""
        self._awaiting_model = True
        logger.debug("idle -> awaiting_model (user message, %d chars)", len(text))
        self._notify()

        self._spawn(self._user_exchange(text, reply, self._epoch))
        return True

    def confirm_pending_action(self) -> bool:
        """Run the tool call waiting for confirmation."""
        if self._recall_index is not None or self.busy or self._confirmation is None:
            return False
        turn, call = self._confirmation
        logger.debug("awaiting_confirmation -> executing (%s)", call.name)
        return self._start_execution(turn, call)

    def run_tool_call(self, turn_index: int, call_index: int) -> bool:
        """Execute a specific call. Returns False if it cannot run now.

        A call runs at most once; asking again after it has run (or while
        anything else is in flight) is a no-op.
        """
        if self._recall_index is not None or self.busy:
            return False
        turn = self._transcript[turn_index]
        return self._start_execution(turn, turn.tool_calls[call_index])

    # -- Recall mode ---------------------------------------------------------

    def enter_recall(self) -> bool:
        """Browse earlier user messages, starting from the most recent."""
        if self._recall_index is not None:
            return True
        users = self._user_turn_indices()
        if not users:
            return False
        self._saved_input = self.input_text
        self._recall_index = len(users) - 1
        logger.debug("entered recall mode")
        self._notify()
        return True

    def recall_prev(self) -> None:
        self._move_recall(-1)

    def recall_next(self) -> None:
        self._move_recall(1)

    def select_recall(self) -> bool:
        """Roll the conversation back to just before the selected message.

        The message text is loaded into the input buffer so it can be
        edited and sent again.
        """
        if self._recall_index is None:
            return False
        position = self._user_turn_indices()[self._recall_index]
        selected = self._transcript[position]

        del self._transcript[position:]
        self.history.truncate(selected.history_mark or 0)
        self.input_text = selected.content
        self._recall_index = None
        self._confirmation = None
        self._epoch += 1
        logger.debug(
            "recall: rolled back to turn %d, history length %d",
            position,
            len(self.history),
        )
        self._notify()
        return True

    def cancel_recall(self) -> None:
        if self._recall_index is None:
            return
        self._recall_index = None
        self.input_text = self._saved_input
        self._notify()

    # -- Internals -----------------------------------------------------------

    def _notify(self) -> None:
        for callback in self._observers:
            callback()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _user_turn_indices(self) -> list[int]:
        return [i for i, t in enumerate(self._transcript) if t.role is Role.USER]

    def _index_of(self, turn: Turn) -> int:
        for i, t in enumerate(self._transcript):
            if t is turn:
                return i
        raise ValueError("turn is not in the transcript")

    def _move_recall(self, step: int) -> None:
        if self._recall_index is None:
            return
        count = len(self._user_turn_indices())
        self._recall_index = (self._recall_index + step) % count
        self._notify()

    def _remove(self, turn: Turn) -> None:
        self._transcript[:] = [t for t in self._transcript if t is not turn]

    def _fail(self, error: Exception, pending: Turn | None) -> None:
        """Abort the current turn with a visible error and return to idle."""
        logger.error("turn failed: %s", error)
        error_turn = Turn(Role.ASSISTANT, content=f"Error: {error}")
        if pending is not None and any(t is pending for t in self._transcript):
            self._transcript[self._index_of(pending)] = error_turn
        else:
            self._transcript.append(error_turn)
        self._awaiting_model = False
        self._executing = False
        self._confirmation = None
        self._notify()

    def _release_stale(self, epoch: int) -> bool:
        """Release the gate for a task whose conversation was rolled back."""
        if epoch == self._epoch:
            return False
        logger.debug("discarding result from rolled-back turn")
        self._awaiting_model = False
        self._executing = False
        self._notify()
        return True

    def _apply_result(self, turn: Turn, result: ModelResult) -> None:
        """Fill a turn from a model result and pick the next step.

        At most one call is started per model turn: the first call that may
        run without confirmation wins. The first call needing confirmation
        is recorded as the confirmation target.
        """
        for call in result.tool_calls:
            if call.action is None:
                # Raises UnknownToolError or ToolArgumentError.
                registry.parse_action(call.name, call.args)

        turn.content = result.text
        turn.tool_calls = list(result.tool_calls)
        turn.continuation = result.continuation
        turn.pending = False

        if not turn.tool_calls:
            self._confirmation = None
            logger.debug("awaiting_model -> idle (plain text)")
            self._notify()
            return

        auto = next((c for c in turn.tool_calls if c.safe and not c.executed), None)
        needs_confirmation = next(
            (c for c in turn.tool_calls if not c.safe and not c.executed), None
        )
        self._confirmation = (
            (turn, needs_confirmation) if needs_confirmation is not None else None
        )
        if auto is not None:
            logger.debug("awaiting_model -> executing (auto: %s)", auto.name)
            self._start_execution(turn, auto)
        else:
            logger.debug("awaiting_model -> awaiting_confirmation")
            self._notify()

    def _start_execution(self, turn: Turn, call: ToolCall) -> bool:
        if call.executed or self.busy:
            return False
        if call.action is None:
            registry.parse_action(call.name, call.args)
        if self._confirmation is not None and self._confirmation[1] is call:
            self._confirmation = None
        self._executing = True
        self._notify()
        self._spawn(self._execute(turn, call, self._epoch))
        return True

    async def _user_exchange(self, text: str, reply: Turn, epoch: int) -> None:
        history = self.history.messages()
        try:
            result = await self.gateway.send_user(text, history)
            if self._release_stale(epoch):
                return
            self._awaiting_model = False
            self._apply_result(reply, result)
            self.history.append_exchange(text, result.text)
        except Exception as e:
            if epoch == self._epoch:
                self._fail(e, reply)
            else:
                self._release_stale(epoch)

    async def _execute(self, turn: Turn, call: ToolCall, epoch: int) -> None:
        logger.info("executing %s", call.name)
        progress: Turn | None = None
        follow_up: Turn | None = None
        try:
            outcome = await self.executors.execute(call.action)
            if self._release_stale(epoch):
                return
            call.mark_executed(outcome.display_result)
            self.history.extend_reply(f"[{call.name}] {outcome.display_result}")

            progress = Turn(Role.SYSTEM, content=PROGRESS_TEXT, pending=True)
            self._transcript.append(progress)
            self._executing = False
            self._awaiting_model = True
            logger.debug("executing -> awaiting_model (function result)")
            self._notify()

            result = await self.gateway.send_function_result(
                call, outcome.display_result, turn.continuation
            )
            if self._release_stale(epoch):
                return
            self._awaiting_model = False
            self._remove(progress)
            progress = None

            follow_up = Turn(Role.ASSISTANT, pending=True)
            self._transcript.append(follow_up)
            self._apply_result(follow_up, result)
            self.history.extend_reply(result.text)
        except Exception as e:
            if epoch != self._epoch:
                self._release_stale(epoch)
            else:
                self._fail(e, follow_up or progress)
