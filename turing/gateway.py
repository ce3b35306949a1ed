"""Model gateway: turns conversation state into LiteLLM requests.

Responses are normalized into a ModelResult. Transport and parse failures
never escape this module; they come back as a ModelResult carrying an
explanatory text and no tool calls.
"""

import json
import logging
import uuid

from . import registry
from .errors import ToolArgumentError
from .models import Continuation, ModelResult, ToolCall

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini/gemini-2.0-flash"

# Sent for sibling calls of an assistant message that were not run: providers
# reject a tool-calling message whose calls are not all answered.
NOT_EXECUTED_RESULT = (
    "Not executed: only one action runs per step. Request it again if it is still needed."
)

MAX_LOG_CHARS = 2000


def _field(obj, key, default=None):
    """Read a field from either a dict or an attribute-style response object."""
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _message_text(message) -> str:
    content = _field(message, "content")
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    # Some providers return a list of content parts.
    parts = []
    for part in content:
        text = _field(part, "text")
        if text:
            parts.append(text)
    return "".join(parts)


def _parse_arguments(raw) -> dict:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError(f"tool arguments must be a JSON object, got {type(parsed).__name__}")
    return parsed


def _to_tool_call(raw) -> ToolCall:
    fn = _field(raw, "function", raw)
    name = _field(fn, "name") or ""
    args = _parse_arguments(_field(fn, "arguments"))
    call_id = _field(raw, "id") or f"call_{uuid.uuid4().hex[:12]}"

    action = None
    safe = False
    if registry.is_registered(name):
        safe = registry.is_auto_executable(name, args)
        try:
            action = registry.parse_action(name, args)
        except ToolArgumentError as e:
            # Left unresolved; the orchestrator aborts the turn with this error.
            logger.warning("invalid arguments for %s: %s", name, e)
    else:
        logger.warning("model requested unknown tool %r", name)
    return ToolCall(id=call_id, name=name, args=args, action=action, safe=safe)


def _assistant_message(text: str, calls: list[ToolCall]) -> dict:
    msg: dict = {"role": "assistant", "content": text or None}
    if calls:
        msg["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.args)},
            }
            for call in calls
        ]
    return msg


def _tool_message(call_id: str, name: str, content: str) -> dict:
    return {"role": "tool", "tool_call_id": call_id, "name": name, "content": content}


def _truncate_for_log(obj) -> str:
    text = json.dumps(obj, default=str)
    if len(text) > MAX_LOG_CHARS:
        return text[:MAX_LOG_CHARS] + "... (truncated)"
    return text


class ModelGateway:
    """Sends user messages and function results to the model.

    ``completion`` is the async transport; it defaults to
    ``litellm.acompletion`` and tests pass a fake.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        *,
        api_key: str | None = None,
        system_instruction: str | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        completion=None,
    ):
        self.model = model
        self.api_key = api_key
        self.system_instruction = system_instruction
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._completion = completion

    def _transport(self):
        if self._completion is None:
            import litellm

            litellm.suppress_debug_info = True
            self._completion = litellm.acompletion
        return self._completion

    async def send_user(self, text: str, history: list[dict]) -> ModelResult:
        """Start an exchange with a new user message."""
        messages: list[dict] = []
        if self.system_instruction:
            messages.append({"role": "system", "content": self.system_instruction})
        messages.extend(dict(m) for m in history)
        messages.append({"role": "user", "content": text})
        return await self.send(messages)

    async def send_function_result(
        self, call: ToolCall, result: str, continuation: Continuation
    ) -> ModelResult:
        """Continue an exchange with the result of an executed tool call."""
        messages = list(continuation.messages)
        assistant = next(
            (m for m in reversed(messages) if m.get("role") == "assistant"), None
        )
        siblings = (assistant or {}).get("tool_calls") or []
        answered = False
        for tc in siblings:
            fn = tc["function"]
            if tc["id"] == call.id:
                messages.append(_tool_message(tc["id"], fn["name"], result))
                answered = True
            else:
                messages.append(
                    _tool_message(tc["id"], fn["name"], NOT_EXECUTED_RESULT)
                )
        if not answered:
            messages.append(_tool_message(call.id, call.name, result))
        return await self.send(messages)

    async def send(self, messages: list[dict]) -> ModelResult:
        kwargs: dict = dict(
            model=self.model,
            messages=messages,
            tools=registry.describe(),
            tool_choice="auto",
        )
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        if self.max_output_tokens is not None:
            kwargs["max_tokens"] = self.max_output_tokens

        logger.debug("request to %s: %s", self.model, _truncate_for_log(messages[-1]))
        try:
            response = await self._transport()(**kwargs)
            result = self._normalize(response, messages)
        except Exception as e:
            logger.warning("model call failed: %s", e)
            return ModelResult(text=f"Error: {e}", failed=True)

        logger.debug(
            "response: text=%d chars, tool_calls=%s",
            len(result.text),
            [c.name for c in result.tool_calls],
        )
        return result

    def _normalize(self, response, messages: list[dict]) -> ModelResult:
        choices = _field(response, "choices") or []
        if not choices:
            raise ValueError("model response has no choices")
        message = _field(choices[0], "message")
        if message is None:
            raise ValueError("model response has no message")

        text = _message_text(message)
        calls = [_to_tool_call(tc) for tc in (_field(message, "tool_calls") or [])]
        continuation = Continuation(
            tuple(messages) + (_assistant_message(text, calls),)
        )
        return ModelResult(text=text, tool_calls=calls, continuation=continuation)
