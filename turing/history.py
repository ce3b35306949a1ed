"""Model-visible conversation history.

The history is a list of role-tagged text blocks sent with every request.
Entries always come in user/assistant pairs, and no entry is ever empty:
providers reject empty text blocks, so an assistant reply that consisted
only of tool calls is recorded with a placeholder.
"""

PLACEHOLDER_TEXT = "I'll process that for you."


def non_empty(text: str | None) -> str:
    if text is None or not text.strip():
        return PLACEHOLDER_TEXT
    return text


class History:
    def __init__(self):
        self._entries: list[dict] = []

    def __len__(self) -> int:
        return len(self._entries)

    def messages(self) -> list[dict]:
        """Return a copy of the entries in request format."""
        return [dict(e) for e in self._entries]

    def append_exchange(self, user_text: str, model_text: str | None) -> None:
        """Record one user message and the model's reply to it."""
        self._entries.append({"role": "user", "content": non_empty(user_text)})
        self._entries.append({"role": "assistant", "content": non_empty(model_text)})

    def extend_reply(self, text: str | None) -> None:
        """Fold a later step of the current exchange into its assistant entry.

        Tool results and follow-up replies belong to the exchange opened by
        the last user message, so they extend that pair instead of adding
        entries.
        """
        if not text or not text.strip():
            return
        if not self._entries or self._entries[-1]["role"] != "assistant":
            raise RuntimeError("no exchange to extend")
        last = self._entries[-1]
        last["content"] = f"{last['content']}\n\n{text}"

    def truncate(self, length: int) -> None:
        """Drop entries from ``length`` onwards. ``length`` must be even."""
        if length % 2:
            raise ValueError(f"history length must be even, got {length}")
        del self._entries[length:]

    def clear(self) -> None:
        self._entries.clear()
