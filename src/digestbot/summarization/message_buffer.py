"""In-memory buffer of raw chat messages awaiting summarization."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class RawMessage:
    """A chat message as delivered by the listener."""

    author: str
    content: str
    timestamp: datetime


class MessageBuffer:
    """Ordered messages plus a running character count.

    ``total_chars`` always equals the summed content length of the buffered
    messages. Callers must not interleave ``append`` and ``drain`` from
    concurrent tasks; the coordinator serialises them.
    """

    def __init__(self, threshold_chars: int) -> None:
        if threshold_chars <= 0:
            raise ValueError("threshold_chars must be positive")
        self.threshold_chars = threshold_chars
        self._messages: list[RawMessage] = []
        self._total_chars = 0

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def total_chars(self) -> int:
        return self._total_chars

    def is_empty(self) -> bool:
        return not self._messages

    def append(self, message: RawMessage) -> None:
        self._messages.append(message)
        self._total_chars += len(message.content)

    def threshold_crossed(self) -> bool:
        return self._total_chars >= self.threshold_chars

    def drain(self) -> list[RawMessage]:
        """Remove and return everything buffered, resetting the counter."""
        drained, self._messages = self._messages, []
        self._total_chars = 0
        return drained

    def requeue(self, messages: list[RawMessage]) -> None:
        """Put a drained batch back in front of anything buffered since."""
        self._messages[:0] = messages
        self._total_chars += sum(len(m.content) for m in messages)
