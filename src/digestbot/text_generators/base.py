from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TypedDict, Union


class ChatMessage(TypedDict):
    role: str
    content: str


Prompt = Union[str, Sequence[ChatMessage]]


class TextGeneratorAPI(ABC):
    """Abstract base class for text generator providers.

    Implementations must raise ``ModelClientError`` for transport, timeout,
    rate-limit and API status failures so callers can treat them as
    retryable.
    """

    @abstractmethod
    async def generate(self, prompt: Prompt, *, max_tokens: int) -> str:
        """Return generated text for the given prompt."""
        raise NotImplementedError


def normalize_prompt(prompt: Prompt) -> list[ChatMessage]:
    """Return ``prompt`` as a list of role/content messages."""
    if isinstance(prompt, str):
        return [{"role": "user", "content": prompt}]
    if isinstance(prompt, Sequence):
        if not all(isinstance(m, dict) and "role" in m and "content" in m for m in prompt):
            raise TypeError("Each message must be a dict with 'role' and 'content' keys")
        return list(prompt)
    raise TypeError("prompt must be a string or a sequence of message dicts")
