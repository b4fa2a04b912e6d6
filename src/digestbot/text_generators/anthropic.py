"""Claude backend for summaries and digests."""
from __future__ import annotations

import logging

from anthropic import APIConnectionError, APIError, APITimeoutError, AsyncAnthropic, RateLimitError

from ..errors import ModelClientError
from .base import ChatMessage, Prompt, TextGeneratorAPI, normalize_prompt

_LOG = logging.getLogger(__name__)

_CLIENT_CACHE: dict[float, AsyncAnthropic] = {}


def split_system(messages: list[ChatMessage]) -> tuple[str | None, list[dict[str, str]]]:
    """Separate system instructions from the conversation turns.

    The Messages API takes instructions as a top-level ``system`` string, so
    every ``system`` message is joined into it and removed from the list.
    """
    instructions = [m["content"] for m in messages if m["role"].lower() == "system" and m["content"]]
    turns = [{"role": m["role"].lower(), "content": m["content"]} for m in messages if m["role"].lower() != "system"]
    system = "\n\n".join(instructions).strip()
    return system or None, turns


class AnthropicTextGenerator(TextGeneratorAPI):
    """Anthropic Messages API client. Needs ``ANTHROPIC_API_KEY`` in the environment."""

    def __init__(
        self,
        model: str = "claude-sonnet-4-20250514",
        *,
        timeout: float = 120.0,
        temperature: float = 1.0,
    ) -> None:
        self.model = model
        self.timeout = timeout
        self.temperature = temperature

    def _get_client(self) -> AsyncAnthropic:
        client = _CLIENT_CACHE.get(self.timeout)
        if client is None:
            client = AsyncAnthropic(timeout=self.timeout, max_retries=0)
            _CLIENT_CACHE[self.timeout] = client
        return client

    async def generate(self, prompt: Prompt, *, max_tokens: int) -> str:
        system, turns = split_system(normalize_prompt(prompt))
        request = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": self.temperature,
            "messages": turns,
        }
        if system is not None:
            request["system"] = system

        try:
            response = await self._get_client().messages.create(**request)
        except RateLimitError as exc:
            _LOG.warning("Anthropic rate limited %s: %s", self.model, exc)
            raise ModelClientError(f"Anthropic rate limit: {exc}") from exc
        except APITimeoutError as exc:
            _LOG.warning("Anthropic call to %s timed out after %.0fs", self.model, self.timeout)
            raise ModelClientError(f"Anthropic timeout: {exc}") from exc
        except APIConnectionError as exc:
            _LOG.error("Could not reach Anthropic for %s: %s", self.model, exc)
            raise ModelClientError(f"Anthropic connection error: {exc}") from exc
        except APIError as exc:
            _LOG.error("Anthropic returned an error for %s: %s", self.model, exc)
            raise ModelClientError(f"Anthropic API error: {exc}") from exc

        # Only text blocks carry the answer
        texts = [block.text for block in response.content or [] if getattr(block, "text", None)]
        return "".join(texts).strip()
