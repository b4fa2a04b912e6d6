# text_generators/openai_chatgpt.py
from __future__ import annotations

import logging
from typing import Dict

from openai import APIConnectionError, APIError, APITimeoutError, AsyncOpenAI, RateLimitError

from ..errors import ModelClientError
from .base import Prompt, TextGeneratorAPI, normalize_prompt

_CLIENT_CACHE: Dict[float, AsyncOpenAI] = {}
_LOG = logging.getLogger(__name__)


class OpenAIChatTextGenerator(TextGeneratorAPI):
    """Text-generation backend for OpenAI chat models (default: gpt-4).

    Requires OPENAI_API_KEY in the environment.
    Accepts either a single string or a list of {role, content} messages.
    """

    def __init__(self, model: str = "gpt-4", *, timeout: float = 120.0, temperature: float = 1.0) -> None:
        self.model = model
        self.timeout = timeout
        self.temperature = temperature

    def _get_client(self) -> AsyncOpenAI:
        if self.timeout not in _CLIENT_CACHE:
            # reads OPENAI_API_KEY; no SDK-level retries
            _CLIENT_CACHE[self.timeout] = AsyncOpenAI(timeout=self.timeout, max_retries=0)
        return _CLIENT_CACHE[self.timeout]

    async def generate(self, prompt: Prompt, *, max_tokens: int) -> str:
        messages = normalize_prompt(prompt)
        client = self._get_client()

        try:
            resp = await client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore[arg-type]
                max_tokens=max_tokens,
                temperature=self.temperature,
            )
        except RateLimitError as e:
            _LOG.warning("OpenAI rate limit hit for model %s: %s", self.model, e)
            raise ModelClientError(f"OpenAI rate limit: {e}") from e
        except APITimeoutError as e:
            _LOG.warning("OpenAI request timed out for model %s", self.model)
            raise ModelClientError(f"OpenAI timeout: {e}") from e
        except APIConnectionError as e:
            _LOG.error("OpenAI connection error for model %s: %s", self.model, e)
            raise ModelClientError(f"OpenAI connection error: {e}") from e
        except APIError as e:
            _LOG.error("OpenAI API error for model %s: %s", self.model, e)
            raise ModelClientError(f"OpenAI API error: {e}") from e

        if not resp.choices:
            return ""
        return (resp.choices[0].message.content or "").strip()
