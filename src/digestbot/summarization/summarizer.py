"""Summary generation for drained message batches."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Sequence

from ..db import Summary, SummaryStore
from ..errors import FatalStoreError, InvalidResponseError, ModelClientError, RetryableError
from ..text_generators.base import TextGeneratorAPI
from .message_buffer import RawMessage
from .prompts import OLDEST_FIRST, FittedText, build_summary_prompt, formatting_overhead

_LOG = logging.getLogger(__name__)


class Summarizer:
    """Turns one batch of raw messages into a persisted Summary."""

    def __init__(
        self,
        llm: TextGeneratorAPI,
        store: SummaryStore,
        *,
        budget_chars: int,
        max_response_tokens: int,
        truncation_policy: str = OLDEST_FIRST,
    ) -> None:
        """
        Initialize summarizer.

        Args:
            llm: Model client implementing generate()
            store: Store the resulting summaries are written to
            budget_chars: Message content a prompt may carry; author prefixes
                and line breaks are allowed on top of it
            max_response_tokens: Token cap passed to the model for its answer
            truncation_policy: Which end of an oversize batch to drop
        """
        self.llm = llm
        self.store = store
        self.budget_chars = budget_chars
        self.max_response_tokens = max_response_tokens
        self.truncation_policy = truncation_policy

    def build_prompt(self, messages: Sequence[RawMessage]) -> tuple[list[dict[str, str]], FittedText]:
        """Return the prompt for ``messages`` and how much of the batch it kept."""
        budget = self.budget_chars + formatting_overhead(messages)
        return build_summary_prompt(messages, budget, self.truncation_policy)

    async def summarize(self, messages: Sequence[RawMessage]) -> Summary:
        """
        Summarize a batch of messages and persist the result.

        Raises:
            ValueError: if ``messages`` is empty
            RetryableError: the model call failed in transit
            InvalidResponseError: the model returned no text
            FatalStoreError: the summary could not be written
        """
        if not messages:
            raise ValueError("Cannot summarize an empty batch")

        prompt, fitted = self.build_prompt(messages)
        if fitted.dropped or fitted.clipped:
            _LOG.warning(
                "Summary prompt over budget: kept %d of %d messages (clipped=%s, policy=%s)",
                fitted.kept,
                len(messages),
                fitted.clipped,
                self.truncation_policy,
            )

        try:
            text = await self.llm.generate(prompt, max_tokens=self.max_response_tokens)
        except ModelClientError as exc:
            raise RetryableError(f"Could not summarize {len(messages)} messages: {exc}") from exc

        text = (text or "").strip()
        if not text:
            raise InvalidResponseError(f"Model returned an empty summary for {len(messages)} messages")

        try:
            summary_id = await asyncio.to_thread(self.store.insert_summary, text)
            summary = await asyncio.to_thread(self.store.get_summary, summary_id)
        except sqlite3.Error as exc:
            raise FatalStoreError(f"Could not insert summary into DB: {exc}") from exc
        if summary is None:
            raise FatalStoreError(f"Summary {summary_id} vanished right after insert")

        _LOG.info("Stored summary %d covering %d messages", summary.id, len(messages))
        return summary
