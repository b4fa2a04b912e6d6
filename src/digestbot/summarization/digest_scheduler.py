"""Periodic compression of unlinked summaries into a daily digest."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from enum import Enum

from ..db import DailyDigest, SummaryStore
from ..errors import (
    FatalStoreError,
    InvalidResponseError,
    ModelClientError,
    PipelineError,
    RetryableError,
    log_pipeline_error,
)
from ..text_generators.base import TextGeneratorAPI
from .prompts import OLDEST_FIRST, build_digest_prompt

_LOG = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class DigestScheduler:
    """Runs one digest pass per timer tick.

    A pass moves the scheduler from IDLE to RUNNING and always back to IDLE
    when it ends. Failed passes wait for the next tick.
    """

    def __init__(
        self,
        llm: TextGeneratorAPI,
        store: SummaryStore,
        *,
        budget_chars: int,
        max_response_tokens: int,
        truncation_policy: str = OLDEST_FIRST,
    ) -> None:
        self.llm = llm
        self.store = store
        self.budget_chars = budget_chars
        self.max_response_tokens = max_response_tokens
        self.truncation_policy = truncation_policy
        self.state = SchedulerState.IDLE

    async def run_digest_pass(self) -> DailyDigest | None:
        """Digest every unlinked summary.

        Returns the new digest, or None when there was nothing to digest.
        Raises a PipelineError subclass on failure.
        """
        if self.state is SchedulerState.RUNNING:
            _LOG.info("Digest pass already running; skipping")
            return None

        self.state = SchedulerState.RUNNING
        try:
            return await self._run_pass()
        finally:
            self.state = SchedulerState.IDLE

    async def _run_pass(self) -> DailyDigest | None:
        try:
            summaries = await asyncio.to_thread(self.store.list_unlinked_summaries)
        except sqlite3.Error as exc:
            raise FatalStoreError(f"Could not list unlinked summaries: {exc}") from exc

        if not summaries:
            _LOG.info("No summaries to recap")
            return None

        summary_ids = [s.id for s in summaries]
        prompt, fitted = build_digest_prompt(summaries, self.budget_chars, self.truncation_policy)
        if fitted.dropped or fitted.clipped:
            _LOG.warning(
                "Digest prompt over budget: kept %d of %d summaries (clipped=%s, policy=%s)",
                fitted.kept,
                len(summaries),
                fitted.clipped,
                self.truncation_policy,
            )

        try:
            text = await self.llm.generate(prompt, max_tokens=self.max_response_tokens)
        except ModelClientError as exc:
            raise RetryableError(f"Could not summarize daily digest: {exc}") from exc

        text = (text or "").strip()
        if not text:
            raise InvalidResponseError(f"Model returned an empty digest for {len(summaries)} summaries")

        try:
            digest_id = await asyncio.to_thread(self.store.insert_digest, text)
        except sqlite3.Error as exc:
            raise FatalStoreError(f"Could not insert daily digest into DB: {exc}") from exc

        # Linking is the last write of a pass
        try:
            linked = await asyncio.to_thread(self.store.link_summaries_to_digest, summary_ids, digest_id)
        except sqlite3.Error as exc:
            raise FatalStoreError(
                f"Digest {digest_id} stored but linking {len(summary_ids)} summaries failed: {exc}",
                digest_id=digest_id,
                summary_ids=summary_ids,
            ) from exc

        if linked != len(summary_ids):
            _LOG.warning(
                "Digest %d linked %d of %d summaries; the rest were already linked",
                digest_id,
                linked,
                len(summary_ids),
            )

        _LOG.info("Saved daily digest %d covering %d summaries", digest_id, len(summary_ids))
        try:
            digest = await asyncio.to_thread(self.store.get_digest, digest_id)
        except sqlite3.Error as exc:
            raise FatalStoreError(f"Could not read back digest {digest_id}: {exc}", digest_id=digest_id) from exc
        if digest is None:
            raise FatalStoreError(f"Digest {digest_id} vanished right after insert", digest_id=digest_id)
        return digest

    async def run(self, interval: float, stop_event: asyncio.Event) -> None:
        """Run a digest pass every ``interval`` seconds until ``stop_event`` is set.

        The first pass happens one full interval after the call. A pass in
        progress is always allowed to finish.
        """
        _LOG.info("Running daily digest service every %.0fs", interval)
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + interval
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, next_tick - loop.time()))
                break
            except asyncio.TimeoutError:
                pass

            # Ticks missed while a slow pass ran are skipped, not queued
            now = loop.time()
            while next_tick <= now:
                next_tick += interval

            _LOG.info("Running daily recap of summaries...")
            try:
                await self.run_digest_pass()
            except PipelineError as exc:
                log_pipeline_error(_LOG, "Digest pass", exc)
            except Exception:
                _LOG.exception("Unexpected error during digest pass")
        _LOG.info("Daily digest service stopped")
