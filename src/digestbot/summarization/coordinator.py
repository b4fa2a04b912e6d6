"""Pipeline coordinator: message ingestion, summarization dispatch and the digest timer."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from ..db import DailyDigest
from ..errors import PipelineError, RetryableError, log_pipeline_error
from .digest_scheduler import DigestScheduler
from .message_buffer import MessageBuffer, RawMessage
from .summarizer import Summarizer

if TYPE_CHECKING:
    from ..message_log import MessageLog

_LOG = logging.getLogger(__name__)


class PipelineCoordinator:
    """Owns the message buffer and both scheduling lanes.

    Messages are handled one at a time by a single ingest task. When the
    buffer crosses its threshold the batch is drained and summarized in a
    background task; at most one such task exists at a time, and while it
    runs new messages keep filling the (fresh) buffer. A batch whose model
    call fails in transit goes back to the front of the buffer and is sent
    again with the next threshold crossing. The digest timer runs as an
    independent task that only talks to the store.

    Every buffer mutation (append, drain, requeue) happens in synchronous
    code on the event loop. Drains only happen in the ingest worker between
    two appends, so a rotated raw log file holds only messages of the batch
    drained with it.
    """

    def __init__(
        self,
        buffer: MessageBuffer,
        summarizer: Summarizer,
        digest_scheduler: DigestScheduler,
        message_log: Optional["MessageLog"] = None,
        *,
        prune_summarized_logs: bool = False,
    ) -> None:
        self.buffer = buffer
        self.summarizer = summarizer
        self.digest_scheduler = digest_scheduler
        self.message_log = message_log
        self.prune_summarized_logs = prune_summarized_logs

        # None is a wake-up that re-checks the threshold without a new message
        self._queue: asyncio.Queue[RawMessage | None] = asyncio.Queue()
        self._ingest_task: asyncio.Task | None = None
        self._summary_task: asyncio.Task | None = None
        self._digest_task: asyncio.Task | None = None
        self._manual_digests: set[asyncio.Task] = set()
        # Rotated log files holding messages that are buffered but not yet summarized
        self._pending_logs: list[Path] = []
        self._stop_event = asyncio.Event()
        self._running = False

    # ==================== Lifecycle ====================

    @property
    def running(self) -> bool:
        return self._running

    def start(self, digest_interval: float) -> None:
        """Start the ingest worker and the digest timer.

        The first digest pass fires one full ``digest_interval`` after start.
        """
        if self._running:
            raise RuntimeError("Coordinator already started")
        if digest_interval <= 0:
            raise ValueError("digest_interval must be positive")
        self._running = True
        self._stop_event.clear()
        self._ingest_task = asyncio.create_task(self._ingest_loop(), name="digestbot-ingest")
        self._digest_task = asyncio.create_task(
            self.digest_scheduler.run(digest_interval, self._stop_event),
            name="digestbot-digest-timer",
        )
        _LOG.info("Pipeline started (threshold=%d chars, digest every %.0fs)", self.buffer.threshold_chars, digest_interval)

    async def stop(self) -> None:
        """Stop scheduling work and wait for in-flight runs to finish.

        Messages already queued are still buffered (and summarized if they
        cross the threshold); whatever remains below the threshold stays in
        the buffer and in the raw message log. Messages received after this
        call are refused.
        """
        if not self._running:
            return
        self._running = False
        self._stop_event.set()

        await self.flush()
        if self._ingest_task is not None:
            self._ingest_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._ingest_task
            self._ingest_task = None
        if self._digest_task is not None:
            # The timer exits on its own once the current pass (if any) ends
            await self._digest_task
            self._digest_task = None
        if self._manual_digests:
            await asyncio.wait(set(self._manual_digests))
        if self.message_log is not None:
            self.message_log.close()
        _LOG.info("Pipeline stopped with %d messages left in buffer", len(self.buffer))

    async def flush(self) -> None:
        """Wait until every queued message is processed and no summarization is in flight."""
        while True:
            await self._queue.join()
            task = self._summary_task
            if task is not None and not task.done():
                await asyncio.wait({task})
                # Give the completion callback a chance to queue its wake-up
                await asyncio.sleep(0)
                continue
            if self._queue.empty() and not self.summarization_in_flight:
                return

    # ==================== Ingestion ====================

    async def on_message_received(self, message: RawMessage) -> None:
        """Queue a message for the ingest worker. Never waits on summarization."""
        if not self._running:
            _LOG.warning("Pipeline is not running; dropping message from %s", message.author)
            return
        await self._queue.put(message)

    async def _ingest_loop(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                if message is None:
                    self._maybe_dispatch()
                    continue
                if self.message_log is not None:
                    await asyncio.to_thread(self.message_log.append, message)
                self.process_message(message)
            except Exception:
                _LOG.exception("Failed to process queued item %r", message)
            finally:
                self._queue.task_done()

    def process_message(self, message: RawMessage) -> None:
        """Buffer one message, then dispatch a summarization run if due."""
        self.buffer.append(message)
        _LOG.debug("Buffered message, %d chars pending", self.buffer.total_chars)
        self._maybe_dispatch()

    # ==================== Summarization ====================

    @property
    def summarization_in_flight(self) -> bool:
        return self._summary_task is not None and not self._summary_task.done()

    def _maybe_dispatch(self) -> None:
        if self.summarization_in_flight:
            return
        if self.buffer.is_empty() or not self.buffer.threshold_crossed():
            return

        batch = self.buffer.drain()
        log_paths, self._pending_logs = self._pending_logs, []
        if self.message_log is not None:
            log_paths.append(self.message_log.rotate())
        _LOG.info("Buffer crossed threshold; summarizing %d messages", len(batch))
        task = asyncio.create_task(self._summarize_batch(batch, log_paths), name="digestbot-summarize")
        self._summary_task = task
        task.add_done_callback(functools.partial(self._on_summary_done, batch, log_paths))

    def _on_summary_done(self, batch: list[RawMessage], log_paths: list[Path], task: asyncio.Task) -> None:
        if self._summary_task is task:
            self._summary_task = None
        if task.cancelled() or task.result():
            self.buffer.requeue(batch)
            self._pending_logs[:0] = log_paths
            _LOG.info("Returned %d messages to the buffer for the next threshold crossing", len(batch))
            return
        # Messages that arrived during the run may already be over the threshold;
        # the ingest worker re-checks between two appends
        self._queue.put_nowait(None)

    async def _summarize_batch(self, batch: list[RawMessage], log_paths: list[Path]) -> bool:
        """Summarize ``batch``; return True if it should be requeued."""
        try:
            summary = await self.summarizer.summarize(batch)
        except RetryableError as exc:
            log_pipeline_error(_LOG, f"Summarization of {len(batch)} messages", exc)
            return True
        except PipelineError as exc:
            log_pipeline_error(_LOG, f"Summarization of {len(batch)} messages", exc)
            for path in log_paths:
                _LOG.info("Raw messages for the discarded batch remain in %s", path)
            return False
        except Exception:
            _LOG.exception("Unexpected error summarizing %d messages", len(batch))
            return False

        _LOG.info("Summary %d written for %d messages", summary.id, len(batch))
        if self.prune_summarized_logs and log_paths:
            _, fitted = self.summarizer.build_prompt(batch)
            if fitted.dropped or fitted.clipped:
                _LOG.info("Keeping message logs %s; the summary prompt was truncated", [p.name for p in log_paths])
                return False
            for path in log_paths:
                try:
                    path.unlink(missing_ok=True)
                    _LOG.info("Deleted summarized messages log file at path: %s", path)
                except OSError as exc:
                    _LOG.error("Could not delete file at path %s: %s", path, exc)
        return False

    # ==================== Digests ====================

    async def run_digest_now(self) -> DailyDigest | None:
        """Run a digest pass immediately, outside the timer schedule.

        The pass runs in its own task, so ``stop()`` waits for it and a
        cancelled caller does not interrupt it between the digest insert and
        the summary links.
        """
        task = asyncio.create_task(self.digest_scheduler.run_digest_pass(), name="digestbot-digest-now")
        self._manual_digests.add(task)
        task.add_done_callback(self._manual_digests.discard)
        return await asyncio.shield(task)
