"""Error types shared by the summarization pipeline and its collaborators."""

from __future__ import annotations

import logging
from enum import Enum


class ErrorKind(str, Enum):
    """How a pipeline failure should be treated by the caller."""

    RETRYABLE = "retryable"
    INVALID = "invalid"
    FATAL = "fatal"


class DigestbotError(Exception):
    """Base class for all digestbot errors."""


class ConfigError(DigestbotError):
    """Raised when configuration is missing or invalid."""


class ModelClientError(DigestbotError):
    """Raised by a text generator when the provider call fails in transit.

    Covers connection failures, timeouts, rate limits and API status errors.
    """


class PipelineError(DigestbotError):
    """Raised by the summarizer and digest scheduler."""

    kind: ErrorKind = ErrorKind.FATAL


class RetryableError(PipelineError):
    """Transient model or network failure; nothing was written to the store."""

    kind = ErrorKind.RETRYABLE


class InvalidResponseError(PipelineError):
    """The model answered with nothing usable; the input is discarded."""

    kind = ErrorKind.INVALID


class FatalStoreError(PipelineError):
    """The durable store rejected a write.

    ``digest_id`` and ``summary_ids`` are set when a digest row was written
    but linking its summaries failed, so an operator can repair it by hand.
    """

    kind = ErrorKind.FATAL

    def __init__(
        self,
        message: str,
        *,
        digest_id: int | None = None,
        summary_ids: list[int] | None = None,
    ) -> None:
        super().__init__(message)
        self.digest_id = digest_id
        self.summary_ids = list(summary_ids or [])


def log_pipeline_error(logger: logging.Logger, what: str, exc: PipelineError) -> None:
    """Log a pipeline failure at the severity its kind calls for."""
    if isinstance(exc, FatalStoreError):
        logger.critical(
            "%s failed [%s]: %s (digest_id=%s, summary_ids=%s)",
            what,
            exc.kind.value,
            exc,
            exc.digest_id,
            exc.summary_ids,
        )
    elif isinstance(exc, InvalidResponseError):
        logger.warning("%s discarded [%s]: %s", what, exc.kind.value, exc)
    else:
        logger.warning("%s failed [%s], waiting for next trigger: %s", what, exc.kind.value, exc)
