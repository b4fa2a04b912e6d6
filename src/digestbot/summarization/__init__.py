"""Aggregation and summarization pipeline."""

from .coordinator import PipelineCoordinator
from .digest_scheduler import DigestScheduler, SchedulerState
from .message_buffer import MessageBuffer, RawMessage
from .summarizer import Summarizer

__all__ = [
    "PipelineCoordinator",
    "DigestScheduler",
    "SchedulerState",
    "MessageBuffer",
    "RawMessage",
    "Summarizer",
]
