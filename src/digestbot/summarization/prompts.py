"""Prompt construction and length budgeting for summary and digest requests."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timezone

from ..db import Summary
from ..settings import SUMMARIZER_SYSTEM_PROMPT
from .message_buffer import RawMessage

OLDEST_FIRST = "oldest_first"
NEWEST_FIRST = "newest_first"


@dataclass
class FittedText:
    """Result of fitting entries into a character budget."""

    text: str
    kept: int
    dropped: int
    clipped: bool = False


def fit_to_budget(
    entries: Sequence[str],
    budget_chars: int,
    policy: str = OLDEST_FIRST,
    separator: str = "\n",
) -> FittedText:
    """Join ``entries`` with ``separator`` without exceeding ``budget_chars``.

    Whole entries are dropped from one end according to ``policy``:
    ``oldest_first`` drops from the start of the sequence, ``newest_first``
    from the end. If the single surviving entry is still too long it is
    clipped, so the result is never empty for non-empty input.
    """
    if budget_chars <= 0:
        raise ValueError("budget_chars must be positive")
    if policy not in (OLDEST_FIRST, NEWEST_FIRST):
        raise ValueError(f"Unknown truncation policy: {policy!r}")
    if not entries:
        return FittedText(text="", kept=0, dropped=0)

    # Walk from the end we keep towards the end we drop
    ordered = list(reversed(entries)) if policy == OLDEST_FIRST else list(entries)

    kept: list[str] = []
    used = 0
    for entry in ordered:
        cost = len(entry) + (len(separator) if kept else 0)
        if used + cost > budget_chars:
            break
        kept.append(entry)
        used += cost

    clipped = False
    if not kept:
        first = ordered[0]
        kept = [first[-budget_chars:] if policy == OLDEST_FIRST else first[:budget_chars]]
        clipped = True

    if policy == OLDEST_FIRST:
        kept.reverse()

    return FittedText(
        text=separator.join(kept),
        kept=len(kept),
        dropped=len(entries) - len(kept),
        clipped=clipped,
    )


def format_message(message: RawMessage) -> str:
    return f"{message.author}: {message.content}"


def formatting_overhead(messages: Sequence[RawMessage], separator: str = "\n") -> int:
    """Characters a formatted batch adds on top of its raw content length."""
    if not messages:
        return 0
    prefixes = sum(len(format_message(m)) - len(m.content) for m in messages)
    return prefixes + len(separator) * (len(messages) - 1)


def format_summary(summary: Summary) -> str:
    stamp = summary.timestamp.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    return f"[{stamp}] {summary.text}"


def build_summary_prompt(
    messages: Sequence[RawMessage],
    budget_chars: int,
    policy: str = OLDEST_FIRST,
) -> tuple[list[dict[str, str]], FittedText]:
    """Build the chat messages for summarizing a batch of raw messages.

    Returns the provider-neutral message list and the fitting details so the
    caller can log how much was truncated.
    """
    fitted = fit_to_budget([format_message(m) for m in messages], budget_chars, policy, "\n")
    body = (
        "The following is a log of a Discord conversation, one message per line "
        "in the form `author: message`.\n\n"
        f"{fitted.text}"
    )
    return [
        {"role": "system", "content": SUMMARIZER_SYSTEM_PROMPT},
        {"role": "user", "content": body},
    ], fitted


def build_digest_prompt(
    summaries: Sequence[Summary],
    budget_chars: int,
    policy: str = OLDEST_FIRST,
) -> tuple[list[dict[str, str]], FittedText]:
    """Build the chat messages for compressing summaries into one digest."""
    fitted = fit_to_budget([format_summary(s) for s in summaries], budget_chars, policy, "\n\n")
    body = (
        "Below are chronological summaries of a Discord conversation. Combine "
        "them into a single digest of the period, keeping decisions, open "
        "questions and anything the team will need later.\n\n"
        f"{fitted.text}"
    )
    return [
        {"role": "system", "content": SUMMARIZER_SYSTEM_PROMPT},
        {"role": "user", "content": body},
    ], fitted
