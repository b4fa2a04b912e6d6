"""SQLite persistence for summaries and daily digests.

Every call opens its own connection, so the store can be used from worker
threads (``asyncio.to_thread``) by the summarizer and the digest scheduler
at the same time.
"""

from __future__ import annotations

import os
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

DEFAULT_DB = Path("digestbot.db")


@dataclass
class Summary:
    id: int
    daily_digest_id: int | None
    text: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "daily_digest_id": self.daily_digest_id,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class DailyDigest:
    id: int
    text: str
    timestamp: datetime
    summaries: list[Summary] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "summaries": [s.to_dict() for s in self.summaries],
        }


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _format_ts(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")


def _parse_ts(raw: str) -> datetime:
    # CURRENT_TIMESTAMP defaults have no fractional part; ours do
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def init_db(db_path: str | os.PathLike[str] = DEFAULT_DB) -> None:
    """Create required tables if they don't exist."""
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS daily_digests (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                text TEXT NOT NULL,
                timestamp DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS summaries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                daily_digest_id INTEGER,
                text TEXT NOT NULL,
                timestamp DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (daily_digest_id) REFERENCES daily_digests(id)
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_summaries_digest ON summaries(daily_digest_id)"
        )
        conn.commit()


class SummaryStore:
    """Database interface for summary and digest rows."""

    def __init__(self, db_path: str | os.PathLike[str] = DEFAULT_DB) -> None:
        self.db_path = str(Path(db_path).expanduser())

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection that commits on success and always closes."""
        conn = sqlite3.connect(self.db_path)
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_summary(row: sqlite3.Row) -> Summary:
        return Summary(
            id=row["id"],
            daily_digest_id=row["daily_digest_id"],
            text=row["text"],
            timestamp=_parse_ts(row["timestamp"]),
        )

    # ==================== Summaries ====================

    def insert_summary(self, text: str, timestamp: datetime | None = None) -> int:
        """Insert an unlinked summary and return its id."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO summaries (daily_digest_id, text, timestamp) VALUES (?, ?, ?)",
                (None, text, _format_ts(timestamp or _now())),
            )
            return cursor.lastrowid

    def get_summary(self, summary_id: int) -> Summary | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM summaries WHERE id = ?", (summary_id,)).fetchone()
            return self._row_to_summary(row) if row else None

    def list_all_summaries(self) -> list[Summary]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM summaries ORDER BY timestamp ASC, id ASC").fetchall()
            return [self._row_to_summary(row) for row in rows]

    def list_unlinked_summaries(self) -> list[Summary]:
        """Summaries not yet consumed by a digest, oldest first (ties by id)."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM summaries
                WHERE daily_digest_id IS NULL
                ORDER BY timestamp ASC, id ASC
                """
            ).fetchall()
            return [self._row_to_summary(row) for row in rows]

    def fetch_latest_summaries(self, count: int, page: int = 1) -> list[Summary]:
        """Return one page of summaries, newest first. ``page`` is 1-based."""
        if count < 1 or page < 1:
            raise ValueError("count and page must be >= 1")
        offset = count * (page - 1)
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM summaries ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?",
                (count, offset),
            ).fetchall()
            return [self._row_to_summary(row) for row in rows]

    # ==================== Digests ====================

    def insert_digest(self, text: str, timestamp: datetime | None = None) -> int:
        """Insert a digest row and return its id."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO daily_digests (text, timestamp) VALUES (?, ?)",
                (text, _format_ts(timestamp or _now())),
            )
            return cursor.lastrowid

    def link_summaries_to_digest(self, summary_ids: Iterable[int], digest_id: int) -> int:
        """Point each still-unlinked summary at ``digest_id`` in one transaction.

        Returns the number of rows updated.
        """
        ids = list(summary_ids)
        with self._get_connection() as conn:
            cursor = conn.executemany(
                "UPDATE summaries SET daily_digest_id = ? WHERE id = ? AND daily_digest_id IS NULL",
                [(digest_id, summary_id) for summary_id in ids],
            )
            return cursor.rowcount

    def get_digest(self, digest_id: int) -> DailyDigest | None:
        """Return one digest with its linked summaries."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT id, text, timestamp FROM daily_digests WHERE id = ?", (digest_id,)
            ).fetchone()
            if row is None:
                return None
            summary_rows = conn.execute(
                "SELECT * FROM summaries WHERE daily_digest_id = ? ORDER BY timestamp ASC, id ASC",
                (digest_id,),
            ).fetchall()
        return DailyDigest(
            id=row["id"],
            text=row["text"],
            timestamp=_parse_ts(row["timestamp"]),
            summaries=[self._row_to_summary(r) for r in summary_rows],
        )

    def list_all_digests(self) -> list[DailyDigest]:
        """Return every digest with the summaries linked to it."""
        with self._get_connection() as conn:
            digest_rows = conn.execute(
                "SELECT id, text, timestamp FROM daily_digests ORDER BY timestamp ASC, id ASC"
            ).fetchall()
            summary_rows = conn.execute(
                """
                SELECT * FROM summaries
                WHERE daily_digest_id IS NOT NULL
                ORDER BY timestamp ASC, id ASC
                """
            ).fetchall()

        by_digest: dict[int, list[Summary]] = {}
        for row in summary_rows:
            summary = self._row_to_summary(row)
            by_digest.setdefault(summary.daily_digest_id, []).append(summary)

        return [
            DailyDigest(
                id=row["id"],
                text=row["text"],
                timestamp=_parse_ts(row["timestamp"]),
                summaries=by_digest.get(row["id"], []),
            )
            for row in digest_rows
        ]
