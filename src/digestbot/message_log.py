"""Append-only on-disk log of raw chat messages.

Messages go to ``messages_<index>.txt`` in the log directory. The coordinator
rotates to the next index whenever it drains a batch for summarization, so
each file holds the raw text behind (at most) one summary and can be used to
recover a batch lost to a failed run.
"""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import TextIO

from .summarization.message_buffer import RawMessage

_LOG = logging.getLogger(__name__)

_LOG_NAME_RE = re.compile(r"^messages_(\d+)\.txt$")


def find_last_log_file_index(directory: Path) -> int | None:
    """Return the highest ``messages_<n>.txt`` index in ``directory``."""
    indices = []
    for entry in directory.iterdir():
        match = _LOG_NAME_RE.match(entry.name)
        if match and entry.is_file():
            indices.append(int(match.group(1)))
    return max(indices) if indices else None


def format_log_line(message: RawMessage) -> str:
    content = message.content.replace("\r", " ").replace("\n", " ")
    return f"timestamp: {message.timestamp.isoformat()}, author: {message.author}, content: {content}"


class MessageLog:
    """Writes one line per message to the current log file."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)
        self.index = find_last_log_file_index(self.directory) or 0
        self._fh: TextIO | None = None
        self._lock = threading.Lock()
        _LOG.info("Message log resuming at %s", self.current_path)

    @property
    def current_path(self) -> Path:
        return self.path_for(self.index)

    def path_for(self, index: int) -> Path:
        return self.directory / f"messages_{index}.txt"

    def _file(self) -> TextIO:
        if self._fh is None or self._fh.closed:
            self._fh = self.current_path.open("a", encoding="utf-8")
        return self._fh

    def append(self, message: RawMessage) -> None:
        """Write ``message``; OSError is logged and swallowed so ingestion continues.

        Safe to call from a worker thread while the event loop rotates the log.
        """
        line = format_log_line(message) + "\n"
        try:
            with self._lock:
                fh = self._file()
                fh.write(line)
                fh.flush()
        except OSError as exc:
            _LOG.error("Could not write message from %s to log file: %s", message.author, exc)

    def rotate(self) -> Path:
        """Close the current file, start the next index and return the closed file's path."""
        with self._lock:
            finished = self.current_path
            self._close()
            self.index += 1
        _LOG.debug("Rotated message log %s -> %s", finished.name, self.current_path.name)
        return finished

    def close(self) -> None:
        with self._lock:
            self._close()

    def _close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
