"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from digestbot.db import SummaryStore, init_db
from digestbot.errors import ModelClientError
from digestbot.summarization.message_buffer import RawMessage
from digestbot.text_generators.base import TextGeneratorAPI

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeLLM(TextGeneratorAPI):
    """Scriptable stand-in for a text generator.

    ``responses`` is consumed in order; an exception instance is raised
    instead of returned. When ``gate`` is set, every call waits on it, which
    lets tests hold a run in flight.
    """

    def __init__(self, responses=None, default: str = "Summary text"):
        self.responses = list(responses or [])
        self.default = default
        self.prompts: list = []
        self.max_tokens: list[int] = []
        self.gate: asyncio.Event | None = None
        self.active = 0
        self.max_active = 0
        self.on_call = None

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    @property
    def last_prompt_text(self) -> str:
        prompt = self.prompts[-1]
        if isinstance(prompt, str):
            return prompt
        return "\n".join(m["content"] for m in prompt)

    async def generate(self, prompt, *, max_tokens: int) -> str:
        self.prompts.append(prompt)
        self.max_tokens.append(max_tokens)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.on_call is not None:
                self.on_call()
            if self.gate is not None:
                await self.gate.wait()
            if self.responses:
                result = self.responses.pop(0)
            else:
                result = f"{self.default} #{self.call_count}"
            if isinstance(result, BaseException):
                raise result
            return result
        finally:
            self.active -= 1


def make_message(content: str, author: str = "alice", offset: int = 0) -> RawMessage:
    return RawMessage(author=author, content=content, timestamp=BASE_TIME + timedelta(seconds=offset))


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db(temp_dir):
    """Create an initialised temporary database file."""
    db_file = temp_dir / "test.db"
    init_db(db_file)
    yield str(db_file)


@pytest.fixture
def store(temp_db):
    return SummaryStore(temp_db)


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def failing_llm():
    return FakeLLM(responses=[ModelClientError("connection reset")])


@pytest.fixture
def mock_discord_message():
    """Create a mock Discord message in a guild channel."""
    message = MagicMock()
    message.id = 987654321
    message.content = "Test message content"
    message.created_at = BASE_TIME
    message.guild = MagicMock()
    message.author = MagicMock()
    message.author.id = 111222333
    message.author.name = "TestUser"
    message.author.bot = False
    message.channel = MagicMock()
    message.channel.id = 123456789
    return message


@pytest.fixture
def mock_bot():
    """Create a mock Discord bot."""
    bot = MagicMock()
    bot.user = MagicMock()
    bot.user.id = 999888777
    bot.user.name = "TestBot"
    return bot
