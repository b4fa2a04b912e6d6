"""Tests for the Discord message listener cog."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import BASE_TIME
from digestbot.cogs.message_listener import MessageListener
from digestbot.summarization import RawMessage


@pytest.fixture
def coordinator():
    coord = MagicMock()
    coord.on_message_received = AsyncMock()
    return coord


class TestMessageListener:
    @pytest.mark.asyncio
    async def test_forwards_watched_message(self, mock_bot, coordinator, mock_discord_message):
        cog = MessageListener(mock_bot, coordinator, [123456789])

        await cog.on_message(mock_discord_message)

        coordinator.on_message_received.assert_awaited_once_with(
            RawMessage(author="TestUser", content="Test message content", timestamp=BASE_TIME)
        )

    @pytest.mark.asyncio
    async def test_empty_allow_list_watches_all_channels(self, mock_bot, coordinator, mock_discord_message):
        mock_discord_message.channel.id = 42
        cog = MessageListener(mock_bot, coordinator)

        await cog.on_message(mock_discord_message)

        coordinator.on_message_received.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ignores_other_channels(self, mock_bot, coordinator, mock_discord_message):
        mock_discord_message.channel.id = 42
        cog = MessageListener(mock_bot, coordinator, [123456789])

        await cog.on_message(mock_discord_message)

        coordinator.on_message_received.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ignores_bots(self, mock_bot, coordinator, mock_discord_message):
        mock_discord_message.author.bot = True
        cog = MessageListener(mock_bot, coordinator)

        await cog.on_message(mock_discord_message)

        coordinator.on_message_received.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ignores_direct_messages(self, mock_bot, coordinator, mock_discord_message):
        mock_discord_message.guild = None
        cog = MessageListener(mock_bot, coordinator)

        await cog.on_message(mock_discord_message)

        coordinator.on_message_received.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   ", "\n"])
    async def test_ignores_blank_content(self, mock_bot, coordinator, mock_discord_message, content):
        mock_discord_message.content = content
        cog = MessageListener(mock_bot, coordinator)

        await cog.on_message(mock_discord_message)

        coordinator.on_message_received.assert_not_awaited()
