"""Forward chat messages from watched channels into the summarization pipeline."""

from __future__ import annotations

import logging
from collections.abc import Iterable

import discord
from discord.ext import commands

from ..summarization.coordinator import PipelineCoordinator
from ..summarization.message_buffer import RawMessage

__all__ = ["MessageListener"]

_LOG = logging.getLogger(__name__)


class MessageListener(commands.Cog):
    """Feeds guild messages to the pipeline coordinator.

    Only channels in ``channel_ids`` are watched; an empty set watches every
    channel the bot can read.
    """

    def __init__(
        self,
        bot: commands.Bot,
        coordinator: PipelineCoordinator,
        channel_ids: Iterable[int] = (),
    ) -> None:
        self.bot = bot
        self.coordinator = coordinator
        self.channel_ids: set[int] = set(channel_ids)

    def _is_watched(self, message: discord.Message) -> bool:
        if message.guild is None:
            return False
        if message.author.bot:
            return False
        if self.channel_ids and message.channel.id not in self.channel_ids:
            return False
        return bool(message.content and message.content.strip())

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        _LOG.info("%s is connected! Watching %s", self.bot.user, sorted(self.channel_ids) or "all channels")

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if not self._is_watched(message):
            return
        raw = RawMessage(
            author=message.author.name,
            content=message.content,
            timestamp=message.created_at,
        )
        await self.coordinator.on_message_received(raw)
