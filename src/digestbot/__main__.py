"""Entry point: ``python -m digestbot``."""

import asyncio
import logging
import os
import sys

import discord
from discord.ext import commands
from dotenv import load_dotenv

from .cogs.message_listener import MessageListener
from .db import SummaryStore, init_db
from .errors import ConfigError
from .http_api import ApiServer
from .message_log import MessageLog
from .settings import AppConfig, load_config, require_env
from .summarization import DigestScheduler, MessageBuffer, PipelineCoordinator, Summarizer
from .text_generators import TextGeneratorAPI, get_text_generator

logger = logging.getLogger("digestbot")


def build_coordinator(
    config: AppConfig,
    store: SummaryStore,
    llm: TextGeneratorAPI,
    message_log: MessageLog | None = None,
) -> PipelineCoordinator:
    """Wire buffer, summarizer and digest scheduler from configuration."""
    service = config.service
    budget = service.summary_threshold_chars
    summarizer = Summarizer(
        llm,
        store,
        budget_chars=budget,
        max_response_tokens=service.max_gpt_response_tokens,
        truncation_policy=service.truncation_policy,
    )
    scheduler = DigestScheduler(
        llm,
        store,
        budget_chars=budget,
        max_response_tokens=service.max_gpt_response_tokens,
        truncation_policy=service.truncation_policy,
    )
    return PipelineCoordinator(
        MessageBuffer(budget),
        summarizer,
        scheduler,
        message_log,
        prune_summarized_logs=service.prune_summarized_logs,
    )


async def main(config: AppConfig) -> None:
    token = require_env("DISCORD_BOT_SECRET")

    init_db(config.database.url)
    store = SummaryStore(config.database.url)
    llm = get_text_generator(config.llm.provider, config.llm.model, timeout=config.llm.timeout_seconds)
    coordinator = build_coordinator(config, store, llm, MessageLog(config.service.message_log_directory))

    intents = discord.Intents.default()
    intents.message_content = True
    bot = commands.Bot(command_prefix=commands.when_mentioned, intents=intents, help_command=None)

    coordinator.start(config.service.produce_digest_interval_seconds)
    api = ApiServer(store, config.service.host, config.service.port)
    api.start()
    try:
        async with bot:
            await bot.add_cog(MessageListener(bot, coordinator, config.discord.channel_ids))
            logger.info("starting bot")
            # discord.py reconnects with exponential backoff on its own
            await bot.start(token)
    finally:
        await coordinator.stop()
        await api.stop()


def run() -> None:
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("DIGESTBOT_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config()
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(2)
    try:
        asyncio.run(main(config))
    except ConfigError as exc:
        logger.error("%s", exc)
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")


if __name__ == "__main__":
    run()
