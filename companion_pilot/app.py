from __future__ import annotations

import asyncio
import contextlib
import logging
import sys

from .config import Settings
from .discord.client import CompanionDiscordBot
from .runtime import build_runtime

logger = logging.getLogger("companion_pilot")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("discord.gateway").setLevel(logging.WARNING)
    logging.getLogger("discord.client").setLevel(logging.WARNING)


def build_bot(settings: Settings) -> CompanionDiscordBot:
    return CompanionDiscordBot(settings=settings, runtime=build_runtime(settings))


async def _run_bot(settings: Settings) -> None:
    bot = build_bot(settings)
    try:
        async with bot:
            await bot.start(settings.discord_token)
    finally:
        if not bot.is_closed():
            with contextlib.suppress(Exception):
                await asyncio.wait_for(bot.close(), timeout=10.0)


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    try:
        settings.validate()
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(2)
    if not settings.discord_token:
        logger.error("DISCORD_TOKEN is not set")
        sys.exit(2)

    try:
        asyncio.run(_run_bot(settings))
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")
