from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from typing import Any

import discord

from ..common import chunk_text, collapse_spaces
from ..config import Settings
from ..runtime import CompanionRuntime
from ..types import InboundMessage

logger = logging.getLogger("companion_pilot")

FAILURE_REPLY = "I failed to answer right now."
DIRECT_MESSAGE_GUILD_ID = "dm"


class CompanionDiscordBot(discord.Client):
    """Translates Discord messages into pipeline turns and sends the replies back."""

    def __init__(self, settings: Settings, runtime: CompanionRuntime) -> None:
        intents = discord.Intents.default()
        intents.message_content = settings.discord_message_content_intent
        super().__init__(intents=intents)
        self.settings = settings
        self.runtime = runtime

    async def setup_hook(self) -> None:
        await self.runtime.start()

    async def close(self) -> None:
        await self._run_shutdown_step("runtime.close", self.runtime.close(), timeout=20.0)
        await self._run_shutdown_step("discord.Client.close", super().close(), timeout=6.0)

    async def _run_shutdown_step(self, label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

    async def on_ready(self) -> None:
        if self.user:
            logger.info("Connected as %s (%s)", self.user, self.user.id)

    def _should_auto_reply(self, message: discord.Message) -> bool:
        if message.guild is None:
            return True
        if self.user and self.user.mentioned_in(message):
            return True
        return not self.settings.mention_only

    def _strip_bot_mention(self, text: str) -> str:
        if not self.user:
            return collapse_spaces(text)
        pattern = re.compile(rf"<@!?{self.user.id}>")
        return collapse_spaces(pattern.sub("", text))

    @staticmethod
    def _to_inbound(message: discord.Message, text: str) -> InboundMessage:
        return InboundMessage(
            user_id=str(message.author.id),
            guild_id=str(message.guild.id) if message.guild else DIRECT_MESSAGE_GUILD_ID,
            channel_id=str(message.channel.id),
            content=text,
            received_at=message.created_at,
            message_id=str(message.id),
        )

    async def _send_chunks(
        self,
        channel: discord.abc.Messageable,
        text: str,
        reference: discord.Message | None = None,
    ) -> None:
        for index, chunk in enumerate(chunk_text(text, 1900)):
            kwargs: dict[str, Any] = {}
            if index == 0 and reference is not None:
                kwargs["reference"] = reference
            await channel.send(chunk, **kwargs)

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        if not self._should_auto_reply(message):
            return

        user_text = self._strip_bot_mention(message.content)
        if not user_text:
            return

        try:
            # Claim the channel slot before the first await; typing() makes an HTTP round trip.
            pending = self.runtime.enqueue(self._to_inbound(message, user_text))
            async with message.channel.typing():
                reply = await pending
            await self._send_chunks(message.channel, reply.text, reference=message)
        except Exception as exc:
            logger.exception("Text turn failed: %s", exc)
            with contextlib.suppress(discord.HTTPException):
                await message.reply(FAILURE_REPLY)
