from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass

from ..common import collapse_spaces, truncate
from ..config import Settings
from ..prompts.summary import build_summary_update_system_prompt, build_summary_update_user_prompt
from ..services.base import ModelInvoker
from ..types import ConversationSummary, ModelRequest
from .base import MemoryBackend


logger = logging.getLogger("companion_pilot")


@dataclass(frozen=True, slots=True)
class PendingSummaryUpdate:
    user_id: str
    guild_id: str
    channel_id: str

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.user_id, self.guild_id, self.channel_id)


class SummaryRefresher:
    """Background rolling-summary maintenance, decoupled from the reply path."""

    def __init__(
        self,
        memory: MemoryBackend,
        model: ModelInvoker,
        settings: Settings,
        queue_size: int = 256,
    ) -> None:
        self.memory = memory
        self.model = model
        self.settings = settings
        self.queue: asyncio.Queue[PendingSummaryUpdate] = asyncio.Queue(maxsize=max(1, queue_size))
        self.pending_keys: set[tuple[str, str, str]] = set()
        self._active_key: tuple[str, str, str] | None = None
        self._dirty_keys: set[tuple[str, str, str]] = set()
        self._worker_task: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._worker_task is None or self._worker_task.done():
            self._worker_task = asyncio.create_task(self._worker(), name="summary-worker")

    async def close(self) -> None:
        task = self._worker_task
        self._worker_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def enqueue(self, user_id: str, guild_id: str, channel_id: str) -> None:
        if not self.settings.summary_enabled:
            return
        item = PendingSummaryUpdate(user_id=user_id, guild_id=guild_id, channel_id=channel_id)
        if item.key in self.pending_keys:
            if item.key == self._active_key and item.key not in self._dirty_keys:
                # New turns landed mid-refresh; run once more after it finishes.
                self._dirty_keys.add(item.key)
                logger.debug("[memory.summary] refresh in progress; will rerun user=%s channel=%s", user_id, channel_id)
            return
        self.pending_keys.add(item.key)

        if self.queue.full():
            try:
                dropped = self.queue.get_nowait()
                self.queue.task_done()
                self.pending_keys.discard(dropped.key)
                logger.warning("[memory.summary] queue full; dropped user=%s channel=%s", dropped.user_id, dropped.channel_id)
            except asyncio.QueueEmpty:
                pass

        try:
            self.queue.put_nowait(item)
        except asyncio.QueueFull:
            self.pending_keys.discard(item.key)

    async def _worker(self) -> None:
        while True:
            item = await self.queue.get()
            self._active_key = item.key
            try:
                await self.refresh(item.user_id, item.guild_id, item.channel_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Summary worker error for guild=%s channel=%s user=%s",
                    item.guild_id,
                    item.channel_id,
                    item.user_id,
                )
            finally:
                self._active_key = None
                self.pending_keys.discard(item.key)
                if item.key in self._dirty_keys:
                    self._dirty_keys.discard(item.key)
                    self.enqueue(item.user_id, item.guild_id, item.channel_id)
                self.queue.task_done()

    async def refresh(self, user_id: str, guild_id: str, channel_id: str) -> bool:
        existing = await self.memory.get_summary(user_id, guild_id, channel_id)
        previous_count = existing.source_user_turns if existing else 0
        current_count = await self.memory.count_user_turns(user_id, guild_id, channel_id)

        if current_count - previous_count < self.settings.summary_min_new_user_messages:
            return False

        turns = await self.memory.get_recent_turns(guild_id, channel_id, self.settings.summary_window_turns)
        # Assistant turns carry the id of the user they answered.
        dialogue_lines = [turn.as_line() for turn in turns if turn.user_id == user_id and turn.content.strip()]
        if len(dialogue_lines) < 2:
            return False

        max_chars = max(220, self.settings.summary_max_chars)
        previous_summary = existing.summary_text if existing else ""
        summary = await asyncio.wait_for(
            self.model.complete(
                ModelRequest(
                    system_prompt=build_summary_update_system_prompt(max_chars),
                    user_prompt=build_summary_update_user_prompt(previous_summary, dialogue_lines),
                    temperature=0.2,
                    max_output_tokens=620,
                )
            ),
            timeout=self.settings.model_timeout_seconds,
        )
        summary = collapse_spaces(summary)
        if not summary:
            return False
        if len(summary) > max_chars:
            summary = truncate(summary, max_chars)

        await self.memory.put_summary(
            ConversationSummary(
                user_id=user_id,
                guild_id=guild_id,
                channel_id=channel_id,
                summary_text=summary,
                source_user_turns=current_count,
            )
        )
        logger.info("[memory.summary] user=%s channel=%s chars=%s", user_id, channel_id, len(summary))
        return True
