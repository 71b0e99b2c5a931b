from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

from ..memory.base import MemoryBackend
from ..types import Context, InboundMessage


logger = logging.getLogger("companion_pilot")

T = TypeVar("T")


class ContextAssembler:
    """Read-only context for one turn. Long-term memory is optional; short-term turns are best effort."""

    def __init__(
        self,
        memory: MemoryBackend,
        *,
        max_recent_turns: int = 12,
        fact_top_k: int = 50,
        timeout_seconds: float = 5.0,
    ) -> None:
        self.memory = memory
        self.max_recent_turns = max(1, int(max_recent_turns))
        self.fact_top_k = max(1, int(fact_top_k))
        self.timeout_seconds = timeout_seconds

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)

    async def assemble(self, message: InboundMessage) -> Context:
        recent, facts, summary = await asyncio.gather(
            self._bounded(self.memory.get_recent_turns(message.guild_id, message.channel_id, self.max_recent_turns)),
            self._bounded(self.memory.get_facts(message.user_id, limit=self.fact_top_k)),
            self._bounded(self.memory.get_summary(message.user_id, message.guild_id, message.channel_id)),
            return_exceptions=True,
        )

        context = Context(message=message)
        results: dict[str, Any] = {"recent_turns": recent, "facts": facts, "summary": summary}
        for name, result in results.items():
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                context.degraded.append(name)
                logger.warning(
                    "[context.degraded] read=%s user=%s guild=%s channel=%s error=%s",
                    name,
                    message.user_id,
                    message.guild_id,
                    message.channel_id,
                    str(result) or result.__class__.__name__,
                )
                continue
            if name == "recent_turns":
                context.recent_turns = list(result)
            elif name == "facts":
                context.facts = list(result)
            else:
                context.summary = result
        return context
