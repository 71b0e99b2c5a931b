from __future__ import annotations

import asyncio
import logging

from ..memory.base import MemoryBackend
from ..types import InboundMessage, MemoryFact, MemoryWriteIntent, ReconcileOutcome, utc_now


logger = logging.getLogger("companion_pilot")


class MemoryReconciler:
    """Applies a memory-write intent as one upsert. Overwrites on key collision, never deletes, never retries."""

    def __init__(self, memory: MemoryBackend, *, timeout_seconds: float = 5.0) -> None:
        self.memory = memory
        self.timeout_seconds = timeout_seconds

    async def apply(self, intent: MemoryWriteIntent, message: InboundMessage) -> ReconcileOutcome:
        fact = MemoryFact(
            user_id=message.user_id,
            key=intent.key,
            value=intent.value,
            confidence=max(0.0, min(1.0, float(intent.confidence))),
            source=intent.source,
            updated_at=utc_now(),
        )
        try:
            await asyncio.wait_for(self.memory.upsert_fact(fact), timeout=self.timeout_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.warning(
                "[memory.write] failed user=%s key=%s error=%s",
                message.user_id,
                intent.key,
                error,
            )
            return ReconcileOutcome(stored=False, fact=None, error=error)

        logger.info(
            "[memory.write] stored user=%s key=%s confidence=%.2f",
            message.user_id,
            fact.key,
            fact.confidence,
        )
        return ReconcileOutcome(stored=True, fact=fact)
