from __future__ import annotations

import asyncio
import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from companion_pilot.memory.in_memory import InMemoryMemoryStore  # noqa: E402
from companion_pilot.orchestration.reconciler import MemoryReconciler  # noqa: E402
from companion_pilot.types import InboundMessage, MemoryWriteIntent  # noqa: E402


def _message() -> InboundMessage:
    return InboundMessage(user_id="u1", guild_id="g1", channel_id="c1", content="irrelevant")


def test_reconciler_overwrites_existing_key() -> None:
    memory = InMemoryMemoryStore()
    reconciler = MemoryReconciler(memory)

    async def scenario():
        await reconciler.apply(MemoryWriteIntent(key="name", value="Alice", confidence=0.96), _message())
        await reconciler.apply(MemoryWriteIntent(key="name", value="Alicia", confidence=0.4), _message())
        return await memory.get_facts("u1")

    facts = asyncio.run(scenario())
    assert len(facts) == 1
    assert facts[0].value == "Alicia"
    assert facts[0].confidence == 0.4


def test_reconciler_is_idempotent_for_identical_intents() -> None:
    memory = InMemoryMemoryStore()
    reconciler = MemoryReconciler(memory)
    intent = MemoryWriteIntent(key="favorite_game", value="Hades", confidence=0.84)

    async def scenario():
        first = await reconciler.apply(intent, _message())
        second = await reconciler.apply(intent, _message())
        return first, second, await memory.get_facts("u1")

    first, second, facts = asyncio.run(scenario())
    assert first.stored and second.stored
    assert [(fact.key, fact.value) for fact in facts] == [("favorite_game", "Hades")]


def test_reconciler_reports_store_failure() -> None:
    class _ReadOnly(InMemoryMemoryStore):
        async def upsert_fact(self, fact) -> None:
            raise RuntimeError("read-only replica")

    outcome = asyncio.run(
        MemoryReconciler(_ReadOnly()).apply(MemoryWriteIntent(key="name", value="Alice", confidence=0.9), _message())
    )
    assert outcome.stored is False
    assert outcome.error == "read-only replica"
