from __future__ import annotations

from .storage.audit import MemoryAuditMixin
from .storage.facts import MemoryFactsMixin
from .storage.schema import MemorySchemaMixin
from .storage.summaries import MemorySummariesMixin
from .storage.turns import MemoryTurnsMixin
from .storage.utils import _sqlite_memory_connection


class MemoryStore(
    MemorySchemaMixin,
    MemoryTurnsMixin,
    MemorySummariesMixin,
    MemoryFactsMixin,
    MemoryAuditMixin,
):
    """SQLite-backed store for turns, facts, summaries and audit logs."""

    backend_name = "sqlite"

    async def ping(self) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute("SELECT 1")
