from __future__ import annotations

import logging

from ..config import Settings
from .base import MemoryBackend
from .in_memory import InMemoryMemoryStore
from .store import MemoryStore


logger = logging.getLogger("companion_pilot")


def build_memory_store(settings: Settings) -> MemoryBackend:
    """DATABASE_URL selects Postgres, SQLITE_PATH selects SQLite, otherwise turns live in process memory."""
    if settings.database_url:
        from .postgres_store import PostgresMemoryStore

        return PostgresMemoryStore(settings.database_url)

    if settings.sqlite_path is not None:
        return MemoryStore(settings.sqlite_path)

    logger.warning("[memory] no DATABASE_URL or SQLITE_PATH configured; memory will not survive restarts")
    return InMemoryMemoryStore()
