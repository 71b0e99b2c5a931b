from __future__ import annotations

from typing import List

import aiosqlite

from ...types import MemoryFact
from .utils import _clamp, _from_db_time, _sqlite_memory_connection, _to_db_time


class MemoryFactsMixin:
    async def upsert_fact(self, fact: MemoryFact) -> None:
        # Last writer wins: value, confidence, source and timestamp are all replaced.
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO memory_facts (user_id, fact_key, fact_value, confidence, source, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, fact_key) DO UPDATE SET
                    fact_value = excluded.fact_value,
                    confidence = excluded.confidence,
                    source = excluded.source,
                    updated_at = excluded.updated_at
                """,
                (
                    fact.user_id,
                    fact.key,
                    fact.value,
                    _clamp(float(fact.confidence), 0.0, 1.0),
                    fact.source,
                    _to_db_time(fact.updated_at),
                ),
            )
            await db.commit()

    async def get_facts(self, user_id: str, limit: int | None = None) -> List[MemoryFact]:
        query = """
            SELECT user_id, fact_key, fact_value, confidence, source, updated_at
            FROM memory_facts
            WHERE user_id = ?
            ORDER BY updated_at DESC, fact_key ASC
        """
        params: tuple[object, ...] = (user_id,)
        if limit is not None:
            query += " LIMIT ?"
            params = (user_id, max(0, int(limit)))

        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()

        return [
            MemoryFact(
                user_id=str(row["user_id"]),
                key=str(row["fact_key"]),
                value=str(row["fact_value"]),
                confidence=float(row["confidence"]),
                source=str(row["source"]),
                updated_at=_from_db_time(row["updated_at"]),
            )
            for row in rows
        ]

    async def delete_fact(self, user_id: str, key: str) -> bool:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM memory_facts WHERE user_id = ? AND fact_key = ?",
                (user_id, key),
            )
            await db.commit()
            return cursor.rowcount > 0

    async def clear_facts(self, user_id: str) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute("DELETE FROM memory_facts WHERE user_id = ?", (user_id,))
            await db.commit()
            return max(0, int(cursor.rowcount))
