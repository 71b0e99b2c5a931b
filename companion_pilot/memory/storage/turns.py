from __future__ import annotations

from typing import List

import aiosqlite

from ...types import ConversationTurn
from .utils import _from_db_time, _sqlite_memory_connection, _to_db_time


def _row_to_turn(row: aiosqlite.Row) -> ConversationTurn:
    return ConversationTurn(
        user_id=str(row["user_id"]),
        guild_id=str(row["guild_id"]),
        channel_id=str(row["channel_id"]),
        role=str(row["role"]),
        content=str(row["content"]),
        timestamp=_from_db_time(row["created_at"]),
    )


class MemoryTurnsMixin:
    async def append_turn(self, turn: ConversationTurn) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO chat_turns (user_id, guild_id, channel_id, role, content, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    turn.user_id,
                    turn.guild_id,
                    turn.channel_id,
                    turn.role,
                    turn.content,
                    _to_db_time(turn.timestamp),
                ),
            )
            await db.commit()

    async def get_recent_turns(self, guild_id: str, channel_id: str, limit: int) -> List[ConversationTurn]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT user_id, guild_id, channel_id, role, content, created_at
                FROM chat_turns
                WHERE guild_id = ? AND channel_id = ?
                ORDER BY created_at DESC, turn_id DESC
                LIMIT ?
                """,
                (guild_id, channel_id, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()

        return [_row_to_turn(row) for row in reversed(rows)]

    async def count_user_turns(self, user_id: str, guild_id: str, channel_id: str) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                """
                SELECT COUNT(*)
                FROM chat_turns
                WHERE user_id = ? AND guild_id = ? AND channel_id = ? AND role = 'user'
                """,
                (user_id, guild_id, channel_id),
            ) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def list_chat_turns(self, user_id: str, limit: int) -> List[ConversationTurn]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT user_id, guild_id, channel_id, role, content, created_at
                FROM chat_turns
                WHERE user_id = ?
                ORDER BY created_at DESC, turn_id DESC
                LIMIT ?
                """,
                (user_id, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()

        return [_row_to_turn(row) for row in reversed(rows)]

    async def clear_chat_turns(self, user_id: str) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute("DELETE FROM chat_turns WHERE user_id = ?", (user_id,))
            await db.commit()
            return max(0, int(cursor.rowcount))
