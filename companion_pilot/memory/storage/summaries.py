from __future__ import annotations

from typing import Optional

import aiosqlite

from ...types import ConversationSummary
from .utils import _from_db_time, _sqlite_memory_connection, _to_db_time


class MemorySummariesMixin:
    async def get_summary(self, user_id: str, guild_id: str, channel_id: str) -> Optional[ConversationSummary]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT summary_text, source_user_turns, updated_at
                FROM conversation_summaries
                WHERE user_id = ? AND guild_id = ? AND channel_id = ?
                """,
                (user_id, guild_id, channel_id),
            ) as cursor:
                row = await cursor.fetchone()

        if row is None:
            return None

        return ConversationSummary(
            user_id=user_id,
            guild_id=guild_id,
            channel_id=channel_id,
            summary_text=str(row["summary_text"]),
            updated_at=_from_db_time(row["updated_at"]),
            source_user_turns=int(row["source_user_turns"] or 0),
        )

    async def put_summary(self, summary: ConversationSummary) -> None:
        cleaned = summary.summary_text.strip()
        if not cleaned:
            return

        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO conversation_summaries (
                    user_id, guild_id, channel_id, summary_text, source_user_turns, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, guild_id, channel_id) DO UPDATE SET
                    summary_text = excluded.summary_text,
                    source_user_turns = excluded.source_user_turns,
                    updated_at = excluded.updated_at
                """,
                (
                    summary.user_id,
                    summary.guild_id,
                    summary.channel_id,
                    cleaned,
                    max(0, int(summary.source_user_turns)),
                    _to_db_time(summary.updated_at),
                ),
            )
            await db.commit()
