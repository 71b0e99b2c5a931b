from __future__ import annotations

from typing import List

import aiosqlite

from ...types import PlannerDecision, ToolCallRecord
from .utils import (
    _dump_json,
    _from_db_time,
    _join_citations,
    _load_json_object,
    _split_citations,
    _sqlite_memory_connection,
    _to_db_time,
)


class MemoryAuditMixin:
    """Append-only tool call and planner decision logs."""

    async def record_tool_call(self, record: ToolCallRecord) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO tool_call_logs (
                    user_id, guild_id, channel_id, tool_name, source, args_json,
                    result_text, citations_text, success, error, error_kind, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.user_id,
                    record.guild_id,
                    record.channel_id,
                    record.tool_name,
                    record.source,
                    _dump_json(record.args),
                    record.result_text,
                    _join_citations(record.citations),
                    1 if record.success else 0,
                    record.error,
                    record.error_kind,
                    _to_db_time(record.timestamp),
                ),
            )
            await db.commit()

    async def record_planner_decision(self, decision: PlannerDecision) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO planner_decision_logs (
                    user_id, guild_id, channel_id, planner, decision, rationale,
                    payload_json, success, error, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    decision.user_id,
                    decision.guild_id,
                    decision.channel_id,
                    decision.planner,
                    decision.decision_kind,
                    decision.rationale,
                    _dump_json(decision.payload),
                    1 if decision.success else 0,
                    decision.error,
                    _to_db_time(decision.timestamp),
                ),
            )
            await db.commit()

    async def list_tool_calls(self, user_id: str, limit: int) -> List[ToolCallRecord]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT user_id, guild_id, channel_id, tool_name, source, args_json, result_text,
                       citations_text, success, error, error_kind, created_at
                FROM tool_call_logs
                WHERE user_id = ?
                ORDER BY log_id DESC
                LIMIT ?
                """,
                (user_id, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()

        return [
            ToolCallRecord(
                user_id=str(row["user_id"]),
                guild_id=str(row["guild_id"]),
                channel_id=str(row["channel_id"]),
                tool_name=str(row["tool_name"]),
                source=str(row["source"]),
                args=_load_json_object(row["args_json"]),
                result_text=str(row["result_text"]),
                citations=_split_citations(row["citations_text"]),
                success=bool(row["success"]),
                error=row["error"],
                error_kind=str(row["error_kind"]),
                timestamp=_from_db_time(row["created_at"]),
            )
            for row in rows
        ]

    async def list_planner_decisions(self, user_id: str, limit: int) -> List[PlannerDecision]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT user_id, guild_id, channel_id, planner, decision, rationale, payload_json,
                       success, error, created_at
                FROM planner_decision_logs
                WHERE user_id = ?
                ORDER BY log_id DESC
                LIMIT ?
                """,
                (user_id, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()

        return [
            PlannerDecision(
                user_id=str(row["user_id"]),
                guild_id=str(row["guild_id"]),
                channel_id=str(row["channel_id"]),
                planner=str(row["planner"]),
                decision_kind=str(row["decision"]),
                rationale=str(row["rationale"]),
                payload=_load_json_object(row["payload_json"]),
                success=bool(row["success"]),
                error=row["error"],
                timestamp=_from_db_time(row["created_at"]),
            )
            for row in rows
        ]
