from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, List, Optional

import asyncpg

from ..types import (
    ConversationSummary,
    ConversationTurn,
    MemoryFact,
    PlannerDecision,
    ToolCallRecord,
)
from .storage.utils import _clamp, _join_citations, _load_json_object, _split_citations


logger = logging.getLogger("companion_pilot")


def _turn_from_row(row: asyncpg.Record) -> ConversationTurn:
    return ConversationTurn(
        user_id=str(row["user_id"]),
        guild_id=str(row["guild_id"]),
        channel_id=str(row["channel_id"]),
        role=str(row["role"]),
        content=str(row["content"]),
        timestamp=row["created_at"],
    )


class PostgresMemoryStore:
    """Postgres-backed memory store implementing the same API as MemoryStore."""

    SCHEMA_VERSION = 1
    backend_name = "postgres"

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn.strip()
        if not self.dsn:
            raise ValueError("DATABASE_URL cannot be empty")
        self._pool: asyncpg.Pool | None = None
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=1,
                max_size=6,
                command_timeout=30.0,
            )
        return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
        self._initialized = False

    async def ping(self) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute("SELECT 1")

    async def init(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                async with conn.transaction():
                    version = await self._get_schema_version(conn)
                    if version > self.SCHEMA_VERSION:
                        raise RuntimeError(
                            f"Postgres memory schema version {version} is newer than supported {self.SCHEMA_VERSION}. "
                            "Upgrade the bot before starting."
                        )
                    await self._create_schema(conn)
                    if version != self.SCHEMA_VERSION:
                        await self._set_schema_version(conn, self.SCHEMA_VERSION)
            self._initialized = True
            logger.info("[memory.postgres] schema ready (version=%s)", self.SCHEMA_VERSION)

    async def _get_schema_version(self, conn: asyncpg.Connection) -> int:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS memory_meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )
        row = await conn.fetchrow("SELECT value FROM memory_meta WHERE key = 'schema_version'")
        if row is None:
            return 0
        try:
            return int(str(row["value"]))
        except ValueError:
            return 0

    async def _set_schema_version(self, conn: asyncpg.Connection, version: int) -> None:
        await conn.execute(
            """
            INSERT INTO memory_meta (key, value, updated_at)
            VALUES ('schema_version', $1, NOW())
            ON CONFLICT(key) DO UPDATE SET
                value = EXCLUDED.value,
                updated_at = NOW()
            """,
            str(int(version)),
        )

    async def _create_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS memory_facts (
                user_id TEXT NOT NULL,
                fact_key TEXT NOT NULL,
                fact_value TEXT NOT NULL,
                confidence DOUBLE PRECISION NOT NULL DEFAULT 0.5,
                source TEXT NOT NULL DEFAULT 'unknown',
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                PRIMARY KEY (user_id, fact_key)
            );

            CREATE INDEX IF NOT EXISTS idx_memory_facts_user_updated
            ON memory_facts(user_id, updated_at DESC);

            CREATE TABLE IF NOT EXISTS chat_turns (
                turn_id BIGSERIAL PRIMARY KEY,
                user_id TEXT NOT NULL,
                guild_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
                content TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            CREATE INDEX IF NOT EXISTS idx_chat_turns_channel_time
            ON chat_turns(guild_id, channel_id, created_at DESC, turn_id DESC);

            CREATE INDEX IF NOT EXISTS idx_chat_turns_user_time
            ON chat_turns(user_id, created_at DESC);

            CREATE TABLE IF NOT EXISTS conversation_summaries (
                user_id TEXT NOT NULL,
                guild_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                summary_text TEXT NOT NULL,
                source_user_turns INTEGER NOT NULL DEFAULT 0,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                PRIMARY KEY (user_id, guild_id, channel_id)
            );

            CREATE TABLE IF NOT EXISTS tool_call_logs (
                log_id BIGSERIAL PRIMARY KEY,
                user_id TEXT NOT NULL,
                guild_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                tool_name TEXT NOT NULL,
                source TEXT NOT NULL,
                args_json JSONB NOT NULL,
                result_text TEXT NOT NULL,
                citations_text TEXT NOT NULL DEFAULT '',
                success BOOLEAN NOT NULL,
                error TEXT,
                error_kind TEXT NOT NULL DEFAULT 'ok',
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            CREATE INDEX IF NOT EXISTS idx_tool_call_logs_user_time
            ON tool_call_logs(user_id, created_at DESC);

            CREATE TABLE IF NOT EXISTS planner_decision_logs (
                log_id BIGSERIAL PRIMARY KEY,
                user_id TEXT NOT NULL,
                guild_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                planner TEXT NOT NULL,
                decision TEXT NOT NULL,
                rationale TEXT NOT NULL,
                payload_json JSONB NOT NULL,
                success BOOLEAN NOT NULL,
                error TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            CREATE INDEX IF NOT EXISTS idx_planner_decision_logs_user_time
            ON planner_decision_logs(user_id, created_at DESC);
            """
        )

    async def get_facts(self, user_id: str, limit: int | None = None) -> List[MemoryFact]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT user_id, fact_key, fact_value, confidence, source, updated_at
                FROM memory_facts
                WHERE user_id = $1
                ORDER BY updated_at DESC, fact_key ASC
                LIMIT $2
                """,
                user_id,
                None if limit is None else max(0, int(limit)),
            )
        return [
            MemoryFact(
                user_id=str(row["user_id"]),
                key=str(row["fact_key"]),
                value=str(row["fact_value"]),
                confidence=float(row["confidence"]),
                source=str(row["source"]),
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    async def get_summary(self, user_id: str, guild_id: str, channel_id: str) -> Optional[ConversationSummary]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT summary_text, source_user_turns, updated_at
                FROM conversation_summaries
                WHERE user_id = $1 AND guild_id = $2 AND channel_id = $3
                """,
                user_id,
                guild_id,
                channel_id,
            )
        if row is None:
            return None
        return ConversationSummary(
            user_id=user_id,
            guild_id=guild_id,
            channel_id=channel_id,
            summary_text=str(row["summary_text"]),
            updated_at=row["updated_at"],
            source_user_turns=int(row["source_user_turns"] or 0),
        )

    async def get_recent_turns(self, guild_id: str, channel_id: str, limit: int) -> List[ConversationTurn]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT user_id, guild_id, channel_id, role, content, created_at
                FROM chat_turns
                WHERE guild_id = $1 AND channel_id = $2
                ORDER BY created_at DESC, turn_id DESC
                LIMIT $3
                """,
                guild_id,
                channel_id,
                max(1, int(limit)),
            )
        return [_turn_from_row(row) for row in reversed(rows)]

    async def count_user_turns(self, user_id: str, guild_id: str, channel_id: str) -> int:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            value = await conn.fetchval(
                """
                SELECT COUNT(*)
                FROM chat_turns
                WHERE user_id = $1 AND guild_id = $2 AND channel_id = $3 AND role = 'user'
                """,
                user_id,
                guild_id,
                channel_id,
            )
        return int(value or 0)

    async def upsert_fact(self, fact: MemoryFact) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO memory_facts (user_id, fact_key, fact_value, confidence, source, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (user_id, fact_key) DO UPDATE SET
                    fact_value = EXCLUDED.fact_value,
                    confidence = EXCLUDED.confidence,
                    source = EXCLUDED.source,
                    updated_at = EXCLUDED.updated_at
                """,
                fact.user_id,
                fact.key,
                fact.value,
                _clamp(float(fact.confidence), 0.0, 1.0),
                fact.source,
                fact.updated_at,
            )

    async def append_turn(self, turn: ConversationTurn) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO chat_turns (user_id, guild_id, channel_id, role, content, created_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                turn.user_id,
                turn.guild_id,
                turn.channel_id,
                turn.role,
                turn.content,
                turn.timestamp,
            )

    async def put_summary(self, summary: ConversationSummary) -> None:
        cleaned = summary.summary_text.strip()
        if not cleaned:
            return
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO conversation_summaries (
                    user_id, guild_id, channel_id, summary_text, source_user_turns, updated_at
                )
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (user_id, guild_id, channel_id) DO UPDATE SET
                    summary_text = EXCLUDED.summary_text,
                    source_user_turns = EXCLUDED.source_user_turns,
                    updated_at = EXCLUDED.updated_at
                """,
                summary.user_id,
                summary.guild_id,
                summary.channel_id,
                cleaned,
                max(0, int(summary.source_user_turns)),
                summary.updated_at,
            )

    async def record_tool_call(self, record: ToolCallRecord) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO tool_call_logs (
                    user_id, guild_id, channel_id, tool_name, source, args_json,
                    result_text, citations_text, success, error, error_kind, created_at
                )
                VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8, $9, $10, $11, $12)
                """,
                record.user_id,
                record.guild_id,
                record.channel_id,
                record.tool_name,
                record.source,
                json.dumps(record.args, ensure_ascii=False, default=str),
                record.result_text,
                _join_citations(record.citations),
                bool(record.success),
                record.error,
                record.error_kind,
                record.timestamp,
            )

    async def record_planner_decision(self, decision: PlannerDecision) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO planner_decision_logs (
                    user_id, guild_id, channel_id, planner, decision, rationale,
                    payload_json, success, error, created_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10)
                """,
                decision.user_id,
                decision.guild_id,
                decision.channel_id,
                decision.planner,
                decision.decision_kind,
                decision.rationale,
                json.dumps(decision.payload, ensure_ascii=False, default=str),
                bool(decision.success),
                decision.error,
                decision.timestamp,
            )

    async def delete_fact(self, user_id: str, key: str) -> bool:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            status = await conn.execute(
                "DELETE FROM memory_facts WHERE user_id = $1 AND fact_key = $2",
                user_id,
                key,
            )
        return self._affected_rows(status) > 0

    async def clear_facts(self, user_id: str) -> int:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            status = await conn.execute("DELETE FROM memory_facts WHERE user_id = $1", user_id)
        return self._affected_rows(status)

    async def list_chat_turns(self, user_id: str, limit: int) -> List[ConversationTurn]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT user_id, guild_id, channel_id, role, content, created_at
                FROM chat_turns
                WHERE user_id = $1
                ORDER BY created_at DESC, turn_id DESC
                LIMIT $2
                """,
                user_id,
                max(1, int(limit)),
            )
        return [_turn_from_row(row) for row in reversed(rows)]

    async def clear_chat_turns(self, user_id: str) -> int:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            status = await conn.execute("DELETE FROM chat_turns WHERE user_id = $1", user_id)
        return self._affected_rows(status)

    async def list_tool_calls(self, user_id: str, limit: int) -> List[ToolCallRecord]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT user_id, guild_id, channel_id, tool_name, source, args_json::text AS args_json,
                       result_text, citations_text, success, error, error_kind, created_at
                FROM tool_call_logs
                WHERE user_id = $1
                ORDER BY log_id DESC
                LIMIT $2
                """,
                user_id,
                max(1, int(limit)),
            )
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
                timestamp=row["created_at"],
            )
            for row in rows
        ]

    async def list_planner_decisions(self, user_id: str, limit: int) -> List[PlannerDecision]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT user_id, guild_id, channel_id, planner, decision, rationale,
                       payload_json::text AS payload_json, success, error, created_at
                FROM planner_decision_logs
                WHERE user_id = $1
                ORDER BY log_id DESC
                LIMIT $2
                """,
                user_id,
                max(1, int(limit)),
            )
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
                timestamp=row["created_at"],
            )
            for row in rows
        ]

    @staticmethod
    def _affected_rows(status: Any) -> int:
        # asyncpg returns command tags such as "DELETE 3".
        parts = str(status or "").split()
        if parts and parts[-1].isdigit():
            return int(parts[-1])
        return 0
