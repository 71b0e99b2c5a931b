from __future__ import annotations

from typing import List, Optional, Protocol

from ..types import (
    ConversationSummary,
    ConversationTurn,
    MemoryFact,
    PlannerDecision,
    ToolCallRecord,
)


class MemoryBackend(Protocol):
    """Narrow read/write contract the orchestration core consumes."""

    backend_name: str

    async def init(self) -> None: ...

    async def close(self) -> None: ...

    async def ping(self) -> None: ...

    async def get_facts(self, user_id: str, limit: int | None = None) -> List[MemoryFact]: ...

    async def get_summary(self, user_id: str, guild_id: str, channel_id: str) -> Optional[ConversationSummary]: ...

    async def get_recent_turns(self, guild_id: str, channel_id: str, limit: int) -> List[ConversationTurn]: ...

    async def count_user_turns(self, user_id: str, guild_id: str, channel_id: str) -> int: ...

    async def upsert_fact(self, fact: MemoryFact) -> None: ...

    async def append_turn(self, turn: ConversationTurn) -> None: ...

    async def put_summary(self, summary: ConversationSummary) -> None: ...

    async def record_tool_call(self, record: ToolCallRecord) -> None: ...

    async def record_planner_decision(self, decision: PlannerDecision) -> None: ...

    # Administrative operations. The pipeline never calls these.

    async def delete_fact(self, user_id: str, key: str) -> bool: ...

    async def clear_facts(self, user_id: str) -> int: ...

    async def list_chat_turns(self, user_id: str, limit: int) -> List[ConversationTurn]: ...

    async def clear_chat_turns(self, user_id: str) -> int: ...

    async def list_tool_calls(self, user_id: str, limit: int) -> List[ToolCallRecord]: ...

    async def list_planner_decisions(self, user_id: str, limit: int) -> List[PlannerDecision]: ...
