from __future__ import annotations

import itertools
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from ..types import (
    USER_ROLE,
    ConversationSummary,
    ConversationTurn,
    MemoryFact,
    PlannerDecision,
    ToolCallRecord,
)


class InMemoryMemoryStore:
    """Ephemeral process-local store used when no persistence connection is configured."""

    backend_name = "in_memory"

    def __init__(self) -> None:
        self._facts: Dict[str, Dict[str, MemoryFact]] = defaultdict(dict)
        self._summaries: Dict[Tuple[str, str, str], ConversationSummary] = {}
        self._turns: List[Tuple[int, ConversationTurn]] = []
        self._tool_calls: List[ToolCallRecord] = []
        self._planner_decisions: List[PlannerDecision] = []
        self._seq = itertools.count(1)

    async def init(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def ping(self) -> None:
        return None

    async def get_facts(self, user_id: str, limit: int | None = None) -> List[MemoryFact]:
        facts = sorted(self._facts.get(user_id, {}).values(), key=lambda fact: fact.updated_at, reverse=True)
        if limit is not None:
            facts = facts[: max(0, int(limit))]
        return facts

    async def get_summary(self, user_id: str, guild_id: str, channel_id: str) -> Optional[ConversationSummary]:
        return self._summaries.get((user_id, guild_id, channel_id))

    def _channel_turns(self, guild_id: str, channel_id: str) -> List[Tuple[int, ConversationTurn]]:
        rows = [
            (seq, turn)
            for seq, turn in self._turns
            if turn.guild_id == guild_id and turn.channel_id == channel_id
        ]
        rows.sort(key=lambda row: (row[1].timestamp, row[0]))
        return rows

    async def get_recent_turns(self, guild_id: str, channel_id: str, limit: int) -> List[ConversationTurn]:
        rows = self._channel_turns(guild_id, channel_id)
        window = rows[-max(1, int(limit)) :]
        return [turn for _, turn in window]

    async def count_user_turns(self, user_id: str, guild_id: str, channel_id: str) -> int:
        return sum(
            1
            for _, turn in self._turns
            if turn.user_id == user_id
            and turn.guild_id == guild_id
            and turn.channel_id == channel_id
            and turn.role == USER_ROLE
        )

    async def upsert_fact(self, fact: MemoryFact) -> None:
        self._facts[fact.user_id][fact.key] = fact

    async def append_turn(self, turn: ConversationTurn) -> None:
        self._turns.append((next(self._seq), turn))

    async def put_summary(self, summary: ConversationSummary) -> None:
        self._summaries[(summary.user_id, summary.guild_id, summary.channel_id)] = summary

    async def record_tool_call(self, record: ToolCallRecord) -> None:
        self._tool_calls.append(record)

    async def record_planner_decision(self, decision: PlannerDecision) -> None:
        self._planner_decisions.append(decision)

    async def delete_fact(self, user_id: str, key: str) -> bool:
        return self._facts.get(user_id, {}).pop(key, None) is not None

    async def clear_facts(self, user_id: str) -> int:
        removed = self._facts.pop(user_id, {})
        return len(removed)

    async def list_chat_turns(self, user_id: str, limit: int) -> List[ConversationTurn]:
        rows = [(seq, turn) for seq, turn in self._turns if turn.user_id == user_id]
        rows.sort(key=lambda row: (row[1].timestamp, row[0]))
        return [turn for _, turn in rows[-max(1, int(limit)) :]]

    async def clear_chat_turns(self, user_id: str) -> int:
        before = len(self._turns)
        self._turns = [(seq, turn) for seq, turn in self._turns if turn.user_id != user_id]
        return before - len(self._turns)

    async def list_tool_calls(self, user_id: str, limit: int) -> List[ToolCallRecord]:
        rows = [record for record in self._tool_calls if record.user_id == user_id]
        return list(reversed(rows))[: max(1, int(limit))]

    async def list_planner_decisions(self, user_id: str, limit: int) -> List[PlannerDecision]:
        rows = [decision for decision in self._planner_decisions if decision.user_id == user_id]
        return list(reversed(rows))[: max(1, int(limit))]
