from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
TURN_ROLES = frozenset({USER_ROLE, ASSISTANT_ROLE})

OUTCOME_OK = "ok"
OUTCOME_CONFIGURATION = "configuration"
OUTCOME_VALIDATION = "validation"
OUTCOME_TRANSIENT = "transient"

DECISION_APPLY_PLAN = "apply_plan"
DECISION_FALLBACK = "fallback_no_tools"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PlanState(str, Enum):
    IDLE = "idle"
    DECIDING = "deciding"
    TOOLS_PENDING = "tools_pending"
    MEMORY_PENDING = "memory_pending"
    DIRECT_REPLY = "direct_reply"
    TOOL_EXECUTED = "tool_executed"
    COMPLETING = "completing"
    DONE = "done"


@dataclass(frozen=True, slots=True)
class InboundMessage:
    user_id: str
    guild_id: str
    channel_id: str
    content: str
    received_at: datetime = field(default_factory=utc_now)
    message_id: str = ""

    @property
    def channel_key(self) -> tuple[str, str]:
        return (self.guild_id, self.channel_id)


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    user_id: str
    guild_id: str
    channel_id: str
    role: str
    content: str
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.role not in TURN_ROLES:
            raise ValueError(f"turn role must be one of {sorted(TURN_ROLES)}, got {self.role!r}")

    def as_line(self) -> str:
        return f"{self.role}: {self.content}"


@dataclass(frozen=True, slots=True)
class MemoryFact:
    user_id: str
    key: str
    value: str
    confidence: float
    source: str
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True, slots=True)
class ConversationSummary:
    user_id: str
    guild_id: str
    channel_id: str
    summary_text: str
    updated_at: datetime = field(default_factory=utc_now)
    source_user_turns: int = 0


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: Dict[str, Any]


@dataclass(frozen=True, slots=True)
class ToolCallRecord:
    user_id: str
    guild_id: str
    channel_id: str
    tool_name: str
    source: str
    args: Dict[str, Any]
    result_text: str
    citations: List[str]
    success: bool
    error: Optional[str] = None
    error_kind: str = OUTCOME_OK
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(frozen=True, slots=True)
class PlannerDecision:
    user_id: str
    guild_id: str
    channel_id: str
    planner: str
    decision_kind: str
    rationale: str
    payload: Dict[str, Any]
    success: bool
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(frozen=True, slots=True)
class ModelRequest:
    system_prompt: str
    user_prompt: str
    temperature: float | None = None
    max_output_tokens: int | None = None


@dataclass(slots=True)
class ToolResult:
    text: str
    citations: List[str] = field(default_factory=list)
    success: bool = True
    error: Optional[str] = None
    error_kind: str = OUTCOME_OK

    @classmethod
    def failure(cls, error: str, error_kind: str) -> "ToolResult":
        return cls(text="", citations=[], success=False, error=error, error_kind=error_kind)


@dataclass(frozen=True, slots=True)
class ToolCallRequest:
    tool_name: str
    args: Dict[str, Any] = field(default_factory=dict)

    def as_payload(self) -> Dict[str, Any]:
        return {"tool_name": self.tool_name, "args": dict(self.args)}


@dataclass(frozen=True, slots=True)
class MemoryWriteIntent:
    key: str
    value: str
    confidence: float
    source: str = "user_message"

    def as_payload(self) -> Dict[str, Any]:
        return {
            "store": True,
            "key": self.key,
            "value": self.value,
            "confidence": self.confidence,
            "source": self.source,
        }


@dataclass(slots=True)
class PlanningResult:
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    memory_write: Optional[MemoryWriteIntent] = None
    needs_completion: bool = True
    replan: bool = False
    rationale: str = ""
    fallback: bool = False
    fallback_reason: str = ""
    error: Optional[str] = None
    memory_skip_reason: str = ""

    @classmethod
    def fallback_plan(cls, reason: str, error: str | None = None) -> "PlanningResult":
        return cls(
            tool_calls=[],
            memory_write=None,
            needs_completion=True,
            replan=False,
            rationale=reason,
            fallback=True,
            fallback_reason=reason,
            error=error,
            memory_skip_reason="planner_fallback",
        )

    def as_payload(self) -> Dict[str, Any]:
        if self.fallback:
            return {}
        memory: Dict[str, Any]
        if self.memory_write is not None:
            memory = self.memory_write.as_payload()
        else:
            memory = {"store": False, "reason": self.memory_skip_reason or "planner_no_store"}
        return {
            "tool_calls": [call.as_payload() for call in self.tool_calls],
            "memory": memory,
            "needs_completion": self.needs_completion,
            "replan": self.replan,
            "rationale": self.rationale,
        }


@dataclass(slots=True)
class ToolOutcome:
    tool_name: str
    args: Dict[str, Any]
    text: str
    citations: List[str]
    success: bool
    error: Optional[str] = None
    error_kind: str = OUTCOME_OK
    duration_ms: int = 0


@dataclass(slots=True)
class Context:
    message: InboundMessage
    recent_turns: List[ConversationTurn] = field(default_factory=list)
    facts: List[MemoryFact] = field(default_factory=list)
    summary: Optional[ConversationSummary] = None
    tool_outputs: List[ToolOutcome] = field(default_factory=list)
    degraded: List[str] = field(default_factory=list)

    @property
    def has_long_term_memory(self) -> bool:
        return bool(self.facts) or self.summary is not None


@dataclass(slots=True)
class ReconcileOutcome:
    stored: bool
    fact: Optional[MemoryFact] = None
    error: Optional[str] = None


@dataclass(slots=True)
class StageTimings:
    context_ms: int = 0
    planner_ms: int = 0
    tools_ms: int = 0
    memory_write_ms: int = 0
    completion_ms: int = 0
    persist_ms: int = 0
    total_ms: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "context_ms": self.context_ms,
            "planner_ms": self.planner_ms,
            "tools_ms": self.tools_ms,
            "memory_write_ms": self.memory_write_ms,
            "completion_ms": self.completion_ms,
            "persist_ms": self.persist_ms,
            "total_ms": self.total_ms,
        }


@dataclass(slots=True)
class TurnReply:
    text: str
    citations: List[str] = field(default_factory=list)
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    safety_flags: List[str] = field(default_factory=list)
    timings: StageTimings = field(default_factory=StageTimings)
    slow: bool = False
    states: List[PlanState] = field(default_factory=list)
    degraded: List[str] = field(default_factory=list)
    memory_written: bool = False
