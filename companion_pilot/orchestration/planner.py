from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from typing import Any, Dict, List, Optional, Sequence

from ..common import truncate_for_log
from ..errors import PlanValidationError
from ..memory.base import MemoryBackend
from ..prompts.planner import build_planner_system_prompt, build_planner_user_prompt
from ..services.base import ModelInvoker
from ..tools.registry import ToolRegistry
from ..types import (
    DECISION_APPLY_PLAN,
    DECISION_FALLBACK,
    Context,
    MemoryWriteIntent,
    ModelRequest,
    PlannerDecision,
    PlanningResult,
    ToolCallRequest,
    ToolOutcome,
)


logger = logging.getLogger("companion_pilot")

PLANNER_NAME = "unified"
MAX_PLANNED_TOOL_CALLS = 6
MEMORY_SOURCE = "user_message"
DEFAULT_FACT_CONFIDENCE = 0.5

REASON_MODEL_ERROR = "planner_model_error"
REASON_PARSE_ERROR = "planner_parse_error"
REASON_VALIDATION_ERROR = "planner_validation_error"


def sanitize_memory_key(raw: str) -> str:
    normalized = "".join(ch.lower() if ch.isascii() and ch.isalnum() else "_" for ch in raw)
    normalized = re.sub(r"_+", "_", normalized)
    return normalized.strip("_")


def clean_memory_value(value: str) -> str:
    return value.strip().strip("\"'").rstrip(".!?").strip()


def strip_json_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```(?:json)?", "", cleaned, flags=re.IGNORECASE).strip()
        cleaned = re.sub(r"```$", "", cleaned).strip()
    return cleaned


def extract_first_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span, ignoring braces inside JSON strings."""
    depth = 0
    start: Optional[int] = None
    in_string = False
    escaped = False

    for index, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = index
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start is not None:
                return text[start : index + 1]
    return None


def parse_plan_payload(raw: str) -> Dict[str, Any]:
    cleaned = strip_json_fences(raw)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        candidate = extract_first_json_object(cleaned)
        if candidate is None:
            raise PlanValidationError(
                "planner output contains no JSON object",
                stage="planner",
                details={"reason": REASON_PARSE_ERROR},
            ) from None
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as exc:
            raise PlanValidationError(
                f"planner output is not valid JSON: {exc.msg}",
                stage="planner",
                details={"reason": REASON_PARSE_ERROR},
            ) from exc

    if not isinstance(parsed, dict):
        raise PlanValidationError(
            "planner output must be a JSON object",
            stage="planner",
            details={"reason": REASON_VALIDATION_ERROR},
        )
    return parsed


def _invalid(message: str) -> PlanValidationError:
    return PlanValidationError(message, stage="planner", details={"reason": REASON_VALIDATION_ERROR})


def _optional_bool(payload: Dict[str, Any], field: str, default: bool) -> bool:
    value = payload.get(field, default)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise _invalid(f"`{field}` must be a boolean")
    return value


def _validate_tool_calls(raw_calls: Any) -> List[ToolCallRequest]:
    if raw_calls is None:
        return []
    if not isinstance(raw_calls, list):
        raise _invalid("`tool_calls` must be a list")

    calls: List[ToolCallRequest] = []
    for index, item in enumerate(raw_calls):
        if not isinstance(item, dict):
            raise _invalid(f"tool_calls[{index}] must be an object")
        tool_name = item.get("tool_name")
        if not isinstance(tool_name, str) or not tool_name.strip():
            raise _invalid(f"tool_calls[{index}].tool_name must be a non-empty string")
        args = item.get("args", {})
        if args is None:
            args = {}
        if not isinstance(args, dict):
            raise _invalid(f"tool_calls[{index}].args must be an object")
        calls.append(ToolCallRequest(tool_name=tool_name.strip(), args=dict(args)))

    if len(calls) > MAX_PLANNED_TOOL_CALLS:
        logger.debug("[planner] dropping %s tool calls over the cap", len(calls) - MAX_PLANNED_TOOL_CALLS)
        calls = calls[:MAX_PLANNED_TOOL_CALLS]
    return calls


def _validate_memory(raw_memory: Any) -> tuple[Optional[MemoryWriteIntent], str]:
    if raw_memory is None:
        return None, "planner_no_store"
    if not isinstance(raw_memory, dict):
        raise _invalid("`memory` must be an object")

    store = raw_memory.get("store", False)
    if not isinstance(store, bool):
        raise _invalid("`memory.store` must be a boolean")
    if not store:
        return None, "planner_no_store"

    raw_key = raw_memory.get("key", "")
    raw_value = raw_memory.get("value", "")
    if not isinstance(raw_key, str) or not isinstance(raw_value, str):
        raise _invalid("`memory.key` and `memory.value` must be strings")

    confidence = raw_memory.get("confidence", DEFAULT_FACT_CONFIDENCE)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise _invalid("`memory.confidence` must be a number")
    if not math.isfinite(float(confidence)):
        raise _invalid("`memory.confidence` must be a finite number")

    key = sanitize_memory_key(raw_key)
    value = clean_memory_value(raw_value)
    if not key or not value:
        return None, "planner_invalid_fact"

    return (
        MemoryWriteIntent(
            key=key,
            value=value,
            confidence=max(0.0, min(1.0, float(confidence))),
            source=MEMORY_SOURCE,
        ),
        "",
    )


def validate_plan(payload: Dict[str, Any]) -> PlanningResult:
    tool_calls = _validate_tool_calls(payload.get("tool_calls"))
    memory_write, skip_reason = _validate_memory(payload.get("memory"))
    rationale = payload.get("rationale")
    if rationale is not None and not isinstance(rationale, str):
        raise _invalid("`rationale` must be a string")

    return PlanningResult(
        tool_calls=tool_calls,
        memory_write=memory_write,
        needs_completion=_optional_bool(payload, "needs_completion", True),
        replan=_optional_bool(payload, "replan", False),
        rationale=(rationale or "").strip() or "model_planner",
        memory_skip_reason=skip_reason,
    )


class Planner:
    """Delegates the per-turn decision to the model and enforces the plan schema.

    Every call to ``plan`` writes exactly one PlannerDecision, whether the plan was applied
    or replaced by the no-tools fallback.
    """

    def __init__(
        self,
        model: ModelInvoker,
        memory: MemoryBackend,
        registry: ToolRegistry,
        *,
        model_timeout_seconds: float = 45.0,
        audit_timeout_seconds: float = 5.0,
    ) -> None:
        self.model = model
        self.memory = memory
        self.registry = registry
        self.model_timeout_seconds = model_timeout_seconds
        self.audit_timeout_seconds = audit_timeout_seconds

    async def plan(self, context: Context, tool_outputs: Sequence[ToolOutcome] = ()) -> PlanningResult:
        request = ModelRequest(
            system_prompt=build_planner_system_prompt(context, self.registry.definitions()),
            user_prompt=build_planner_user_prompt(context.message.content, tool_outputs),
            temperature=0.0,
        )

        try:
            raw = await asyncio.wait_for(self.model.complete(request), timeout=self.model_timeout_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.warning("[planner.fallback] reason=%s error=%s", REASON_MODEL_ERROR, error)
            result = PlanningResult.fallback_plan(REASON_MODEL_ERROR, error)
        else:
            try:
                result = validate_plan(parse_plan_payload(raw))
            except PlanValidationError as exc:
                reason = str(exc.details.get("reason") or REASON_VALIDATION_ERROR)
                logger.warning(
                    "[planner.fallback] reason=%s error=%s raw=%s",
                    reason,
                    exc.message,
                    truncate_for_log(raw, 300),
                )
                result = PlanningResult.fallback_plan(reason, exc.message)

        if not result.fallback:
            logger.info(
                "[planner] tools=%s memory=%s replan=%s rationale=%s",
                [call.tool_name for call in result.tool_calls],
                result.memory_write.key if result.memory_write else result.memory_skip_reason,
                result.replan,
                truncate_for_log(result.rationale, 120),
            )
        await self._record_decision(context, result)
        return result

    async def _record_decision(self, context: Context, result: PlanningResult) -> None:
        message = context.message
        decision = PlannerDecision(
            user_id=message.user_id,
            guild_id=message.guild_id,
            channel_id=message.channel_id,
            planner=PLANNER_NAME,
            decision_kind=DECISION_FALLBACK if result.fallback else DECISION_APPLY_PLAN,
            rationale=result.rationale,
            payload=result.as_payload(),
            success=not result.fallback,
            error=result.error,
        )
        try:
            await asyncio.wait_for(
                self.memory.record_planner_decision(decision),
                timeout=self.audit_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "[planner] failed to persist planner decision user=%s channel=%s error=%s",
                message.user_id,
                message.channel_id,
                str(exc) or exc.__class__.__name__,
            )
