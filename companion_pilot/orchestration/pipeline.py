from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional

from ..common import dedupe, truncate
from ..config import Settings
from ..errors import FatalError
from ..memory.base import MemoryBackend
from ..memory.summarizer import SummaryRefresher
from ..prompts.dialogue import build_direct_system_prompt, build_tool_synthesis_prompts
from ..safety import SafetyPolicy
from ..services.base import ModelInvoker
from ..types import (
    ASSISTANT_ROLE,
    USER_ROLE,
    Context,
    ConversationTurn,
    InboundMessage,
    MemoryWriteIntent,
    ModelRequest,
    PlanState,
    StageTimings,
    ToolCallRequest,
    ToolOutcome,
    TurnReply,
    utc_now,
)
from .context import ContextAssembler
from .executor import ToolExecutor
from .planner import Planner
from .reconciler import MemoryReconciler


logger = logging.getLogger("companion_pilot")


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def fallback_tool_output_text(outcomes: List[ToolOutcome]) -> str:
    return "\n\n".join(outcome.text for outcome in outcomes if outcome.success and outcome.text)


class ResponsePipeline:
    """One inbound turn: context, plan, tools, memory write, completion, persistence.

    Only the final completion is mandatory. Every other stage degrades and the turn continues.
    Holds no per-turn state between calls.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        memory: MemoryBackend,
        model: ModelInvoker,
        assembler: ContextAssembler,
        planner: Planner,
        executor: ToolExecutor,
        reconciler: MemoryReconciler,
        safety: SafetyPolicy | None = None,
        summaries: SummaryRefresher | None = None,
    ) -> None:
        self.settings = settings
        self.memory = memory
        self.model = model
        self.assembler = assembler
        self.planner = planner
        self.executor = executor
        self.reconciler = reconciler
        self.safety = safety or SafetyPolicy()
        self.summaries = summaries

    async def handle(self, message: InboundMessage) -> TurnReply:
        turn_started = time.perf_counter()
        timings = StageTimings()
        states: List[PlanState] = [PlanState.IDLE]

        safety_flags = self.safety.validate_user_message(message.content)
        if safety_flags:
            logger.warning("[safety] user=%s channel=%s flags=%s", message.user_id, message.channel_id, safety_flags)

        started = time.perf_counter()
        context = await self.assembler.assemble(message)
        timings.context_ms = _elapsed_ms(started)
        degraded: List[str] = list(context.degraded)

        started = time.perf_counter()
        states.append(PlanState.DECIDING)
        plan = await self.planner.plan(context)
        planner_ms = _elapsed_ms(started)
        if plan.fallback:
            degraded.append("planner_fallback")

        executed: List[ToolCallRequest] = []
        memory_intent: Optional[MemoryWriteIntent] = plan.memory_write
        needs_completion = plan.needs_completion
        replans_left = max(0, self.settings.max_replans)

        if plan.tool_calls:
            states.append(PlanState.TOOLS_PENDING)
        elif memory_intent is not None:
            states.append(PlanState.MEMORY_PENDING)
        else:
            states.append(PlanState.DIRECT_REPLY)

        pending = list(plan.tool_calls)
        while pending:
            started = time.perf_counter()
            outcomes = await self.executor.execute(pending, message)
            timings.tools_ms += _elapsed_ms(started)
            executed.extend(pending)
            context.tool_outputs.extend(outcomes)
            degraded.extend(f"tool:{outcome.tool_name}" for outcome in outcomes if not outcome.success)
            states.append(PlanState.TOOL_EXECUTED)
            pending = []

            if not plan.replan or replans_left <= 0:
                break
            replans_left -= 1

            started = time.perf_counter()
            states.append(PlanState.DECIDING)
            plan = await self.planner.plan(context, context.tool_outputs)
            planner_ms += _elapsed_ms(started)
            if plan.fallback:
                degraded.append("planner_fallback")
                break
            if plan.memory_write is not None:
                memory_intent = plan.memory_write
            needs_completion = plan.needs_completion
            if plan.tool_calls:
                states.append(PlanState.TOOLS_PENDING)
                pending = list(plan.tool_calls)
            # A second decision never re-plans again.
            plan.replan = False
        timings.planner_ms = planner_ms

        memory_written = False
        if memory_intent is not None:
            if states[-1] != PlanState.MEMORY_PENDING:
                states.append(PlanState.MEMORY_PENDING)
            started = time.perf_counter()
            outcome = await self.reconciler.apply(memory_intent, message)
            timings.memory_write_ms = _elapsed_ms(started)
            memory_written = outcome.stored
            if not outcome.stored:
                degraded.append("memory_write")
        else:
            logger.debug("[memory.write] skipped user=%s reason=%s", message.user_id, plan.memory_skip_reason)

        states.append(PlanState.COMPLETING)
        started = time.perf_counter()
        text = await self._complete(context, needs_completion)
        timings.completion_ms = _elapsed_ms(started)
        if self.settings.max_response_chars and len(text) > self.settings.max_response_chars:
            text = truncate(text, self.settings.max_response_chars)

        started = time.perf_counter()
        if not await self._persist(message, text):
            degraded.append("persist")
        timings.persist_ms = _elapsed_ms(started)

        states.append(PlanState.DONE)
        timings.total_ms = _elapsed_ms(turn_started)
        slow = timings.total_ms > int(self.settings.slow_turn_seconds * 1000)
        if slow:
            logger.warning(
                "[turn.slow] user=%s guild=%s channel=%s timings=%s",
                message.user_id,
                message.guild_id,
                message.channel_id,
                timings.as_dict(),
            )
        logger.info(
            "[turn.done] user=%s channel=%s tools=%s memory_written=%s degraded=%s total_ms=%s",
            message.user_id,
            message.channel_id,
            len(executed),
            memory_written,
            degraded,
            timings.total_ms,
        )

        citations = dedupe([c for outcome in context.tool_outputs if outcome.success for c in outcome.citations])
        return TurnReply(
            text=text,
            citations=citations,
            tool_calls=executed,
            safety_flags=safety_flags,
            timings=timings,
            slow=slow,
            states=states,
            degraded=degraded,
            memory_written=memory_written,
        )

    async def _complete(self, context: Context, needs_completion: bool) -> str:
        outcomes = context.tool_outputs
        tool_text = fallback_tool_output_text(outcomes)
        if not needs_completion and tool_text:
            return tool_text

        override = self.settings.system_prompt_override
        if outcomes:
            system_prompt, user_prompt = build_tool_synthesis_prompts(context, outcomes, override)
        else:
            system_prompt = build_direct_system_prompt(context, override)
            user_prompt = context.message.content

        try:
            text = await asyncio.wait_for(
                self.model.complete(ModelRequest(system_prompt=system_prompt, user_prompt=user_prompt)),
                timeout=self.settings.model_timeout_seconds,
            )
            if not text.strip():
                raise RuntimeError("model returned an empty reply")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            if tool_text:
                logger.warning("[turn.completion] failed, replying with raw tool outputs: %s", error)
                return tool_text
            logger.error(
                "[turn.completion] failed user=%s channel=%s error=%s",
                context.message.user_id,
                context.message.channel_id,
                error,
            )
            raise FatalError("model completion failed", stage="completion", details={"cause": error}) from exc
        return text

    async def _persist(self, message: InboundMessage, reply_text: str) -> bool:
        # Both turns are stamped here, in order, so channel history follows arrival order.
        user_turn = ConversationTurn(
            user_id=message.user_id,
            guild_id=message.guild_id,
            channel_id=message.channel_id,
            role=USER_ROLE,
            content=message.content,
            timestamp=utc_now(),
        )
        if not await self._append_turn(user_turn):
            return False
        assistant_turn = ConversationTurn(
            user_id=message.user_id,
            guild_id=message.guild_id,
            channel_id=message.channel_id,
            role=ASSISTANT_ROLE,
            content=reply_text,
            timestamp=max(utc_now(), user_turn.timestamp),
        )
        if not await self._append_turn(assistant_turn):
            return False

        if self.summaries is not None:
            self.summaries.enqueue(message.user_id, message.guild_id, message.channel_id)
        return True

    async def _append_turn(self, turn: ConversationTurn) -> bool:
        try:
            await asyncio.wait_for(self.memory.append_turn(turn), timeout=self.settings.memory_timeout_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "[turn.persist] failed role=%s user=%s channel=%s error=%s",
                turn.role,
                turn.user_id,
                turn.channel_id,
                str(exc) or exc.__class__.__name__,
            )
            return False
        return True
