from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Sequence

from ..common import truncate_for_log
from ..errors import error_kind
from ..memory.base import MemoryBackend
from ..tools.registry import ToolRegistry
from ..types import (
    OUTCOME_CONFIGURATION,
    OUTCOME_OK,
    OUTCOME_TRANSIENT,
    InboundMessage,
    ToolCallRecord,
    ToolCallRequest,
    ToolOutcome,
)


logger = logging.getLogger("companion_pilot")

TOOL_SOURCE = "unified_planner"


class ToolExecutor:
    """Runs planned tool calls concurrently and writes one ToolCallRecord per call."""

    def __init__(
        self,
        registry: ToolRegistry,
        memory: MemoryBackend,
        *,
        timeout_seconds: float = 20.0,
        audit_timeout_seconds: float = 5.0,
    ) -> None:
        self.registry = registry
        self.memory = memory
        self.timeout_seconds = timeout_seconds
        self.audit_timeout_seconds = audit_timeout_seconds

    async def execute(self, requests: Sequence[ToolCallRequest], message: InboundMessage) -> List[ToolOutcome]:
        if not requests:
            return []
        outcomes = list(await asyncio.gather(*(self._run_one(request) for request in requests)))
        for outcome in outcomes:
            await self._record(outcome, message)
        return outcomes

    async def _run_one(self, request: ToolCallRequest) -> ToolOutcome:
        started = time.perf_counter()
        tool = self.registry.get(request.tool_name)
        if tool is None:
            outcome = ToolOutcome(
                tool_name=request.tool_name,
                args=dict(request.args),
                text="",
                citations=[],
                success=False,
                error=f"unknown tool: {request.tool_name}",
                error_kind=OUTCOME_CONFIGURATION,
            )
            self._log(outcome)
            return outcome

        try:
            result = await asyncio.wait_for(tool.invoke(dict(request.args)), timeout=self.timeout_seconds)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            outcome = ToolOutcome(
                tool_name=request.tool_name,
                args=dict(request.args),
                text="",
                citations=[],
                success=False,
                error=f"timed out after {self.timeout_seconds:g}s",
                error_kind=OUTCOME_TRANSIENT,
            )
        except Exception as exc:
            outcome = ToolOutcome(
                tool_name=request.tool_name,
                args=dict(request.args),
                text="",
                citations=[],
                success=False,
                error=str(exc) or exc.__class__.__name__,
                error_kind=error_kind(exc),
            )
        else:
            outcome = ToolOutcome(
                tool_name=request.tool_name,
                args=dict(request.args),
                text=result.text if result.success else "",
                citations=list(result.citations) if result.success else [],
                success=result.success,
                error=None if result.success else (result.error or "tool reported failure"),
                error_kind=OUTCOME_OK if result.success else result.error_kind,
            )

        outcome.duration_ms = int((time.perf_counter() - started) * 1000)
        self._log(outcome)
        return outcome

    @staticmethod
    def _log(outcome: ToolOutcome) -> None:
        if outcome.success:
            logger.info(
                "[tool.call] ok tool=%s duration_ms=%s citations=%s",
                outcome.tool_name,
                outcome.duration_ms,
                len(outcome.citations),
            )
            return
        logger.warning(
            "[tool.call] failed tool=%s kind=%s duration_ms=%s error=%s args=%s",
            outcome.tool_name,
            outcome.error_kind,
            outcome.duration_ms,
            outcome.error,
            truncate_for_log(repr(outcome.args), 200),
        )

    async def _record(self, outcome: ToolOutcome, message: InboundMessage) -> None:
        record = ToolCallRecord(
            user_id=message.user_id,
            guild_id=message.guild_id,
            channel_id=message.channel_id,
            tool_name=outcome.tool_name,
            source=TOOL_SOURCE,
            args=dict(outcome.args),
            result_text=outcome.text,
            citations=list(outcome.citations),
            success=outcome.success,
            error=outcome.error,
            error_kind=outcome.error_kind,
        )
        try:
            await asyncio.wait_for(self.memory.record_tool_call(record), timeout=self.audit_timeout_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "[tool.call] failed to persist tool call log tool=%s error=%s",
                outcome.tool_name,
                str(exc) or exc.__class__.__name__,
            )
