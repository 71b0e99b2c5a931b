from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .config import Settings
from .memory.base import MemoryBackend
from .memory.factory import build_memory_store
from .memory.summarizer import SummaryRefresher
from .orchestration.context import ContextAssembler
from .orchestration.dispatcher import ChannelDispatcher
from .orchestration.executor import ToolExecutor
from .orchestration.pipeline import ResponsePipeline
from .orchestration.planner import Planner
from .orchestration.reconciler import MemoryReconciler
from .safety import SafetyPolicy
from .services.base import ModelInvoker
from .services.factory import build_model_invoker
from .tools.registry import ToolRegistry, build_tool_registry
from .types import InboundMessage, TurnReply


logger = logging.getLogger("companion_pilot")


@dataclass(slots=True)
class CompanionRuntime:
    """Everything a chat adapter needs, wired once at startup."""

    settings: Settings
    memory: MemoryBackend
    model: ModelInvoker
    tools: ToolRegistry
    pipeline: ResponsePipeline
    dispatcher: ChannelDispatcher
    summaries: SummaryRefresher | None = None

    async def start(self) -> None:
        await self.memory.init()
        await self.model.start()
        await self.tools.start()
        if self.summaries is not None:
            self.summaries.start()
        logger.info(
            "[runtime] started memory=%s model=%s tools=%s",
            self.memory.backend_name,
            self.model.name,
            self.tools.names(),
        )

    async def close(self) -> None:
        await self._run_shutdown_step("dispatcher.close", self.dispatcher.close(), timeout=6.0)
        if self.summaries is not None:
            await self._run_shutdown_step("summaries.close", self.summaries.close(), timeout=6.0)
        await self._run_shutdown_step("tools.close", self.tools.close(), timeout=6.0)
        await self._run_shutdown_step("model.close", self.model.close(), timeout=6.0)
        await self._run_shutdown_step("memory.close", self.memory.close(), timeout=6.0)

    @staticmethod
    async def _run_shutdown_step(label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

    def enqueue(self, message: InboundMessage) -> asyncio.Future[TurnReply]:
        return self.dispatcher.enqueue(message)

    async def handle(self, message: InboundMessage) -> TurnReply:
        return await self.dispatcher.submit(message)


def build_runtime(
    settings: Settings,
    *,
    memory: MemoryBackend | None = None,
    model: ModelInvoker | None = None,
    tools: ToolRegistry | None = None,
) -> CompanionRuntime:
    memory = memory if memory is not None else build_memory_store(settings)
    model = model if model is not None else build_model_invoker(settings)
    tools = tools if tools is not None else build_tool_registry(settings)
    audit_timeout = settings.memory_timeout_seconds

    summaries = SummaryRefresher(memory, model, settings) if settings.summary_enabled else None
    pipeline = ResponsePipeline(
        settings=settings,
        memory=memory,
        model=model,
        assembler=ContextAssembler(
            memory,
            max_recent_turns=settings.max_recent_turns,
            fact_top_k=settings.memory_fact_top_k,
            timeout_seconds=settings.memory_timeout_seconds,
        ),
        planner=Planner(
            model,
            memory,
            tools,
            model_timeout_seconds=settings.model_timeout_seconds,
            audit_timeout_seconds=audit_timeout,
        ),
        executor=ToolExecutor(
            tools,
            memory,
            timeout_seconds=settings.tool_timeout_seconds,
            audit_timeout_seconds=audit_timeout,
        ),
        reconciler=MemoryReconciler(memory, timeout_seconds=settings.memory_timeout_seconds),
        safety=SafetyPolicy(),
        summaries=summaries,
    )
    return CompanionRuntime(
        settings=settings,
        memory=memory,
        model=model,
        tools=tools,
        pipeline=pipeline,
        dispatcher=ChannelDispatcher(pipeline.handle),
        summaries=summaries,
    )
