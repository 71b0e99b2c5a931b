from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from companion_pilot.errors import TransientError  # noqa: E402
from companion_pilot.memory.in_memory import InMemoryMemoryStore  # noqa: E402
from companion_pilot.orchestration.executor import TOOL_SOURCE, ToolExecutor  # noqa: E402
from companion_pilot.tools.base import Tool  # noqa: E402
from companion_pilot.tools.registry import ToolRegistry  # noqa: E402
from companion_pilot.tools.web_search import TavilyWebSearchTool  # noqa: E402
from companion_pilot.types import (  # noqa: E402
    OUTCOME_CONFIGURATION,
    OUTCOME_OK,
    OUTCOME_TRANSIENT,
    InboundMessage,
    ToolCallRequest,
    ToolDefinition,
    ToolResult,
)


def _definition(name: str) -> ToolDefinition:
    return ToolDefinition(name=name, description=name, input_schema={"type": "object"})


class _EchoTool(Tool):
    definition = _definition("echo")

    async def invoke(self, args: Dict[str, Any]) -> ToolResult:
        return ToolResult(text=f"echo:{args.get('text', '')}", citations=["https://example.test/echo"])


class _FlakyTool(Tool):
    definition = _definition("flaky")

    async def invoke(self, args: Dict[str, Any]) -> ToolResult:
        raise TransientError("upstream 503", stage="tool")


class _SlowTool(Tool):
    definition = _definition("slow")

    async def invoke(self, args: Dict[str, Any]) -> ToolResult:
        await asyncio.sleep(5)
        return ToolResult(text="too late")


def _message() -> InboundMessage:
    return InboundMessage(user_id="u1", guild_id="g1", channel_id="c1", content="run tools")


def _executor(memory: InMemoryMemoryStore) -> ToolExecutor:
    registry = ToolRegistry([_EchoTool(), _FlakyTool(), _SlowTool(), TavilyWebSearchTool(None)])
    return ToolExecutor(registry, memory, timeout_seconds=0.05)


def test_executor_records_one_log_per_call_in_request_order() -> None:
    memory = InMemoryMemoryStore()
    requests = [
        ToolCallRequest("echo", {"text": "a"}),
        ToolCallRequest("flaky"),
        ToolCallRequest("echo", {"text": "b"}),
    ]

    async def scenario():
        outcomes = await _executor(memory).execute(requests, _message())
        records = await memory.list_tool_calls("u1", 10)
        return outcomes, records

    outcomes, records = asyncio.run(scenario())

    assert [outcome.text for outcome in outcomes] == ["echo:a", "", "echo:b"]
    assert [outcome.success for outcome in outcomes] == [True, False, True]
    assert outcomes[1].error_kind == OUTCOME_TRANSIENT
    assert len(records) == 3
    # Listing is newest first.
    assert [record.tool_name for record in reversed(records)] == ["echo", "flaky", "echo"]
    assert all(record.source == TOOL_SOURCE for record in records)
    assert records[0].citations == ["https://example.test/echo"]


def test_executor_reports_unknown_tool_as_configuration_error() -> None:
    memory = InMemoryMemoryStore()

    async def scenario():
        return await _executor(memory).execute([ToolCallRequest("teleport")], _message())

    outcomes = asyncio.run(scenario())
    assert outcomes[0].success is False
    assert outcomes[0].error_kind == OUTCOME_CONFIGURATION
    assert "unknown tool" in (outcomes[0].error or "")


def test_executor_surfaces_missing_credential_without_network() -> None:
    memory = InMemoryMemoryStore()

    async def scenario():
        outcomes = await _executor(memory).execute([ToolCallRequest("web_search", {"query": "news"})], _message())
        records = await memory.list_tool_calls("u1", 10)
        return outcomes, records

    outcomes, records = asyncio.run(scenario())
    assert outcomes[0].error_kind == OUTCOME_CONFIGURATION
    assert "TAVILY_API_KEY" in (outcomes[0].error or "")
    assert records[0].success is False
    assert records[0].error_kind == OUTCOME_CONFIGURATION


def test_executor_times_out_slow_tools() -> None:
    memory = InMemoryMemoryStore()

    async def scenario():
        return await _executor(memory).execute(
            [ToolCallRequest("slow"), ToolCallRequest("echo", {"text": "fast"})],
            _message(),
        )

    outcomes = asyncio.run(scenario())
    assert outcomes[0].success is False
    assert outcomes[0].error_kind == OUTCOME_TRANSIENT
    assert "timed out" in (outcomes[0].error or "")
    assert outcomes[1].error_kind == OUTCOME_OK


def test_executor_keeps_outcomes_when_audit_write_fails() -> None:
    class _BrokenAudit(InMemoryMemoryStore):
        async def record_tool_call(self, record) -> None:
            raise RuntimeError("disk full")

    async def scenario():
        return await _executor(_BrokenAudit()).execute([ToolCallRequest("echo", {"text": "x"})], _message())

    outcomes = asyncio.run(scenario())
    assert outcomes[0].text == "echo:x"


def test_executor_with_no_requests_is_a_noop() -> None:
    memory = InMemoryMemoryStore()
    assert asyncio.run(_executor(memory).execute([], _message())) == []
