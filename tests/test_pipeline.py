from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from companion_pilot.config import Settings  # noqa: E402
from companion_pilot.errors import FatalError  # noqa: E402
from companion_pilot.memory.in_memory import InMemoryMemoryStore  # noqa: E402
from companion_pilot.prompts.planner import PLANNER_MARKER  # noqa: E402
from companion_pilot.runtime import build_runtime  # noqa: E402
from companion_pilot.services.mock_model import MockModelClient  # noqa: E402
from companion_pilot.tools.current_datetime import CurrentDateTimeTool  # noqa: E402
from companion_pilot.tools.registry import ToolRegistry  # noqa: E402
from companion_pilot.types import (  # noqa: E402
    DECISION_APPLY_PLAN,
    DECISION_FALLBACK,
    InboundMessage,
    ModelRequest,
    PlanState,
)


def _settings(**overrides) -> Settings:
    values = {"summary_enabled": False, "model_timeout_seconds": 5, "memory_timeout_seconds": 1.0}
    values.update(overrides)
    return Settings(**values)


def _message(content: str, *, user_id: str = "u1", channel_id: str = "c1") -> InboundMessage:
    return InboundMessage(user_id=user_id, guild_id="g1", channel_id=channel_id, content=content)


def _runtime(memory=None, model=None, **settings):
    return build_runtime(
        _settings(**settings),
        memory=memory if memory is not None else InMemoryMemoryStore(),
        model=model if model is not None else MockModelClient(),
        tools=ToolRegistry([CurrentDateTimeTool()]),
    )


class _PlanThenReply:
    """Returns scripted plans for planner requests and a fixed reply otherwise."""

    name = "plan-then-reply"

    def __init__(self, plans: list[str], reply: str | Exception = "final answer") -> None:
        self.plans = list(plans)
        self.reply = reply
        self.completions: list[ModelRequest] = []

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def complete(self, request: ModelRequest) -> str:
        if PLANNER_MARKER in request.system_prompt:
            return self.plans.pop(0)
        self.completions.append(request)
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


class _MockWithBrokenCompletion(MockModelClient):
    async def complete(self, request: ModelRequest) -> str:
        if PLANNER_MARKER in request.system_prompt:
            return await super().complete(request)
        raise RuntimeError("completion provider unavailable")


class _UnavailableStore(InMemoryMemoryStore):
    async def get_recent_turns(self, guild_id, channel_id, limit):
        raise ConnectionError("database unreachable")

    async def get_facts(self, user_id, limit=None):
        raise ConnectionError("database unreachable")

    async def get_summary(self, user_id, guild_id, channel_id):
        raise ConnectionError("database unreachable")

    async def upsert_fact(self, fact):
        raise ConnectionError("database unreachable")

    async def append_turn(self, turn):
        raise ConnectionError("database unreachable")


def test_identity_statement_is_stored_and_recalled_on_next_turn() -> None:
    memory = InMemoryMemoryStore()
    runtime = _runtime(memory)

    async def scenario():
        first = await runtime.pipeline.handle(_message("My name is Alice"))
        second = await runtime.pipeline.handle(_message("What did I just tell you?"))
        facts = await memory.get_facts("u1")
        turns = await memory.get_recent_turns("g1", "c1", 10)
        decisions = await memory.list_planner_decisions("u1", 10)
        return first, second, facts, turns, decisions

    first, second, facts, turns, decisions = asyncio.run(scenario())

    assert first.memory_written is True
    assert [(fact.key, fact.value) for fact in facts] == [("name", "Alice")]
    assert facts[0].confidence == pytest.approx(0.96)
    assert "user: My name is Alice" in second.text
    assert "name = Alice" in second.text
    assert [turn.role for turn in turns] == ["user", "assistant", "user", "assistant"]
    assert turns[0].content == "My name is Alice"
    assert len(decisions) == 2
    assert all(decision.decision_kind == DECISION_APPLY_PLAN for decision in decisions)


def test_correction_overwrites_previous_fact() -> None:
    memory = InMemoryMemoryStore()
    runtime = _runtime(memory)

    async def scenario():
        await runtime.pipeline.handle(_message("My name is Alice"))
        await runtime.pipeline.handle(_message("Actually, it's Alicia."))
        return await memory.get_facts("u1")

    facts = asyncio.run(scenario())
    assert [(fact.key, fact.value) for fact in facts] == [("name", "Alicia")]


def test_tool_question_runs_tool_and_synthesizes_reply() -> None:
    memory = InMemoryMemoryStore()
    runtime = _runtime(memory)

    async def scenario():
        reply = await runtime.pipeline.handle(_message("What time is it?"))
        records = await memory.list_tool_calls("u1", 10)
        return reply, records

    reply, records = asyncio.run(scenario())

    assert [call.tool_name for call in reply.tool_calls] == ["current_datetime"]
    assert "Current UTC datetime" in reply.text
    assert len(records) == 1
    assert records[0].success is True
    assert PlanState.TOOLS_PENDING in reply.states
    assert PlanState.TOOL_EXECUTED in reply.states
    assert reply.states[-1] == PlanState.DONE


def test_plain_chat_goes_straight_to_completion() -> None:
    runtime = _runtime()
    reply = asyncio.run(runtime.pipeline.handle(_message("hello there")))
    assert reply.tool_calls == []
    assert reply.memory_written is False
    assert reply.states == [
        PlanState.IDLE,
        PlanState.DECIDING,
        PlanState.DIRECT_REPLY,
        PlanState.COMPLETING,
        PlanState.DONE,
    ]


def test_memory_outage_degrades_but_still_replies() -> None:
    runtime = _runtime(_UnavailableStore())
    reply = asyncio.run(runtime.pipeline.handle(_message("My name is Alice")))

    assert reply.text.startswith("CompanionPilot mock reply.")
    assert {"recent_turns", "facts", "summary", "memory_write", "persist"} <= set(reply.degraded)
    assert reply.memory_written is False


def test_malformed_plan_falls_back_to_direct_reply() -> None:
    memory = InMemoryMemoryStore()
    model = _PlanThenReply(["sorry, I cannot produce JSON"], reply="plain answer")
    runtime = _runtime(memory, model)

    async def scenario():
        reply = await runtime.pipeline.handle(_message("search the web for cats"))
        decisions = await memory.list_planner_decisions("u1", 10)
        records = await memory.list_tool_calls("u1", 10)
        return reply, decisions, records

    reply, decisions, records = asyncio.run(scenario())

    assert reply.text == "plain answer"
    assert "planner_fallback" in reply.degraded
    assert reply.tool_calls == []
    assert records == []
    assert [decision.decision_kind for decision in decisions] == [DECISION_FALLBACK]


def test_completion_failure_without_tools_is_fatal() -> None:
    memory = InMemoryMemoryStore()
    runtime = _runtime(memory, _MockWithBrokenCompletion())

    async def scenario():
        with pytest.raises(FatalError) as excinfo:
            await runtime.pipeline.handle(_message("hello"))
        return excinfo.value, await memory.get_recent_turns("g1", "c1", 10)

    error, turns = asyncio.run(scenario())
    assert error.stage == "completion"
    assert turns == []


def test_completion_failure_falls_back_to_tool_text() -> None:
    runtime = _runtime(model=_MockWithBrokenCompletion())
    reply = asyncio.run(runtime.pipeline.handle(_message("What time is it?")))
    assert reply.text.startswith("Current UTC datetime:")


def test_plan_without_completion_returns_tool_text_verbatim() -> None:
    plan = json.dumps({"tool_calls": [{"tool_name": "current_datetime", "args": {}}], "needs_completion": False})
    model = _PlanThenReply([plan])
    reply = asyncio.run(_runtime(model=model).pipeline.handle(_message("date please")))

    assert reply.text.startswith("Current UTC datetime:")
    assert model.completions == []


def test_replan_records_two_decisions_and_keeps_later_memory_intent() -> None:
    memory = InMemoryMemoryStore()
    first = json.dumps(
        {
            "tool_calls": [{"tool_name": "current_datetime", "args": {}}],
            "memory": {"store": True, "key": "timezone", "value": "UTC", "confidence": 0.5},
            "replan": True,
        }
    )
    second = json.dumps(
        {
            "tool_calls": [],
            "memory": {"store": True, "key": "timezone", "value": "CET", "confidence": 0.7},
            "replan": True,
        }
    )
    model = _PlanThenReply([first, second])
    runtime = _runtime(memory, model)

    async def scenario():
        reply = await runtime.pipeline.handle(_message("what day is it where I live?"))
        return reply, await memory.list_planner_decisions("u1", 10), await memory.get_facts("u1")

    reply, decisions, facts = asyncio.run(scenario())

    assert len(decisions) == 2
    assert [(fact.key, fact.value) for fact in facts] == [("timezone", "CET")]
    assert reply.text == "final answer"
    assert "Tool outputs" in model.completions[0].user_prompt


def test_replan_disabled_by_settings() -> None:
    memory = InMemoryMemoryStore()
    plan = json.dumps({"tool_calls": [{"tool_name": "current_datetime", "args": {}}], "replan": True})
    runtime = _runtime(memory, _PlanThenReply([plan]), max_replans=0)

    async def scenario():
        await runtime.pipeline.handle(_message("date"))
        return await memory.list_planner_decisions("u1", 10)

    assert len(asyncio.run(scenario())) == 1


def test_safety_flags_are_reported_without_blocking() -> None:
    reply = asyncio.run(_runtime().pipeline.handle(_message("please rm -rf my worries")))
    assert reply.safety_flags == ["blocked-term:rm -rf"]
    assert reply.text


def test_response_is_capped_at_max_response_chars() -> None:
    model = _PlanThenReply(['{"tool_calls": []}'], reply="word " * 400)
    reply = asyncio.run(_runtime(model=model, max_response_chars=300).pipeline.handle(_message("talk a lot")))
    assert len(reply.text) <= 300


def test_runtime_handle_goes_through_dispatcher() -> None:
    runtime = _runtime()

    async def scenario():
        await runtime.start()
        try:
            return await runtime.handle(_message("hello"))
        finally:
            await runtime.close()

    reply = asyncio.run(scenario())
    assert reply.text.startswith("CompanionPilot mock reply.")


def test_name_correction_leaves_single_fact_row() -> None:
    memory = InMemoryMemoryStore()
    runtime = _runtime(memory)

    async def scenario():
        await runtime.pipeline.handle(_message("my name is Petr"))
        after_first = await memory.get_facts("u1")
        await runtime.pipeline.handle(_message("actually my name is Peter"))
        return after_first, await memory.get_facts("u1")

    after_first, after_second = asyncio.run(scenario())
    assert [(fact.key, fact.value) for fact in after_first] == [("name", "Petr")]
    assert [(fact.key, fact.value) for fact in after_second] == [("name", "Peter")]


def test_search_without_credential_is_logged_and_reply_still_returned() -> None:
    memory = InMemoryMemoryStore()
    runtime = build_runtime(_settings(), memory=memory, model=MockModelClient())

    async def scenario():
        reply = await runtime.pipeline.handle(_message("search the web for today's election results"))
        return reply, await memory.list_tool_calls("u1", 10)

    reply, records = asyncio.run(scenario())

    assert len(records) == 1
    assert records[0].tool_name == "web_search"
    assert records[0].success is False
    assert records[0].error_kind == "configuration"
    assert "tool:web_search" in reply.degraded
    assert "(failed:" in reply.text


def test_back_to_back_messages_persist_in_arrival_order() -> None:
    memory = InMemoryMemoryStore()
    runtime = _runtime(memory)

    async def scenario():
        await runtime.start()
        try:
            await asyncio.gather(
                runtime.handle(_message("first message")),
                runtime.handle(_message("second message")),
            )
        finally:
            await runtime.close()
        return await memory.get_recent_turns("g1", "c1", 10)

    turns = asyncio.run(scenario())
    assert [(turn.role, turn.content) for turn in turns if turn.role == "user"] == [
        ("user", "first message"),
        ("user", "second message"),
    ]
    assert [turn.role for turn in turns] == ["user", "assistant", "user", "assistant"]


class _SlowMock(MockModelClient):
    async def complete(self, request: ModelRequest) -> str:
        await asyncio.sleep(0.02)
        return await super().complete(request)


def test_slow_turn_is_flagged_and_logged(caplog: pytest.LogCaptureFixture) -> None:
    runtime = _runtime(model=_SlowMock(), slow_turn_seconds=0.001)
    with caplog.at_level("WARNING", logger="companion_pilot"):
        reply = asyncio.run(runtime.pipeline.handle(_message("hello")))
    assert reply.slow is True
    assert "[turn.slow]" in caplog.text


class _ReplyWriteFailsStore(InMemoryMemoryStore):
    async def append_turn(self, turn):
        if turn.role == "assistant":
            raise ConnectionError("write rejected")
        await super().append_turn(turn)


def test_failed_reply_write_is_flagged_and_names_the_missing_role(caplog: pytest.LogCaptureFixture) -> None:
    memory = _ReplyWriteFailsStore()
    runtime = _runtime(memory)

    async def scenario():
        reply = await runtime.pipeline.handle(_message("hello"))
        return reply, await memory.get_recent_turns("g1", "c1", 10)

    with caplog.at_level("WARNING", logger="companion_pilot"):
        reply, turns = asyncio.run(scenario())

    assert "persist" in reply.degraded
    assert [turn.role for turn in turns] == ["user"]
    assert "[turn.persist] failed role=assistant" in caplog.text
