from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from companion_pilot.prompts.dialogue import (  # noqa: E402
    build_direct_system_prompt,
    build_tool_synthesis_prompts,
    default_system_prompt,
)
from companion_pilot.prompts.planner import (  # noqa: E402
    PLANNER_MARKER,
    build_planner_system_prompt,
    build_planner_user_prompt,
)
from companion_pilot.tools.current_datetime import CurrentDateTimeTool  # noqa: E402
from companion_pilot.types import (  # noqa: E402
    Context,
    ConversationSummary,
    ConversationTurn,
    InboundMessage,
    MemoryFact,
    ToolOutcome,
)


def _context() -> Context:
    message = InboundMessage(user_id="u1", guild_id="g1", channel_id="c1", content="what now?")
    return Context(
        message=message,
        recent_turns=[
            ConversationTurn("u1", "g1", "c1", "user", "I like chess"),
            ConversationTurn("u1", "g1", "c1", "assistant", "Nice!"),
        ],
        facts=[MemoryFact("u1", "name", "Alice", 0.9, "user_message")],
        summary=ConversationSummary("u1", "g1", "c1", "Alice plays chess on weekends."),
    )


def test_planner_system_prompt_lists_tools_and_context() -> None:
    prompt = build_planner_system_prompt(_context(), [CurrentDateTimeTool.definition])
    assert prompt.startswith(PLANNER_MARKER)
    assert '"tool_name": "current_datetime"' in prompt
    assert "Known user facts: name=Alice" in prompt
    assert "Conversation summary: Alice plays chess on weekends." in prompt
    assert "- user: I like chess" in prompt


def test_planner_user_prompt_appends_tool_outputs() -> None:
    assert build_planner_user_prompt("hi") == "hi"
    outcome = ToolOutcome("current_datetime", {}, "Current UTC year: 2025", [], True)
    prompt = build_planner_user_prompt("hi", [outcome])
    assert prompt.startswith("hi\n\nTool outputs so far:\n1. Tool: current_datetime")


def test_direct_prompt_uses_override_when_present() -> None:
    default = build_direct_system_prompt(_context())
    assert default.startswith(default_system_prompt())
    assert "Known user facts: name = Alice" in default

    custom = build_direct_system_prompt(_context(), override="Talk like a pirate.")
    assert custom.startswith("Talk like a pirate.")


def test_synthesis_prompt_shows_failed_tools() -> None:
    outcomes = [
        ToolOutcome("web_search", {"query": "chess"}, "- Chess (https://chess.example)", ["https://chess.example"], True),
        ToolOutcome("spotify_playing_status", {}, "", [], False, error="timed out", error_kind="transient"),
    ]
    system_prompt, user_prompt = build_tool_synthesis_prompts(_context(), outcomes)
    assert "Use the provided tool outputs" in system_prompt
    assert user_prompt.startswith("User request:\nwhat now?\n\nTool outputs:\n")
    assert 'Args: {"query":"chess"}' in user_prompt
    assert "2. Tool: spotify_playing_status" in user_prompt
    assert "(failed: timed out)" in user_prompt


def test_prompt_overrides_directory_is_merged(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    (tmp_path / "dialogue.json").write_text(
        json.dumps({"default_system_prompt": "You are a terse helper."}),
        encoding="utf-8",
    )
    monkeypatch.setenv("PROMPT_OVERRIDES_DIR", str(tmp_path))
    assert default_system_prompt() == "You are a terse helper."

    broken = tmp_path / "broken"
    broken.mkdir()
    (broken / "dialogue.json").write_text("{not json", encoding="utf-8")
    monkeypatch.setenv("PROMPT_OVERRIDES_DIR", str(broken))
    assert default_system_prompt().startswith("You are CompanionPilot")

    monkeypatch.setenv("PROMPT_OVERRIDES_DIR", str(tmp_path / "missing"))
    assert default_system_prompt().startswith("You are CompanionPilot")
