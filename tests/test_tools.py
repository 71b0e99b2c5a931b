from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from companion_pilot.config import Settings  # noqa: E402
from companion_pilot.tools.current_datetime import CurrentDateTimeTool  # noqa: E402
from companion_pilot.tools.registry import ToolRegistry, build_tool_registry  # noqa: E402
from companion_pilot.tools.spotify_status import format_playing_status  # noqa: E402
from companion_pilot.tools.web_search import TavilyWebSearchTool  # noqa: E402
from companion_pilot.types import OUTCOME_CONFIGURATION, OUTCOME_VALIDATION  # noqa: E402


def test_current_datetime_reports_utc() -> None:
    result = asyncio.run(CurrentDateTimeTool().invoke({}))
    assert result.success
    lines = result.text.splitlines()
    assert lines[0].startswith("Current UTC datetime: ")
    assert lines[1].startswith("Current UTC date: ")
    assert lines[2].startswith("Current UTC year: ")
    assert result.citations == []


def test_web_search_without_key_is_configuration_failure() -> None:
    result = asyncio.run(TavilyWebSearchTool(None).invoke({"query": "weather"}))
    assert result.success is False
    assert result.error_kind == OUTCOME_CONFIGURATION


@pytest.mark.parametrize("args", [{}, {"query": "   "}, {"query": 42}])
def test_web_search_requires_query(args: dict) -> None:
    result = asyncio.run(TavilyWebSearchTool("key").invoke(args))
    assert result.success is False
    assert result.error_kind == OUTCOME_VALIDATION


def test_web_search_format_lists_results_and_citations() -> None:
    result = TavilyWebSearchTool._format(
        {
            "answer": " It is sunny. ",
            "results": [
                {"title": "Forecast", "url": "https://weather.example/today"},
                {"title": "", "url": "https://weather.example/raw"},
                {"title": "No link"},
                "junk",
            ],
        }
    )
    assert result.text.splitlines() == [
        "Summary: It is sunny.",
        "- Forecast (https://weather.example/today)",
        "- https://weather.example/raw (https://weather.example/raw)",
    ]
    assert result.citations == ["https://weather.example/today", "https://weather.example/raw"]


def test_web_search_format_handles_empty_payload() -> None:
    result = TavilyWebSearchTool._format({})
    assert result.text == "No search results returned."
    assert result.citations == []


def test_format_playing_status_finds_nested_pair() -> None:
    payload = [
        [
            {"display_name": "Peter"},
            {
                "is_playing": True,
                "progress_ms": 65_000,
                "track": {
                    "name": "Song",
                    "artist": "Band",
                    "album": "Record",
                    "duration_ms": 200_000,
                    "uri": "spotify:track:1",
                },
            },
        ]
    ]
    text = format_playing_status(payload)
    assert text is not None
    assert text.splitlines() == [
        "Spotify user: Peter",
        "Playback status: currently playing",
        "Track: Song",
        "Artist: Band",
        "Album: Record",
        "Progress: 01:05 / 03:20",
        "URI: spotify:track:1",
    ]


def test_format_playing_status_when_idle_or_unrecognized() -> None:
    idle = format_playing_status([{"display_name": ""}, {"is_playing": False}])
    assert idle == "Spotify user: Unknown\nPlayback status: not currently playing"
    assert format_playing_status({"is_playing": True}) is None
    assert format_playing_status([1, 2, 3]) is None


def test_registry_rejects_duplicate_names() -> None:
    registry = ToolRegistry([CurrentDateTimeTool()])
    with pytest.raises(ValueError):
        registry.register(CurrentDateTimeTool())


def test_default_registry_has_three_tools() -> None:
    registry = build_tool_registry(Settings())
    assert registry.names() == ["current_datetime", "web_search", "spotify_playing_status"]
    assert "web_search" in registry
    assert len(registry.definitions()) == 3
