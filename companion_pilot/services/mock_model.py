from __future__ import annotations

import json
import re
from typing import Any, Dict, List

from ..prompts.planner import PLANNER_MARKER
from ..types import ModelRequest

_NAME_RE = re.compile(r"name is (?P<value>.+)", re.IGNORECASE | re.DOTALL)
_CORRECTION_RE = re.compile(r"it's (?P<value>.+)", re.IGNORECASE | re.DOTALL)
_GAME_RE = re.compile(r"i play (?P<value>.+)", re.IGNORECASE | re.DOTALL)
_SEARCH_RE = re.compile(r"(?:search the web for |look up )(?P<value>.+)", re.IGNORECASE | re.DOTALL)
_DATETIME_HINTS = ("what time is it", "what's the date", "what is the date", "what day is it", "current date")
_SPOTIFY_HINTS = ("what am i listening to", "spotify", "what's playing", "what is playing")


def _extract_name(text: str) -> str | None:
    match = _NAME_RE.search(text)
    if match:
        return match.group("value").strip()
    match = _CORRECTION_RE.search(text)
    if match:
        return match.group("value").strip().rstrip(".")
    return None


def _extract_game(text: str) -> str | None:
    match = _GAME_RE.search(text)
    return match.group("value").strip() if match else None


def _extract_search_query(text: str) -> str | None:
    match = _SEARCH_RE.search(text)
    if not match:
        return None
    query = re.sub(r"^[^\w\s]+|[^\w\s]+$", "", match.group("value").strip()).strip()
    return query or None


class MockModelClient:
    """Deterministic offline model: emits plans for planner prompts and echoes everything else."""

    name = "mock"

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def complete(self, request: ModelRequest) -> str:
        if PLANNER_MARKER in request.system_prompt:
            return json.dumps(self._plan(request.user_prompt), ensure_ascii=False)
        return f"CompanionPilot mock reply.\n\nSystem: {request.system_prompt}\n\nUser: {request.user_prompt}"

    @staticmethod
    def _plan(user_prompt: str) -> Dict[str, Any]:
        # Only the user's own message drives the plan, not tool outputs appended on re-plan.
        text = user_prompt.split("\n\n", 1)[0]
        lowered = text.lower()

        memory: Dict[str, Any] = {"store": False, "key": "", "value": "", "confidence": 0.0}
        name = _extract_name(text)
        game = _extract_game(text) if name is None else None
        if name:
            memory = {"store": True, "key": "name", "value": name, "confidence": 0.96}
        elif game:
            memory = {"store": True, "key": "favorite_game", "value": game, "confidence": 0.84}

        tool_calls: List[Dict[str, Any]] = []
        query = _extract_search_query(text)
        if query:
            tool_calls.append({"tool_name": "web_search", "args": {"query": query, "max_results": 5}})
        if any(hint in lowered for hint in _DATETIME_HINTS):
            tool_calls.append({"tool_name": "current_datetime", "args": {}})
        if any(hint in lowered for hint in _SPOTIFY_HINTS):
            tool_calls.append({"tool_name": "spotify_playing_status", "args": {}})

        return {"tool_calls": tool_calls, "memory": memory, "rationale": "mock_unified_planner"}
