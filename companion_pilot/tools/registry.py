from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from ..config import Settings
from ..types import ToolDefinition
from .base import Tool
from .current_datetime import CurrentDateTimeTool
from .spotify_status import SpotifyPlayingStatusTool
from .web_search import TavilyWebSearchTool


logger = logging.getLogger("companion_pilot")


class ToolRegistry:
    """Tools registered at startup. The set is fixed once the bot is running."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: Dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        name = tool.definition.name
        if name in self._tools:
            raise ValueError(f"tool already registered: {name}")
        self._tools[name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> List[str]:
        return list(self._tools)

    def definitions(self) -> List[ToolDefinition]:
        return [tool.definition for tool in self._tools.values()]

    async def start(self) -> None:
        for tool in self._tools.values():
            await tool.start()

    async def close(self) -> None:
        results = await asyncio.gather(*(tool.close() for tool in self._tools.values()), return_exceptions=True)
        for name, result in zip(self._tools, results):
            if isinstance(result, Exception):
                logger.warning("[tools] close failed for %s: %s", name, result)


def build_tool_registry(settings: Settings) -> ToolRegistry:
    if not settings.tavily_api_key:
        logger.warning("[tools] TAVILY_API_KEY not set; web_search will report a configuration error")
    return ToolRegistry(
        [
            CurrentDateTimeTool(),
            TavilyWebSearchTool(settings.tavily_api_key, timeout_seconds=settings.tool_timeout_seconds),
            SpotifyPlayingStatusTool(settings.spotify_status_url, timeout_seconds=settings.tool_timeout_seconds),
        ]
    )
