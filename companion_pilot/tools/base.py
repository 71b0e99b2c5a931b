from __future__ import annotations

from typing import Any, Dict

import aiohttp

from ..types import ToolDefinition, ToolResult


class Tool:
    """A named capability the planner may select.

    Subclasses set ``definition`` and implement ``invoke``. Missing credentials and bad
    arguments are returned as failed results; network trouble is raised.
    """

    definition: ToolDefinition

    @property
    def name(self) -> str:
        return self.definition.name

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def invoke(self, args: Dict[str, Any]) -> ToolResult:
        raise NotImplementedError


class HttpTool(Tool):
    def __init__(self, timeout_seconds: float = 20.0) -> None:
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None
        return self._session
