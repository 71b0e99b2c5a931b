from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

import aiohttp

from ..common import as_int, truncate_for_log
from ..errors import TransientError
from ..types import OUTCOME_CONFIGURATION, OUTCOME_VALIDATION, ToolDefinition, ToolResult
from .base import HttpTool


logger = logging.getLogger("companion_pilot")

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
DEFAULT_MAX_RESULTS = 5


class TavilyWebSearchTool(HttpTool):
    definition = ToolDefinition(
        name="web_search",
        description=(
            "Search the web. Use for latest/current info, news, prices, weather or unknown factual claims. "
            "Do not use for casual chat or personal memory recall."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "required, non-empty"},
                "max_results": {"type": "integer", "minimum": 1, "maximum": 10, "default": DEFAULT_MAX_RESULTS},
            },
            "required": ["query"],
        },
    )

    def __init__(self, api_key: str | None, timeout_seconds: float = 20.0, endpoint: str = TAVILY_SEARCH_URL) -> None:
        super().__init__(timeout_seconds)
        self.api_key = (api_key or "").strip()
        self.endpoint = endpoint

    async def invoke(self, args: Dict[str, Any]) -> ToolResult:
        if not self.api_key:
            return ToolResult.failure("web_search tool is not configured (TAVILY_API_KEY missing)", OUTCOME_CONFIGURATION)

        query = args.get("query")
        if not isinstance(query, str) or not query.strip():
            return ToolResult.failure("web_search requires string arg `query`", OUTCOME_VALIDATION)
        query = query.strip()
        max_results = max(1, min(10, as_int(args.get("max_results"), DEFAULT_MAX_RESULTS)))

        logger.info("[tool.web_search] start max_results=%s query=%s", max_results, truncate_for_log(query, 120))
        payload = {
            "api_key": self.api_key,
            "query": query,
            "max_results": max_results,
            "include_answer": True,
        }
        session = await self._ensure_session()
        try:
            async with session.post(self.endpoint, json=payload) as response:
                if response.status != 200:
                    body = await response.text()
                    raise TransientError(
                        f"tavily returned status {response.status}",
                        stage="tool",
                        details={"body": truncate_for_log(body, 200)},
                    )
                data = await response.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise TransientError("tavily request timed out", stage="tool") from exc
        except aiohttp.ClientError as exc:
            raise TransientError(f"tavily request failed: {exc}", stage="tool") from exc

        return self._format(data if isinstance(data, dict) else {})

    @staticmethod
    def _format(data: Dict[str, Any]) -> ToolResult:
        lines: list[str] = []
        citations: list[str] = []
        answer = data.get("answer")
        if isinstance(answer, str) and answer.strip():
            lines.append(f"Summary: {answer.strip()}")

        for item in data.get("results") or []:
            if not isinstance(item, dict):
                continue
            url = str(item.get("url") or "").strip()
            title = str(item.get("title") or "").strip() or url
            if not url:
                continue
            citations.append(url)
            lines.append(f"- {title} ({url})")

        logger.info("[tool.web_search] success results=%s has_answer=%s", len(citations), bool(answer))
        if not lines:
            lines.append("No search results returned.")
        return ToolResult(text="\n".join(lines), citations=citations)
