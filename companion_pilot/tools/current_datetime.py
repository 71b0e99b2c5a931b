from __future__ import annotations

from typing import Any, Dict

from ..types import ToolDefinition, ToolResult, utc_now
from .base import Tool


class CurrentDateTimeTool(Tool):
    definition = ToolDefinition(
        name="current_datetime",
        description="Current UTC date and time. Use for questions about today, the current date, time or year.",
        input_schema={"type": "object", "properties": {}, "additionalProperties": False},
    )

    async def invoke(self, args: Dict[str, Any]) -> ToolResult:
        now = utc_now()
        text = (
            f"Current UTC datetime: {now.isoformat()}\n"
            f"Current UTC date: {now:%Y-%m-%d}\n"
            f"Current UTC year: {now:%Y}"
        )
        return ToolResult(text=text, citations=[])
