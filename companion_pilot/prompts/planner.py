from __future__ import annotations

import json
from typing import Any, Iterable, Sequence

from ..types import Context, ToolDefinition, ToolOutcome
from .dialogue import build_recent_context_block, format_tool_outputs
from .json_loader import load_prompt_json

# Model backends key on this line to recognise a planning request.
PLANNER_MARKER = "You are the unified planner for CompanionPilot."

_DEFAULTS: dict[str, Any] = {
    "planner_instructions": (
        "Decide both tool usage and memory write for one user message.\n"
        "Return strict JSON only (no markdown, no prose) with this exact schema:\n"
        "{\n"
        '  "tool_calls": [{"tool_name":"...","args":{...}}],\n'
        '  "memory": {\n'
        '    "store": true|false,\n'
        '    "key": "...",\n'
        '    "value": "...",\n'
        '    "confidence": 0.0-1.0\n'
        "  },\n"
        '  "needs_completion": true,\n'
        '  "replan": false,\n'
        '  "rationale": "short reason"\n'
        "}\n"
        "Tool calls run independently; list them in the order their outputs should be presented.\n"
        "There are no manual commands or manual overrides: all tool usage must come from this decision.\n"
        "If no tool is needed, return an empty tool_calls array.\n"
        "If memory should not be stored, set store=false and key/value to empty strings.\n"
        "Store only durable personal facts (identity, preferences, recurring goals, corrections).\n"
        "Do not store one-off requests or transient states.\n"
        "Use web search for latest/current/news/prices/weather or unknown factual claims.\n"
        "Set replan=true only when a second decision is needed after seeing tool outputs."
    ),
    "tool_inventory_header": "Tool inventory:",
    "context_header": "Context:",
    "summary_line_template": "Conversation summary: {summary_text}",
    "facts_line_template": "Known user facts: {facts}",
    "tool_outputs_header": "Tool outputs so far:",
}


def _cfg() -> dict[str, Any]:
    return load_prompt_json("planner.json", _DEFAULTS)


def _tool_inventory(definitions: Iterable[ToolDefinition]) -> str:
    inventory = [
        {
            "tool_name": definition.name,
            "description": definition.description,
            "args_schema": definition.input_schema,
        }
        for definition in definitions
    ]
    return json.dumps(inventory, ensure_ascii=False, indent=2)


def build_planner_system_prompt(context: Context, definitions: Sequence[ToolDefinition]) -> str:
    cfg = _cfg()
    context_lines: list[str] = []
    if context.summary is not None:
        context_lines.append(
            str(cfg["summary_line_template"]).format(summary_text=context.summary.summary_text)
        )
    if context.facts:
        facts = "; ".join(f"{fact.key}={fact.value}" for fact in context.facts)
        context_lines.append(str(cfg["facts_line_template"]).format(facts=facts))
    if context.recent_turns:
        context_lines.append(build_recent_context_block(context.recent_turns))

    sections = [
        PLANNER_MARKER,
        str(cfg["planner_instructions"]),
        str(cfg["tool_inventory_header"]),
        _tool_inventory(definitions),
    ]
    if context_lines:
        sections.append(str(cfg["context_header"]) + "\n" + "\n".join(context_lines))
    return "\n".join(sections)


def build_planner_user_prompt(content: str, tool_outputs: Sequence[ToolOutcome] = ()) -> str:
    if not tool_outputs:
        return content
    header = str(_cfg()["tool_outputs_header"])
    return f"{content}\n\n{header}\n{format_tool_outputs(tool_outputs)}"
