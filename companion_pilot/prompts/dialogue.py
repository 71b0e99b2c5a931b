from __future__ import annotations

import json
from typing import Any, Sequence

from ..types import Context, ConversationTurn, ToolOutcome
from .json_loader import load_prompt_json

RECENT_CONTEXT_TURNS = 8

_DEFAULTS: dict[str, Any] = {
    "default_system_prompt": (
        "You are CompanionPilot, a helpful Discord AI companion.\n"
        "Keep replies concise and practical.\n"
        "Never emit XML/JSON/pseudo tool-call markup in normal replies."
    ),
    "tool_synthesis_system_prompt": (
        "You are CompanionPilot. Use the provided tool outputs to answer the user's request precisely.\n"
        "Never say you cannot browse the web in this mode.\n"
        "Never output XML/JSON/pseudo tool-call markup.\n"
        "Return only the final user-facing answer.\n"
        "If citations are provided, keep your answer concise and factual."
    ),
    "override_header_template": "Custom system prompt override:\n{prompt}\n\n",
    "summary_line_template": "Conversation summary: {summary_text}",
    "facts_line_template": "Known user facts: {facts}",
    "recent_turns_header": "Recent conversation turns:",
    "tool_user_prompt_template": "User request:\n{content}\n\nTool outputs:\n{tool_outputs}",
    "failed_tool_output_template": "(failed: {error})",
}


def _cfg() -> dict[str, Any]:
    return load_prompt_json("dialogue.json", _DEFAULTS)


def default_system_prompt() -> str:
    return str(_cfg()["default_system_prompt"])


def build_recent_context_block(turns: Sequence[ConversationTurn], limit: int = RECENT_CONTEXT_TURNS) -> str:
    if not turns:
        return ""
    lines = "\n".join(f"- {turn.as_line()}" for turn in list(turns)[-limit:])
    return f"{_cfg()['recent_turns_header']}\n{lines}"


def build_direct_system_prompt(context: Context, override: str = "") -> str:
    cfg = _cfg()
    sections = [override.strip() or str(cfg["default_system_prompt"])]
    if context.summary is not None:
        sections.append(str(cfg["summary_line_template"]).format(summary_text=context.summary.summary_text))
    if context.recent_turns:
        sections.append(build_recent_context_block(context.recent_turns))
    if context.facts:
        facts = "; ".join(f"{fact.key} = {fact.value}" for fact in context.facts)
        sections.append(str(cfg["facts_line_template"]).format(facts=facts))
    return "\n".join(sections)


def _format_args(args: dict[str, Any]) -> str:
    return json.dumps(args, ensure_ascii=False, separators=(",", ":"), default=str)


def format_tool_outputs(outcomes: Sequence[ToolOutcome]) -> str:
    template = str(_cfg()["failed_tool_output_template"])
    blocks = []
    for index, outcome in enumerate(outcomes, start=1):
        text = outcome.text if outcome.success else template.format(error=outcome.error or outcome.error_kind)
        blocks.append(f"{index}. Tool: {outcome.tool_name}\nArgs: {_format_args(outcome.args)}\nOutput:\n{text}")
    return "\n\n".join(blocks)


def build_tool_synthesis_prompts(
    context: Context,
    outcomes: Sequence[ToolOutcome],
    override: str = "",
) -> tuple[str, str]:
    cfg = _cfg()
    header = ""
    if override.strip():
        header = str(cfg["override_header_template"]).format(prompt=override.strip())
    system_prompt = f"{header}{cfg['tool_synthesis_system_prompt']}\n{build_recent_context_block(context.recent_turns)}"
    user_prompt = str(cfg["tool_user_prompt_template"]).format(
        content=context.message.content,
        tool_outputs=format_tool_outputs(outcomes),
    )
    return system_prompt, user_prompt
