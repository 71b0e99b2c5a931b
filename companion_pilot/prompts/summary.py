from __future__ import annotations

from typing import Any, Iterable

from .json_loader import load_prompt_json

_DEFAULTS: dict[str, Any] = {
    "summary_update_system_prompt_template": (
        "Update rolling memory summary for one user's ongoing conversation with CompanionPilot. "
        "Keep durable topics, preferences, goals and unresolved items. "
        "Output plain text, max {max_chars} chars."
    ),
    "summary_update_user_prompt_template": (
        "Previous summary:\n{previous_summary}\n\nRecent dialogue:\n{dialogue_lines}\n\nReturn updated summary."
    ),
}


def _cfg() -> dict[str, Any]:
    return load_prompt_json("summary.json", _DEFAULTS)


def build_summary_update_system_prompt(max_chars: int) -> str:
    return str(_cfg()["summary_update_system_prompt_template"]).format(max_chars=max_chars)


def build_summary_update_user_prompt(previous_summary: str, dialogue_lines: Iterable[str]) -> str:
    joined = "\n".join(str(line) for line in dialogue_lines if str(line))
    return str(_cfg()["summary_update_user_prompt_template"]).format(
        previous_summary=previous_summary or "(none)",
        dialogue_lines=joined,
    )
