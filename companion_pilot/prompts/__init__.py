from .dialogue import build_direct_system_prompt, build_recent_context_block, build_tool_synthesis_prompts
from .planner import PLANNER_MARKER, build_planner_system_prompt, build_planner_user_prompt
from .summary import build_summary_update_system_prompt, build_summary_update_user_prompt

__all__ = [
    "PLANNER_MARKER",
    "build_direct_system_prompt",
    "build_planner_system_prompt",
    "build_planner_user_prompt",
    "build_recent_context_block",
    "build_summary_update_system_prompt",
    "build_summary_update_user_prompt",
    "build_tool_synthesis_prompts",
]
