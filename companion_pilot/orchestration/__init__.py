from .context import ContextAssembler
from .dispatcher import ChannelDispatcher
from .executor import ToolExecutor
from .pipeline import ResponsePipeline
from .planner import Planner, clean_memory_value, extract_first_json_object, parse_plan_payload, sanitize_memory_key
from .reconciler import MemoryReconciler

__all__ = [
    "ChannelDispatcher",
    "ContextAssembler",
    "MemoryReconciler",
    "Planner",
    "ResponsePipeline",
    "ToolExecutor",
    "clean_memory_value",
    "extract_first_json_object",
    "parse_plan_payload",
    "sanitize_memory_key",
]
