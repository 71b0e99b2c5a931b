from .base import HttpTool, Tool
from .current_datetime import CurrentDateTimeTool
from .registry import ToolRegistry, build_tool_registry
from .spotify_status import SpotifyPlayingStatusTool, format_playing_status
from .web_search import TavilyWebSearchTool

__all__ = [
    "CurrentDateTimeTool",
    "HttpTool",
    "SpotifyPlayingStatusTool",
    "TavilyWebSearchTool",
    "Tool",
    "ToolRegistry",
    "build_tool_registry",
    "format_playing_status",
]
