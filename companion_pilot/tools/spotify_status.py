from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Tuple

import aiohttp

from ..common import as_int
from ..errors import TransientError
from ..types import ToolDefinition, ToolResult
from .base import HttpTool


logger = logging.getLogger("companion_pilot")

DEFAULT_PLAYING_STATUS_URL = "https://api.peterrock.dev/api/spotify/playing-status"


def _format_millis(ms: int) -> str:
    total_seconds = max(0, ms) // 1000
    return f"{total_seconds // 60:02d}:{total_seconds % 60:02d}"


def _extract_user_and_status(payload: Any) -> Tuple[Dict[str, Any], Dict[str, Any]] | None:
    if not isinstance(payload, list):
        return None
    if len(payload) == 2 and isinstance(payload[0], dict) and isinstance(payload[1], dict):
        return payload[0], payload[1]
    for item in payload:
        found = _extract_user_and_status(item)
        if found is not None:
            return found
    return None


def format_playing_status(payload: Any) -> str | None:
    found = _extract_user_and_status(payload)
    if found is None:
        return None
    user, status = found

    lines = [f"Spotify user: {user.get('display_name') or 'Unknown'}"]
    if status.get("is_playing") is not True:
        lines.append("Playback status: not currently playing")
        return "\n".join(lines)

    lines.append("Playback status: currently playing")
    track = status.get("track")
    if isinstance(track, dict):
        lines.append(f"Track: {track.get('name') or 'Unknown track'}")
        lines.append(f"Artist: {track.get('artist') or 'Unknown artist'}")
        lines.append(f"Album: {track.get('album') or 'Unknown album'}")
        duration_ms = as_int(track.get("duration_ms"), 0)
        if duration_ms > 0:
            progress_ms = as_int(status.get("progress_ms"), 0)
            lines.append(f"Progress: {_format_millis(progress_ms)} / {_format_millis(duration_ms)}")
        uri = track.get("uri")
        if isinstance(uri, str) and uri:
            lines.append(f"URI: {uri}")
    return "\n".join(lines)


class SpotifyPlayingStatusTool(HttpTool):
    definition = ToolDefinition(
        name="spotify_playing_status",
        description="What the owner is currently playing on Spotify (track, artist, album, progress).",
        input_schema={"type": "object", "properties": {}, "additionalProperties": False},
    )

    def __init__(self, endpoint_url: str = DEFAULT_PLAYING_STATUS_URL, timeout_seconds: float = 20.0) -> None:
        super().__init__(timeout_seconds)
        self.endpoint_url = endpoint_url

    async def invoke(self, args: Dict[str, Any]) -> ToolResult:
        logger.info("[tool.spotify] playing status request start")
        session = await self._ensure_session()
        try:
            async with session.get(self.endpoint_url) as response:
                if response.status != 200:
                    raise TransientError(f"spotify playing status returned status {response.status}", stage="tool")
                payload = await response.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise TransientError("spotify playing status request timed out", stage="tool") from exc
        except aiohttp.ClientError as exc:
            raise TransientError(f"spotify playing status request failed: {exc}", stage="tool") from exc

        text = format_playing_status(payload)
        if text is None:
            raise RuntimeError("spotify_playing_status response format was not recognized")
        return ToolResult(text=text, citations=[self.endpoint_url])
