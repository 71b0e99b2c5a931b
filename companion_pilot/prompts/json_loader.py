from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger("companion_pilot.prompts")

_CACHE: dict[str, tuple[int | None, dict[str, Any]]] = {}


def _data_dir() -> Path:
    override = os.getenv("PROMPT_OVERRIDES_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path(__file__).with_name("data")


def _deep_merge(base: Any, override: Any) -> Any:
    if isinstance(base, dict) and isinstance(override, dict):
        merged = {key: copy.deepcopy(value) for key, value in base.items()}
        for key, value in override.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged
    return copy.deepcopy(override)


def load_prompt_json(filename: str, defaults: dict[str, Any]) -> dict[str, Any]:
    """Return ``defaults`` deep-merged with an optional JSON override file.

    Missing override files are normal; unreadable or malformed ones are logged and ignored.
    """
    path = _data_dir() / filename
    cache_key = str(path.resolve())

    mtime_ns: int | None = None
    if path.exists():
        try:
            mtime_ns = path.stat().st_mtime_ns
        except OSError:
            mtime_ns = None

    cached = _CACHE.get(cache_key)
    if cached is not None and cached[0] == mtime_ns:
        return copy.deepcopy(cached[1])

    merged_defaults = copy.deepcopy(defaults)
    if not path.exists():
        _CACHE[cache_key] = (mtime_ns, merged_defaults)
        return copy.deepcopy(merged_defaults)

    try:
        payload = json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Failed to parse prompt JSON %s (%s). Using defaults.", path, exc)
        _CACHE[cache_key] = (mtime_ns, merged_defaults)
        return copy.deepcopy(merged_defaults)

    if not isinstance(payload, dict):
        logger.warning("Prompt JSON root must be an object: %s (using defaults)", path)
        _CACHE[cache_key] = (mtime_ns, merged_defaults)
        return copy.deepcopy(merged_defaults)

    merged = _deep_merge(merged_defaults, payload)
    _CACHE[cache_key] = (mtime_ns, copy.deepcopy(merged))
    return merged
