from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()

MODEL_PROVIDERS = ("auto", "openrouter", "gemini", "mock")


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


def _env_optional(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    value = _env_str(name, "", aliases)
    return value or None


def _clean_token(value: str) -> str:
    cleaned = value.strip()
    if cleaned.lower().startswith("bot "):
        cleaned = cleaned[4:].strip()
    if (cleaned.startswith('"') and cleaned.endswith('"')) or (
        cleaned.startswith("'") and cleaned.endswith("'")
    ):
        cleaned = cleaned[1:-1].strip()
    return cleaned


@dataclass(slots=True)
class Settings:
    discord_token: str = ""
    discord_message_content_intent: bool = True
    mention_only: bool = False

    model_provider: str = "auto"
    openrouter_api_key: str | None = None
    openrouter_model: str = "anthropic/claude-3.5-sonnet"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_referer: str | None = None
    openrouter_title: str | None = None
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    model_timeout_seconds: int = 45
    model_temperature: float = 0.4

    database_url: str | None = None
    sqlite_path: Path | None = None
    memory_timeout_seconds: float = 5.0

    tavily_api_key: str | None = None
    spotify_status_url: str = "https://api.peterrock.dev/api/spotify/playing-status"
    tool_timeout_seconds: float = 20.0

    max_recent_turns: int = 12
    memory_fact_top_k: int = 50
    max_replans: int = 1
    slow_turn_seconds: float = 30.0
    max_response_chars: int = 0
    system_prompt_override: str = ""

    summary_enabled: bool = True
    summary_min_new_user_messages: int = 5
    summary_window_turns: int = 24
    summary_max_chars: int = 1100

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        sqlite_raw = _env_str("SQLITE_PATH", "")
        return cls(
            discord_token=_clean_token(_env_lookup("DISCORD_TOKEN") or ""),
            discord_message_content_intent=_env_bool("DISCORD_MESSAGE_CONTENT_INTENT", True),
            mention_only=_env_bool("BOT_MENTION_ONLY", False),
            model_provider=_env_str("MODEL_PROVIDER", "auto").lower(),
            openrouter_api_key=_env_optional("OPENROUTER_API_KEY"),
            openrouter_model=_env_str("OPENROUTER_MODEL", "anthropic/claude-3.5-sonnet"),
            openrouter_base_url=_env_str("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"),
            openrouter_referer=_env_optional("OPENROUTER_REFERER"),
            openrouter_title=_env_optional("OPENROUTER_TITLE"),
            gemini_api_key=_env_optional("GEMINI_API_KEY"),
            gemini_model=_env_str("GEMINI_MODEL", "gemini-2.5-flash"),
            gemini_base_url=_env_str("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"),
            model_timeout_seconds=_env_int("MODEL_TIMEOUT_SECONDS", 45),
            model_temperature=_env_float("MODEL_TEMPERATURE", 0.4),
            database_url=_env_optional("DATABASE_URL", aliases=("MEMORY_POSTGRES_DSN",)),
            sqlite_path=Path(sqlite_raw).expanduser() if sqlite_raw else None,
            memory_timeout_seconds=_env_float("MEMORY_TIMEOUT_SECONDS", 5.0),
            tavily_api_key=_env_optional("TAVILY_API_KEY"),
            spotify_status_url=_env_str(
                "SPOTIFY_STATUS_URL",
                "https://api.peterrock.dev/api/spotify/playing-status",
            ),
            tool_timeout_seconds=_env_float("TOOL_TIMEOUT_SECONDS", 20.0),
            max_recent_turns=_env_int("MAX_RECENT_TURNS", 12, aliases=("MAX_RECENT_MESSAGES",)),
            memory_fact_top_k=_env_int("MEMORY_FACT_TOP_K", 50),
            max_replans=_env_int("MAX_REPLANS", 1),
            slow_turn_seconds=_env_float("SLOW_TURN_SECONDS", 30.0),
            max_response_chars=_env_int("MAX_RESPONSE_CHARS", 0),
            system_prompt_override=_env_str("SYSTEM_PROMPT_OVERRIDE", ""),
            summary_enabled=_env_bool("SUMMARY_ENABLED", True),
            summary_min_new_user_messages=_env_int("SUMMARY_MIN_NEW_USER_MESSAGES", 5),
            summary_window_turns=_env_int("SUMMARY_WINDOW_TURNS", 24),
            summary_max_chars=_env_int("SUMMARY_MAX_CHARS", 1100),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> None:
        if self.discord_token == "put_your_discord_bot_token_here":
            raise ValueError("DISCORD_TOKEN is still placeholder")

        if self.model_timeout_seconds < 5:
            raise ValueError("MODEL_TIMEOUT_SECONDS must be >= 5")
        if self.model_temperature < 0.0 or self.model_temperature > 2.0:
            raise ValueError("MODEL_TEMPERATURE must be in [0, 2]")
        if self.memory_timeout_seconds <= 0:
            raise ValueError("MEMORY_TIMEOUT_SECONDS must be > 0")
        if self.tool_timeout_seconds <= 0:
            raise ValueError("TOOL_TIMEOUT_SECONDS must be > 0")

        if self.max_recent_turns < 1:
            raise ValueError("MAX_RECENT_TURNS must be >= 1")
        if self.memory_fact_top_k < 1:
            raise ValueError("MEMORY_FACT_TOP_K must be >= 1")
        if self.max_replans < 0 or self.max_replans > 1:
            raise ValueError("MAX_REPLANS must be 0 or 1")
        if self.slow_turn_seconds <= 0:
            raise ValueError("SLOW_TURN_SECONDS must be > 0")
        if self.max_response_chars < 0:
            raise ValueError("MAX_RESPONSE_CHARS must be >= 0 (0 disables explicit cap)")
        if self.max_response_chars and self.max_response_chars < 300:
            raise ValueError("MAX_RESPONSE_CHARS must be 0 or >= 300")

        if self.summary_min_new_user_messages < 1:
            raise ValueError("SUMMARY_MIN_NEW_USER_MESSAGES must be >= 1")
        if self.summary_window_turns < 4:
            raise ValueError("SUMMARY_WINDOW_TURNS must be >= 4")
        if self.summary_max_chars < 200:
            raise ValueError("SUMMARY_MAX_CHARS must be >= 200")
