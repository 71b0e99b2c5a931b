"""Conversational companion core: planning, tools, memory and replies for chat adapters."""

from __future__ import annotations

from .config import Settings
from .errors import CompanionPilotError, ConfigurationError, FatalError, PlanValidationError, TransientError
from .runtime import CompanionRuntime, build_runtime
from .types import InboundMessage, TurnReply

__version__ = "0.1.0"

__all__ = [
    "CompanionPilotError",
    "CompanionRuntime",
    "ConfigurationError",
    "FatalError",
    "InboundMessage",
    "PlanValidationError",
    "Settings",
    "TransientError",
    "TurnReply",
    "build_runtime",
]
