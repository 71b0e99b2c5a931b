"""Error taxonomy shared by the orchestration core and its collaborators."""

from __future__ import annotations

from typing import Any, Dict

from .types import OUTCOME_CONFIGURATION, OUTCOME_TRANSIENT, OUTCOME_VALIDATION


class CompanionPilotError(Exception):
    kind = "error"

    def __init__(self, message: str, *, stage: str = "", details: Dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.details = dict(details or {})

    def __str__(self) -> str:
        if not self.details:
            return self.message
        details = ", ".join(f"{key}={value}" for key, value in self.details.items())
        return f"{self.message} ({details})"


class ConfigurationError(CompanionPilotError):
    """Missing credential or setting. Deterministic, never retried."""

    kind = OUTCOME_CONFIGURATION


class TransientError(CompanionPilotError):
    """Timeout or unreachable dependency."""

    kind = OUTCOME_TRANSIENT


class PlanValidationError(CompanionPilotError):
    """Malformed planner output or tool arguments."""

    kind = OUTCOME_VALIDATION


class FatalError(CompanionPilotError):
    """No reply can be produced for the turn."""

    kind = "fatal"


def error_kind(exc: BaseException) -> str:
    if isinstance(exc, CompanionPilotError):
        return exc.kind
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return OUTCOME_TRANSIENT
    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return OUTCOME_VALIDATION
    return OUTCOME_TRANSIENT
