from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

DEFAULT_BLOCKED_TERMS: Tuple[str, ...] = ("rm -rf", "token leak")


@dataclass(slots=True)
class SafetyPolicy:
    """Flags suspicious user input. Flags are informational and never block a turn."""

    blocked_terms: Tuple[str, ...] = field(default=DEFAULT_BLOCKED_TERMS)

    def validate_user_message(self, text: str) -> List[str]:
        lowered = text.lower()
        return [f"blocked-term:{term}" for term in self.blocked_terms if term in lowered]
