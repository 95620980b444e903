"""Admission check results.

Advisory checks (cooldowns, volatility, duplicates) fail open. A check that
could not be evaluated returns ``DEGRADED`` instead of silently passing, so
callers can tell "admitted because clean" from "admitted because unknown".
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class CheckStatus(enum.Enum):
    ALLOWED = "allowed"
    BLOCKED = "blocked"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class CheckResult:
    """Outcome of a single admission check."""

    status: CheckStatus
    reason: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **details: Any) -> CheckResult:
        return cls(CheckStatus.ALLOWED, details=details)

    @classmethod
    def block(cls, reason: str, **details: Any) -> CheckResult:
        return cls(CheckStatus.BLOCKED, reason, details)

    @classmethod
    def degrade(cls, reason: str, **details: Any) -> CheckResult:
        return cls(CheckStatus.DEGRADED, reason, details)

    @property
    def allowed(self) -> bool:
        """True for ALLOWED and DEGRADED (fail-open)."""
        return self.status != CheckStatus.BLOCKED

    @property
    def degraded(self) -> bool:
        return self.status == CheckStatus.DEGRADED
