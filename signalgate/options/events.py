"""Event calendar — scheduled market events that threaten an options hold.

Earnings, macro releases and monthly expiration inside the regime's
expected holding period produce warnings. Three or more warnings block
the trade.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable

from signalgate.decision.timeframe import Regime, RegimeConfig
from signalgate.signals.signal import Direction

logger = logging.getLogger(__name__)

GATE_NAME = "Event Calendar"
MAX_WARNINGS = 3
BLOCK_REASON = "Too many event concerns"


class EventType(enum.Enum):
    EARNINGS = "EARNINGS"
    FOMC = "FOMC"
    CPI = "CPI"
    NFP = "NFP"
    OPEX = "OPEX"
    DIVIDEND = "DIVIDEND"


class EventImpact(enum.Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class IVImpact(enum.Enum):
    EXPANSION = "EXPANSION"
    CRUSH = "CRUSH"
    NEUTRAL = "NEUTRAL"


@dataclass(frozen=True)
class MarketEvent:
    event_type: EventType
    date: datetime
    symbol: str | None = None  # None = market-wide
    impact: EventImpact = EventImpact.MEDIUM
    iv_impact: IVImpact = IVImpact.NEUTRAL
    description: str = ""


@dataclass(frozen=True)
class EventAdjustment:
    approved: bool
    warnings: tuple[str, ...] = field(default_factory=tuple)
    adjustments: tuple[str, ...] = field(default_factory=tuple)

    @property
    def has_concerns(self) -> bool:
        return bool(self.warnings or self.adjustments)

    @property
    def reason(self) -> str:
        return "; ".join(self.warnings) or "Event adjustments required"


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def in_holding_period(event_date: datetime, config: RegimeConfig, now: datetime) -> bool:
    hours_until = (_aware(event_date) - _aware(now)).total_seconds() / 3600.0
    return 0 <= hours_until <= config.max_holding_hours


def adjust_for_events(
    symbol: str,
    direction: Direction,
    config: RegimeConfig,
    events: Iterable[MarketEvent],
    now: datetime,
) -> EventAdjustment:
    """Collect warnings and sizing adjustments for events inside the hold."""
    regime = config.regime
    warnings: list[str] = []
    adjustments: list[str] = []

    relevant = [
        e for e in events
        if (e.symbol is None or e.symbol == symbol) and in_holding_period(e.date, config, now)
    ]

    for event in relevant:
        day = _aware(event.date).date().isoformat()
        if event.event_type == EventType.EARNINGS and event.symbol == symbol:
            if regime in (Regime.INTRADAY, Regime.SWING):
                warnings.append(f"Earnings on {day} - expect IV crush post-event")
                if direction == Direction.LONG:
                    adjustments.append(
                        "Consider closing before earnings or switching to defined-risk spread"
                    )
        elif event.event_type in (EventType.FOMC, EventType.CPI):
            if regime == Regime.INTRADAY:
                warnings.append(f"{event.event_type.value} on {day} - elevated volatility expected")
                adjustments.append("Reduce position size by 50% around macro events")
        elif event.event_type == EventType.OPEX:
            if regime in (Regime.SWING, Regime.MONTHLY):
                warnings.append(f"Monthly OPEX on {day} - pin risk and gamma exposure elevated")
        elif event.event_type == EventType.NFP:
            if regime == Regime.INTRADAY:
                warnings.append(f"NFP on {day} - expect gap and volatility spike")
                adjustments.append("Consider waiting until after NFP release")

    return EventAdjustment(
        approved=len(warnings) < MAX_WARNINGS,
        warnings=tuple(warnings),
        adjustments=tuple(adjustments),
    )


class EventCalendar:
    """In-memory calendar of scheduled events."""

    def __init__(self, events: Iterable[MarketEvent] = ()) -> None:
        self._events: list[MarketEvent] = list(events)
        self._lock = threading.Lock()

    def add(self, event: MarketEvent) -> None:
        with self._lock:
            self._events.append(event)

    def upcoming(
        self,
        symbol: str | None,
        now: datetime,
        horizon_hours: float = 30 * 24,
    ) -> list[MarketEvent]:
        """Events for ``symbol`` (or market-wide) within the horizon, soonest first."""
        end = _aware(now) + timedelta(hours=horizon_hours)
        with self._lock:
            selected = [
                e for e in self._events
                if (e.symbol is None or e.symbol == symbol)
                and _aware(now) <= _aware(e.date) <= end
            ]
        return sorted(selected, key=lambda e: _aware(e.date))

    def __len__(self) -> int:
        return len(self._events)
