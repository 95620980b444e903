"""Signal interface — inbound trade signal schema for the decision pipeline.

Signals arrive from an external generator or webhook and are immutable
once created. Prices are in underlying units; timestamp is epoch seconds.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


class Direction(enum.Enum):
    LONG = "LONG"
    SHORT = "SHORT"


@dataclass(frozen=True)
class Signal:
    """A directional trade idea with its contributing signal tags."""

    symbol: str
    timestamp: int  # epoch seconds
    signal_type: str
    direction: Direction
    confidence: float  # 0-10
    confluence_count: int
    entry_price: float
    stop_loss: float
    take_profit_1: float
    active_signals: tuple[str, ...] = ()
    resolution: str = "1D"
    signal_strength: float | None = None
    signal_id: str | None = None
    take_profit_2: float | None = None
    take_profit_3: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def received_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)

    @property
    def risk_per_unit(self) -> float:
        return abs(self.entry_price - self.stop_loss)

    def to_dict(self) -> dict[str, Any]:
        return {
            "signal_id": self.signal_id,
            "symbol": self.symbol,
            "resolution": self.resolution,
            "timestamp": self.timestamp,
            "signal_type": self.signal_type,
            "direction": self.direction.value,
            "confidence": self.confidence,
            "signal_strength": self.signal_strength,
            "confluence_count": self.confluence_count,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit_1": self.take_profit_1,
            "take_profit_2": self.take_profit_2,
            "take_profit_3": self.take_profit_3,
            "active_signals": list(self.active_signals),
        }
