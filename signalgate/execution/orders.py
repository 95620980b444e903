"""Order domain types for the paper execution simulator."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from signalgate.options.types import OptionLeg


class OrderSide(enum.Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> OrderSide:
        return OrderSide.SELL if self == OrderSide.BUY else OrderSide.BUY


class OrderType(enum.Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP = "STOP"
    STOP_LIMIT = "STOP_LIMIT"


class TimeInForce(enum.Enum):
    DAY = "DAY"
    GTC = "GTC"
    IOC = "IOC"
    FOK = "FOK"


class OrderStatus(enum.Enum):
    PENDING = "PENDING"
    FILLED = "FILLED"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


def new_order_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class Order:
    """An order request. ``multiplier`` is 100 for option contracts."""

    symbol: str
    side: OrderSide
    quantity: int
    order_type: OrderType = OrderType.MARKET
    limit_price: float | None = None
    stop_price: float | None = None
    time_in_force: TimeInForce = TimeInForce.DAY
    multiplier: int = 1
    legs: tuple[OptionLeg, ...] = ()
    order_id: str = field(default_factory=new_order_id)

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("quantity must be > 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if self.order_type in (OrderType.LIMIT, OrderType.STOP_LIMIT) and not self.limit_price:
            raise ValueError(f"{self.order_type.value} order requires limit_price")
        if self.order_type in (OrderType.STOP, OrderType.STOP_LIMIT) and not self.stop_price:
            raise ValueError(f"{self.order_type.value} order requires stop_price")


@dataclass(frozen=True)
class Fill:
    order_id: str
    fill_id: str
    symbol: str
    side: OrderSide
    quantity: int
    price: float
    commission: float
    slippage: float
    timestamp: datetime
    multiplier: int = 1

    @property
    def notional(self) -> float:
        return self.quantity * self.price * self.multiplier


@dataclass(frozen=True)
class OrderResult:
    order_id: str
    symbol: str
    side: OrderSide
    status: OrderStatus
    requested_qty: int
    fill: Fill | None = None
    reason: str = ""

    @property
    def filled_qty(self) -> int:
        return self.fill.quantity if self.fill is not None else 0

    @property
    def is_filled(self) -> bool:
        return self.status in (OrderStatus.FILLED, OrderStatus.PARTIALLY_FILLED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "status": self.status.value,
            "requested_qty": self.requested_qty,
            "filled_qty": self.filled_qty,
            "fill_price": self.fill.price if self.fill else None,
            "commission": self.fill.commission if self.fill else 0.0,
            "reason": self.reason,
        }
