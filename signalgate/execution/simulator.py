"""ExecutionSimulator — paper order execution with realistic imperfection.

Every submission waits a configurable fill delay, may be rejected, may be
partially filled, pays slippage and a per-unit commission, then updates an
in-memory position book and cash ledger. There is no background fill
process: state changes only inside ``submit_order`` and
``close_position``. Orders in flight concurrently may complete out of
submission order.

All randomness comes from the injected ``random.Random``.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import math
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping

from signalgate.execution.orders import (
    Fill,
    Order,
    OrderResult,
    OrderStatus,
    OrderSide,
    OrderType,
    TimeInForce,
)
from signalgate.execution.state import Position

logger = logging.getLogger(__name__)


class SlippageModel(enum.Enum):
    NONE = "none"
    FIXED = "fixed"
    VOLUME_BASED = "volume_based"


@dataclass(frozen=True)
class ExecutionConfig:
    account_size: float = 100_000.0
    slippage_model: SlippageModel = SlippageModel.FIXED
    slippage_bps: float = 5.0
    fill_delay_ms: float = 100.0
    partial_fill_probability: float = 0.1
    reject_probability: float = 0.05
    commission_per_unit: float = 1.0

    def __post_init__(self) -> None:
        if self.account_size <= 0:
            raise ValueError("account_size must be > 0")
        if self.slippage_bps < 0:
            raise ValueError("slippage_bps must be >= 0")
        if self.fill_delay_ms < 0:
            raise ValueError("fill_delay_ms must be >= 0")
        for name in ("partial_fill_probability", "reject_probability"):
            if not 0 <= getattr(self, name) <= 1:
                raise ValueError(f"{name} must be in [0, 1]")
        if self.commission_per_unit < 0:
            raise ValueError("commission_per_unit must be >= 0")


@dataclass(frozen=True)
class AccountSummary:
    cash: float
    positions_value: float
    equity: float
    buying_power: float
    open_positions: int
    unrealized_pnl: float
    realized_pnl: float

    def to_dict(self) -> dict[str, float]:
        return {
            "cash": self.cash,
            "positions_value": self.positions_value,
            "equity": self.equity,
            "buying_power": self.buying_power,
            "open_positions": self.open_positions,
            "unrealized_pnl": self.unrealized_pnl,
            "realized_pnl": self.realized_pnl,
        }


PriceSource = Callable[[str], float]


class ExecutionSimulator:
    """Simulated venue with a position book and cash ledger."""

    def __init__(
        self,
        price_source: PriceSource,
        config: ExecutionConfig | None = None,
        rng: random.Random | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or ExecutionConfig()
        self._price_source = price_source
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.cash = self.config.account_size
        self._positions: dict[str, Position] = {}
        self._pending: dict[str, Order] = {}
        self._cancelled: set[str] = set()
        self._fills: list[Fill] = []
        self._orders: list[OrderResult] = []
        self._last_prices: dict[str, float] = {}
        self._closed_realized = 0.0
        self._fill_seq = 0

    # -- queries ------------------------------------------------------------

    @property
    def positions(self) -> dict[str, Position]:
        return dict(self._positions)

    @property
    def fills(self) -> list[Fill]:
        return list(self._fills)

    @property
    def order_history(self) -> list[OrderResult]:
        return list(self._orders)

    def position(self, symbol: str) -> Position | None:
        return self._positions.get(symbol)

    # -- pricing ------------------------------------------------------------

    def _base_price(self, order: Order, market: float) -> float:
        if order.order_type in (OrderType.LIMIT, OrderType.STOP_LIMIT) and order.limit_price:
            return order.limit_price
        return market

    def slippage_per_unit(self, price: float, quantity: int) -> float:
        model = self.config.slippage_model
        if model == SlippageModel.NONE:
            return 0.0
        fixed = price * self.config.slippage_bps / 10_000
        if model == SlippageModel.FIXED:
            return fixed
        return fixed * min(2.0, quantity / 100)

    def _fill_quantity(self, quantity: int) -> int:
        if self._rng.random() < self.config.partial_fill_probability:
            return max(1, math.floor(quantity * (0.5 + self._rng.random() * 0.5)))
        return quantity

    # -- order lifecycle ----------------------------------------------------

    def _finish(self, result: OrderResult) -> OrderResult:
        self._pending.pop(result.order_id, None)
        self._cancelled.discard(result.order_id)
        self._orders.append(result)
        if result.status == OrderStatus.REJECTED:
            logger.info("Order %s %s rejected: %s", result.order_id, result.symbol, result.reason)
        return result

    def _reject(self, order: Order, reason: str) -> OrderResult:
        return self._finish(OrderResult(
            order.order_id, order.symbol, order.side, OrderStatus.REJECTED, order.quantity,
            reason=reason,
        ))

    async def submit_order(self, order: Order) -> OrderResult:
        """Submit an order and wait for its simulated fill."""
        self._pending[order.order_id] = order
        if self.config.fill_delay_ms > 0:
            await asyncio.sleep(self.config.fill_delay_ms / 1000)

        if order.order_id in self._cancelled:
            return self._finish(OrderResult(
                order.order_id, order.symbol, order.side, OrderStatus.CANCELLED, order.quantity,
                reason="Cancelled before fill",
            ))

        if self._rng.random() < self.config.reject_probability:
            return self._reject(order, "Simulated venue rejection")

        try:
            market = self._price_source(order.symbol)
        except Exception as exc:
            logger.warning("No price for %s: %s", order.symbol, exc)
            return self._reject(order, f"No price for {order.symbol}")

        quantity = self._fill_quantity(order.quantity)
        if quantity < order.quantity and order.time_in_force == TimeInForce.FOK:
            return self._finish(OrderResult(
                order.order_id, order.symbol, order.side, OrderStatus.CANCELLED, order.quantity,
                reason="Fill-or-kill order could not be filled in full",
            ))

        base = self._base_price(order, market)
        slip = self.slippage_per_unit(base, quantity)
        price = base + slip if order.side == OrderSide.BUY else base - slip
        commission = quantity * self.config.commission_per_unit

        self._fill_seq += 1
        fill = Fill(
            order_id=order.order_id,
            fill_id=f"{order.order_id}-{self._fill_seq}",
            symbol=order.symbol,
            side=order.side,
            quantity=quantity,
            price=price,
            commission=commission,
            slippage=slip,
            timestamp=self._clock(),
            multiplier=order.multiplier,
        )
        self._apply(fill)

        status = OrderStatus.FILLED if quantity == order.quantity else OrderStatus.PARTIALLY_FILLED
        logger.info(
            "Filled %s %s %d/%d @ %.4f (slippage %.4f, commission %.2f)",
            order.side.value, order.symbol, quantity, order.quantity, price, slip, commission,
        )
        return self._finish(OrderResult(
            order.order_id, order.symbol, order.side, status, order.quantity, fill=fill,
        ))

    def _apply(self, fill: Fill) -> None:
        if fill.side == OrderSide.BUY:
            self.cash -= fill.notional + fill.commission
        else:
            self.cash += fill.notional - fill.commission
        self._fills.append(fill)
        self._last_prices[fill.symbol] = fill.price

        pos = self._positions.get(fill.symbol)
        if pos is None:
            pos = Position(symbol=fill.symbol, multiplier=fill.multiplier)
            self._positions[fill.symbol] = pos
        pos.apply_fill(fill)
        if pos.is_flat:
            self._closed_realized += pos.realized_pnl
            del self._positions[fill.symbol]

    def cancel_order(self, order_id: str) -> bool:
        """Cancel a pending order. Fill-or-kill orders cannot be cancelled."""
        order = self._pending.get(order_id)
        if order is None or order.time_in_force == TimeInForce.FOK:
            return False
        self._cancelled.add(order_id)
        return True

    async def close_position(self, symbol: str, quantity: int | None = None) -> OrderResult:
        """Flatten (or reduce) a position with an offsetting market order."""
        pos = self._positions.get(symbol)
        if pos is None or pos.is_flat:
            return self._finish(OrderResult(
                f"close-{symbol}", symbol, OrderSide.SELL, OrderStatus.REJECTED, quantity or 0,
                reason=f"No open position for {symbol}",
            ))
        qty = min(quantity or abs(pos.quantity), abs(pos.quantity))
        side = OrderSide.SELL if pos.quantity > 0 else OrderSide.BUY
        order = Order(symbol=symbol, side=side, quantity=qty, multiplier=pos.multiplier)
        return await self.submit_order(order)

    # -- ledger -------------------------------------------------------------

    def account_summary(self, prices: Mapping[str, float] | None = None) -> AccountSummary:
        marks = {**self._last_prices, **(prices or {})}
        positions_value = 0.0
        unrealized = 0.0
        realized = self._closed_realized
        for sym, pos in self._positions.items():
            mark = marks.get(sym, pos.avg_entry_price)
            positions_value += pos.market_value(mark)
            unrealized += pos.unrealized_pnl(mark)
            realized += pos.realized_pnl
        equity = self.cash + positions_value
        return AccountSummary(
            cash=self.cash,
            positions_value=positions_value,
            equity=equity,
            buying_power=2 * equity,
            open_positions=len(self._positions),
            unrealized_pnl=unrealized,
            realized_pnl=realized,
        )
