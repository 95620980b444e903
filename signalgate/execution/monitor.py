"""Position monitoring — closes paper trades at stops, targets or session end.

Directional trades are checked against price levels: a LONG trade stops
out when price <= stop, a SHORT when price >= stop, and targets are
checked from the furthest down so the highest reached wins.

Options trades carry exit rules instead. The rules are re-scanned on every
tick against the premium mark; a CLOSE_HALF rule closes half the contracts
once, ROLL and HEDGE rules raise an alert once and keep the trade open.

Outside market hours open directional trades close at the current price.
"""

from __future__ import annotations

import enum
import logging
import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from signalgate.decision.gates import is_market_open
from signalgate.options.exits import ExitAction, ExitRule, check_exit_rules
from signalgate.options.types import OptionLeg, days_to_expiration
from signalgate.signals.signal import Direction

logger = logging.getLogger(__name__)


class TradeStatus(enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class ExitReason(enum.Enum):
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT_1 = "TAKE_PROFIT_1"
    TAKE_PROFIT_2 = "TAKE_PROFIT_2"
    TAKE_PROFIT_3 = "TAKE_PROFIT_3"
    EXIT_RULE = "EXIT_RULE"
    END_OF_DAY = "END_OF_DAY"
    KILL_SWITCH = "KILL_SWITCH"
    MANUAL = "MANUAL"


@dataclass(frozen=True)
class PaperTrade:
    """An executed trade. Closing returns a new, final record.

    For options trades ``entry_price`` is the per-unit premium, ``direction``
    is LONG for a debit and SHORT for a credit, and ``multiplier`` is 100.
    """

    symbol: str
    direction: Direction
    entry_price: float
    quantity: int
    stop_loss: float
    take_profit_1: float
    opened_at: datetime
    take_profit_2: float | None = None
    take_profit_3: float | None = None
    signal_id: str | None = None
    signal_type: str | None = None
    strategy: str | None = None
    multiplier: int = 1
    legs: tuple[OptionLeg, ...] = ()
    expiration: datetime | None = None
    entry_iv: float = 0.0
    exit_rules: tuple[ExitRule, ...] = ()
    fired_rules: tuple[int, ...] = ()
    trade_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    position_id: str | None = None
    status: TradeStatus = TradeStatus.OPEN
    exit_price: float | None = None
    exit_reason: ExitReason | None = None
    exit_rule: ExitRule | None = None
    closed_at: datetime | None = None
    pnl: float = 0.0
    r_multiple: float = 0.0
    duration_minutes: int = 0

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN

    @property
    def is_option(self) -> bool:
        return bool(self.legs)

    @property
    def position_key(self) -> str:
        """Id of the opening trade; shared by every part split off it."""
        return self.position_id or self.trade_id

    @property
    def initial_risk(self) -> float:
        return abs(self.entry_price - self.stop_loss) * self.quantity * self.multiplier

    @property
    def value(self) -> float:
        return self.entry_price * self.quantity * self.multiplier

    def pnl_at(self, price: float) -> float:
        move = price - self.entry_price
        if self.direction == Direction.SHORT:
            move = -move
        return move * self.quantity * self.multiplier

    def pnl_pct(self, price: float) -> float:
        if self.entry_price <= 0:
            return 0.0
        move = (price - self.entry_price) / self.entry_price
        return -move if self.direction == Direction.SHORT else move

    def to_dict(self) -> dict[str, Any]:
        return {
            "trade_id": self.trade_id,
            "signal_id": self.signal_id,
            "signal_type": self.signal_type,
            "symbol": self.symbol,
            "direction": self.direction.value,
            "strategy": self.strategy,
            "entry_price": self.entry_price,
            "quantity": self.quantity,
            "multiplier": self.multiplier,
            "stop_loss": self.stop_loss,
            "take_profit_1": self.take_profit_1,
            "take_profit_2": self.take_profit_2,
            "take_profit_3": self.take_profit_3,
            "legs": [leg.to_dict() for leg in self.legs],
            "expiration": self.expiration.isoformat() if self.expiration else None,
            "status": self.status.value,
            "exit_price": self.exit_price,
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
            "exit_rule": self.exit_rule.to_dict() if self.exit_rule else None,
            "opened_at": self.opened_at.isoformat(),
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "pnl": self.pnl,
            "r_multiple": self.r_multiple,
            "duration_minutes": self.duration_minutes,
            "exit_rules": [r.to_dict() for r in self.exit_rules],
        }


def close_trade(
    trade: PaperTrade,
    exit_price: float,
    reason: ExitReason,
    now: datetime,
    rule: ExitRule | None = None,
) -> PaperTrade:
    if not trade.is_open:
        raise ValueError(f"trade {trade.trade_id} is already closed")
    pnl = trade.pnl_at(exit_price)
    risk = trade.initial_risk
    return replace(
        trade,
        status=TradeStatus.CLOSED,
        exit_price=exit_price,
        exit_reason=reason,
        exit_rule=rule,
        closed_at=now,
        pnl=pnl,
        r_multiple=pnl / risk if risk > 0 else 0.0,
        duration_minutes=max(0, math.floor((now - trade.opened_at).total_seconds() / 60)),
    )


def split_trade(
    trade: PaperTrade, quantity: int, part_id: str | None = None,
) -> tuple[PaperTrade, PaperTrade]:
    """Split ``quantity`` units off an open trade.

    Returns ``(part, rest)``; ``rest`` keeps the trade id. The part is
    numbered after the rules fired so far unless ``part_id`` is given.
    """
    if not 0 < quantity < trade.quantity:
        raise ValueError(f"cannot split {quantity} of {trade.quantity}")
    part = replace(
        trade,
        quantity=quantity,
        trade_id=part_id or f"{trade.trade_id}-{len(trade.fired_rules)}",
        position_id=trade.position_key,
    )
    rest = replace(trade, quantity=trade.quantity - quantity)
    return part, rest


@dataclass(frozen=True)
class ExitSignal:
    """What the monitor wants done with a trade. ``quantity=None`` is all of it."""

    reason: ExitReason
    price: float
    quantity: int | None = None
    rule: ExitRule | None = None
    rule_index: int | None = None

    @property
    def closes(self) -> bool:
        return self.quantity is None or self.quantity > 0


@dataclass(frozen=True)
class MonitorFailure:
    trade_id: str
    symbol: str
    error: str


@dataclass(frozen=True)
class RuleAlert:
    trade_id: str
    symbol: str
    rule: ExitRule


@dataclass
class MonitorReport:
    checked: int = 0
    closed: list[PaperTrade] = field(default_factory=list)
    updated: list[PaperTrade] = field(default_factory=list)
    alerts: list[RuleAlert] = field(default_factory=list)
    failures: list[MonitorFailure] = field(default_factory=list)

    @property
    def realized_pnl(self) -> float:
        return sum(t.pnl for t in self.closed)


class PositionMonitor:
    def __init__(self, market_open: Callable[[datetime], bool] | None = None) -> None:
        self._market_open = market_open or is_market_open

    def check(
        self,
        trade: PaperTrade,
        price: float,
        now: datetime,
        iv: float | None = None,
    ) -> ExitSignal | None:
        """Exit instruction for an open trade, or ``None`` to hold."""
        if trade.exit_rules:
            return self._check_rules(trade, price, now, iv)

        hit = self._check_levels(trade, price)
        if hit is not None:
            return hit
        if not self._market_open(now):
            return ExitSignal(ExitReason.END_OF_DAY, price)
        return None

    def _check_levels(self, trade: PaperTrade, price: float) -> ExitSignal | None:
        long = trade.direction == Direction.LONG
        if (price <= trade.stop_loss) if long else (price >= trade.stop_loss):
            return ExitSignal(ExitReason.STOP_LOSS, trade.stop_loss)

        for reason, level in (
            (ExitReason.TAKE_PROFIT_3, trade.take_profit_3),
            (ExitReason.TAKE_PROFIT_2, trade.take_profit_2),
            (ExitReason.TAKE_PROFIT_1, trade.take_profit_1),
        ):
            if level is not None and ((price >= level) if long else (price <= level)):
                return ExitSignal(reason, level)
        return None

    def _check_rules(
        self, trade: PaperTrade, price: float, now: datetime, iv: float | None,
    ) -> ExitSignal | None:
        live = [
            (i, r) for i, r in enumerate(trade.exit_rules) if i not in trade.fired_rules
        ]
        dte = days_to_expiration(trade.expiration, now) if trade.expiration else 10_000
        hours = (now - trade.opened_at).total_seconds() / 3600
        rule = check_exit_rules(
            [r for _, r in live],
            trade.pnl_pct(price),
            dte,
            iv if iv is not None else trade.entry_iv,
            trade.entry_iv,
            hours,
        )
        if rule is None:
            return None
        index = next(i for i, r in live if r is rule)

        if rule.action == ExitAction.CLOSE_FULL:
            return ExitSignal(ExitReason.EXIT_RULE, price, rule=rule, rule_index=index)
        if rule.action == ExitAction.CLOSE_HALF:
            half = trade.quantity // 2
            if half == 0:
                return ExitSignal(ExitReason.EXIT_RULE, price, rule=rule, rule_index=index)
            return ExitSignal(ExitReason.EXIT_RULE, price, half, rule, index)
        return ExitSignal(ExitReason.EXIT_RULE, price, 0, rule, index)

    def monitor_all(
        self,
        trades: Iterable[PaperTrade],
        prices: Mapping[str, float] | Callable[[PaperTrade], float],
        now: datetime | None = None,
        ivs: Mapping[str, float] | None = None,
    ) -> MonitorReport:
        """Check every open trade independently; failures are collected.

        ``prices`` is either a symbol -> price mapping or a callable taking
        the trade. ``ivs`` maps trade id to the current implied volatility.
        """
        now = now or datetime.now(timezone.utc)
        ivs = ivs or {}
        report = MonitorReport()
        for trade in trades:
            if not trade.is_open:
                continue
            report.checked += 1
            try:
                price = prices(trade) if callable(prices) else prices[trade.symbol]
                hit = self.check(trade, price, now, ivs.get(trade.trade_id))
                if hit is None:
                    continue
                self._apply(trade, hit, now, report)
            except Exception as exc:
                logger.error("Monitoring failed for %s: %s", trade.trade_id, exc, exc_info=True)
                report.failures.append(MonitorFailure(trade.trade_id, trade.symbol, str(exc)))
        return report

    def _apply(
        self, trade: PaperTrade, hit: ExitSignal, now: datetime, report: MonitorReport,
    ) -> None:
        if hit.rule_index is not None:
            trade = replace(trade, fired_rules=trade.fired_rules + (hit.rule_index,))

        if not hit.closes:
            logger.warning(
                "Exit rule %s (%s) triggered for %s %s",
                hit.rule.trigger_type.value, hit.rule.action.value, trade.symbol, trade.trade_id,
            )
            report.alerts.append(RuleAlert(trade.trade_id, trade.symbol, hit.rule))
            report.updated.append(trade)
            return

        if hit.quantity is not None and hit.quantity < trade.quantity:
            part, trade = split_trade(trade, hit.quantity)
            closed = close_trade(part, hit.price, hit.reason, now, hit.rule)
            report.updated.append(trade)
        else:
            closed = close_trade(trade, hit.price, hit.reason, now, hit.rule)
        report.closed.append(closed)
        logger.info(
            "Closed %s %s x%d: %s @ %.2f pnl=%.2f R=%.2f",
            closed.symbol, closed.trade_id, closed.quantity, hit.reason.value, hit.price,
            closed.pnl, closed.r_multiple,
        )
