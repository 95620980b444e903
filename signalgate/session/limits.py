"""Daily and position limits — session-scoped admission control.

Daily counters are keyed by the New York calendar date and reset the
first time they are touched on a new date. Counters never go negative.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from typing import Any, Mapping
from zoneinfo import ZoneInfo

from signalgate.session.results import CheckResult

logger = logging.getLogger(__name__)

MARKET_TZ = ZoneInfo("America/New_York")


def trading_date(now: datetime) -> date:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(MARKET_TZ).date()


@dataclass(frozen=True)
class DailyLimitConfig:
    max_daily_trades: int = 5
    max_daily_loss: float = 2500.0

    def __post_init__(self) -> None:
        if self.max_daily_trades < 1:
            raise ValueError("max_daily_trades must be >= 1")
        if self.max_daily_loss <= 0:
            raise ValueError("max_daily_loss must be > 0")


@dataclass
class DailyLimitRecord:
    trade_date: date
    trades_count: int = 0
    daily_pnl: float = 0.0
    max_drawdown: float = 0.0  # worst intraday P&L, as a positive amount
    breached: bool = False

    def __post_init__(self) -> None:
        if self.trades_count < 0:
            raise ValueError("trades_count must be >= 0")
        if self.max_drawdown < 0:
            raise ValueError("max_drawdown must be >= 0")

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["trade_date"] = self.trade_date.isoformat()
        return d

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DailyLimitRecord:
        return cls(
            trade_date=date.fromisoformat(data["trade_date"]),
            trades_count=int(data.get("trades_count", 0)),
            daily_pnl=float(data.get("daily_pnl", 0.0)),
            max_drawdown=float(data.get("max_drawdown", 0.0)),
            breached=bool(data.get("breached", False)),
        )


class DailyLimitGuard:
    """Tracks trades and realized P&L for the current trading day."""

    def __init__(self, config: DailyLimitConfig | None = None) -> None:
        self.config = config or DailyLimitConfig()
        self._record: DailyLimitRecord | None = None
        self._lock = threading.Lock()

    def _current(self, now: datetime) -> DailyLimitRecord:
        today = trading_date(now)
        if self._record is None or self._record.trade_date != today:
            if self._record is not None:
                logger.info(
                    "Daily limits reset for %s (previous day %s: %d trades, P&L %.2f)",
                    today, self._record.trade_date, self._record.trades_count,
                    self._record.daily_pnl,
                )
            self._record = DailyLimitRecord(trade_date=today)
        return self._record

    def record(self, now: datetime | None = None) -> DailyLimitRecord:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            r = self._current(now)
            return DailyLimitRecord(**asdict(r))

    def check(self, now: datetime | None = None) -> CheckResult:
        now = now or datetime.now(timezone.utc)
        cfg = self.config
        with self._lock:
            r = self._current(now)
            if r.trades_count >= cfg.max_daily_trades:
                r.breached = True
                return CheckResult.block(
                    f"Daily trade limit reached ({cfg.max_daily_trades} trades)",
                    trades_count=r.trades_count,
                )
            if r.daily_pnl <= -cfg.max_daily_loss:
                r.breached = True
                return CheckResult.block(
                    f"Daily drawdown limit reached (-${cfg.max_daily_loss:,.0f})",
                    daily_pnl=r.daily_pnl,
                )
            return CheckResult.ok(trades_count=r.trades_count, daily_pnl=r.daily_pnl)

    def record_trade(self, now: datetime | None = None) -> None:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            self._current(now).trades_count += 1

    def record_pnl(self, pnl: float, now: datetime | None = None) -> None:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            r = self._current(now)
            r.daily_pnl += pnl
            r.max_drawdown = max(r.max_drawdown, -r.daily_pnl)
            if r.daily_pnl <= -self.config.max_daily_loss:
                r.breached = True

    def restore(self, record: DailyLimitRecord) -> None:
        with self._lock:
            self._record = record


@dataclass(frozen=True)
class PositionLimitConfig:
    account_size: float = 100_000.0
    max_open_positions: int = 5
    max_position_value: float = 20_000.0
    max_total_exposure: float = 50_000.0

    def __post_init__(self) -> None:
        if self.account_size <= 0:
            raise ValueError("account_size must be > 0")
        if self.max_open_positions < 1:
            raise ValueError("max_open_positions must be >= 1")
        if self.max_position_value <= 0 or self.max_total_exposure <= 0:
            raise ValueError("position value limits must be > 0")


class PositionLimitGuard:
    def __init__(self, config: PositionLimitConfig | None = None) -> None:
        self.config = config or PositionLimitConfig()

    def check(
        self,
        symbol: str,
        new_value: float,
        open_values: Mapping[str, float],
        open_count: int | None = None,
    ) -> CheckResult:
        """Check a new position of ``new_value`` against open exposure.

        ``open_values`` maps symbol to the value of its open positions.
        """
        cfg = self.config
        count = len(open_values) if open_count is None else open_count
        if count >= cfg.max_open_positions:
            return CheckResult.block(
                f"Maximum open positions reached ({count}/{cfg.max_open_positions})",
            )

        symbol_value = open_values.get(symbol, 0.0) + new_value
        if symbol_value > cfg.max_position_value:
            pct = symbol_value / cfg.account_size * 100
            return CheckResult.block(
                f"Position size limit exceeded for {symbol} ({pct:.1f}% of account)",
                symbol_value=symbol_value,
            )

        total = sum(open_values.values()) + new_value
        if total > cfg.max_total_exposure:
            return CheckResult.block(
                f"Total exposure limit exceeded (${total:,.0f} > ${cfg.max_total_exposure:,.0f})",
                total_exposure=total,
            )
        return CheckResult.ok(symbol_value=symbol_value, total_exposure=total)
