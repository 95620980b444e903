"""Auto-trade session configuration."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Any, Mapping
from zoneinfo import ZoneInfo

from signalgate.decision.gates import EngineConfig
from signalgate.execution.simulator import ExecutionConfig
from signalgate.options.portfolio_greeks import GreeksLimits
from signalgate.options.sizing import SizingConfig
from signalgate.session.cooldowns import CooldownConfig
from signalgate.session.limits import DailyLimitConfig, PositionLimitConfig
from signalgate.session.volatility import VIX_THRESHOLD


class TradingMode(enum.Enum):
    PAPER = "PAPER"
    SHADOW = "SHADOW"
    LIVE = "LIVE"


@dataclass(frozen=True)
class TradingSchedule:
    """Days are ISO weekdays (1=Monday). ``end`` is exclusive."""

    days_of_week: tuple[int, ...] = (1, 2, 3, 4, 5)
    start: str = "09:30"
    end: str = "16:00"
    timezone: str = "America/New_York"

    def __post_init__(self) -> None:
        if not self.days_of_week or any(not 1 <= d <= 7 for d in self.days_of_week):
            raise ValueError("days_of_week must be ISO weekdays in [1, 7]")
        if time.fromisoformat(self.start) >= time.fromisoformat(self.end):
            raise ValueError("schedule start must be before end")
        ZoneInfo(self.timezone)

    def contains(self, now: datetime) -> bool:
        local = now.astimezone(ZoneInfo(self.timezone))
        if local.isoweekday() not in self.days_of_week:
            return False
        return time.fromisoformat(self.start) <= local.time() < time.fromisoformat(self.end)


DEFAULT_TIMEFRAME_WEIGHTS: dict[str, float] = {
    "INTRADAY": 0.4,
    "SWING": 0.3,
    "MONTHLY": 0.2,
    "LEAPS": 0.1,
}


@dataclass(frozen=True)
class AutoTradeConfig:
    enabled: bool = False
    mode: TradingMode = TradingMode.PAPER
    schedule: TradingSchedule = field(default_factory=TradingSchedule)
    account_size: float = 100_000.0
    risk_percent: float = 0.01
    max_daily_trades: int = 5
    max_daily_loss: float = 2500.0
    max_position_size: float = 20_000.0
    max_total_exposure: float = 50_000.0
    max_open_positions: int = 5
    vix_threshold: float = VIX_THRESHOLD
    timeframe_weights: Mapping[str, float] = field(
        default_factory=lambda: dict(DEFAULT_TIMEFRAME_WEIGHTS)
    )
    algorithm_version: str = "v1.0"
    queue_size: int = 100
    options_symbols: tuple[str, ...] = ("SPX", "SPXW")
    data_source: str = "static"
    provider_retries: int = 3
    provider_retry_delay_s: float = 0.5
    cooldowns: CooldownConfig = field(default_factory=CooldownConfig)
    greeks_limits: GreeksLimits = field(default_factory=GreeksLimits)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)

    def __post_init__(self) -> None:
        if self.queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        if self.vix_threshold <= 0:
            raise ValueError("vix_threshold must be > 0")
        if self.provider_retries < 1:
            raise ValueError("provider_retries must be >= 1")
        if self.provider_retry_delay_s < 0:
            raise ValueError("provider_retry_delay_s must be >= 0")
        if any(w < 0 for w in self.timeframe_weights.values()):
            raise ValueError("timeframe_weights must be >= 0")

    def engine_config(self) -> EngineConfig:
        return EngineConfig(account_size=self.account_size, risk_percent=self.risk_percent)

    def sizing_config(self) -> SizingConfig:
        return SizingConfig(account_size=self.account_size, risk_percent=self.risk_percent)

    def daily_limits(self) -> DailyLimitConfig:
        return DailyLimitConfig(
            max_daily_trades=self.max_daily_trades, max_daily_loss=self.max_daily_loss,
        )

    def position_limits(self) -> PositionLimitConfig:
        return PositionLimitConfig(
            account_size=self.account_size,
            max_open_positions=self.max_open_positions,
            max_position_value=self.max_position_size,
            max_total_exposure=self.max_total_exposure,
        )

    def is_options_symbol(self, symbol: str) -> bool:
        return symbol.upper() in self.options_symbols

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "mode": self.mode.value,
            "schedule": {
                "days_of_week": list(self.schedule.days_of_week),
                "start": self.schedule.start,
                "end": self.schedule.end,
                "timezone": self.schedule.timezone,
            },
            "account_size": self.account_size,
            "risk_percent": self.risk_percent,
            "max_daily_trades": self.max_daily_trades,
            "max_daily_loss": self.max_daily_loss,
            "max_position_size": self.max_position_size,
            "max_total_exposure": self.max_total_exposure,
            "max_open_positions": self.max_open_positions,
            "vix_threshold": self.vix_threshold,
            "timeframe_weights": dict(self.timeframe_weights),
            "algorithm_version": self.algorithm_version,
            "queue_size": self.queue_size,
            "options_symbols": list(self.options_symbols),
            "data_source": self.data_source,
            "provider_retries": self.provider_retries,
            "provider_retry_delay_s": self.provider_retry_delay_s,
        }
