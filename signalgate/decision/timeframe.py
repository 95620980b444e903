"""Timeframe classification — maps a signal to a holding-period regime.

Each regime carries its own thresholds: target DTE range, theta-decay
tolerance, minimum risk/reward, risk multiplier, expected holding period,
acceptable IV-rank band and minimum confluence score.

Unknown resolutions fall back to SWING.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from signalgate.signals.signal import Signal


class Regime(enum.Enum):
    INTRADAY = "INTRADAY"
    SWING = "SWING"
    MONTHLY = "MONTHLY"
    LEAPS = "LEAPS"


@dataclass(frozen=True)
class RegimeConfig:
    """Regime-specific thresholds."""

    regime: Regime
    dte_range: tuple[int, int]
    theta_tolerance: float  # max daily theta burn as fraction of premium
    min_rr: float
    risk_multiplier: float
    holding_hours: tuple[float, float]
    iv_rank_range: tuple[float, float]
    score_threshold: float
    delta_range: tuple[float, float] = (0.30, 0.60)

    def __post_init__(self) -> None:
        lo, hi = self.dte_range
        if lo < 0 or hi < lo:
            raise ValueError(f"invalid dte_range {self.dte_range}")
        if self.min_rr <= 0:
            raise ValueError("min_rr must be > 0")
        if self.risk_multiplier <= 0:
            raise ValueError("risk_multiplier must be > 0")
        if self.holding_hours[1] < self.holding_hours[0]:
            raise ValueError(f"invalid holding_hours {self.holding_hours}")
        if not 0 <= self.iv_rank_range[0] <= self.iv_rank_range[1] <= 100:
            raise ValueError(f"invalid iv_rank_range {self.iv_rank_range}")
        if not 0 <= self.delta_range[0] <= self.delta_range[1] <= 1:
            raise ValueError(f"invalid delta_range {self.delta_range}")

    @property
    def max_holding_hours(self) -> float:
        return self.holding_hours[1]

    @property
    def target_delta(self) -> float:
        return (self.delta_range[0] + self.delta_range[1]) / 2.0

    @property
    def target_dte(self) -> int:
        return (self.dte_range[0] + self.dte_range[1]) // 2


REGIME_CONFIGS: dict[Regime, RegimeConfig] = {
    Regime.INTRADAY: RegimeConfig(
        regime=Regime.INTRADAY,
        dte_range=(0, 7),
        theta_tolerance=0.05,
        min_rr=1.5,
        risk_multiplier=0.5,
        holding_hours=(0.25, 6),
        iv_rank_range=(20, 100),
        score_threshold=6.0,
        delta_range=(0.40, 0.70),
    ),
    Regime.SWING: RegimeConfig(
        regime=Regime.SWING,
        dte_range=(14, 45),
        theta_tolerance=0.02,
        min_rr=2.0,
        risk_multiplier=1.0,
        holding_hours=(24, 240),
        iv_rank_range=(15, 70),
        score_threshold=6.0,
        delta_range=(0.30, 0.60),
    ),
    Regime.MONTHLY: RegimeConfig(
        regime=Regime.MONTHLY,
        dte_range=(30, 60),
        theta_tolerance=0.015,
        min_rr=2.5,
        risk_multiplier=1.0,
        holding_hours=(72, 504),
        iv_rank_range=(10, 60),
        score_threshold=7.0,
        delta_range=(0.25, 0.55),
    ),
    Regime.LEAPS: RegimeConfig(
        regime=Regime.LEAPS,
        dte_range=(180, 730),
        theta_tolerance=0.005,
        min_rr=3.0,
        risk_multiplier=1.5,
        holding_hours=(720, 4320),
        iv_rank_range=(0, 40),
        score_threshold=8.0,
        delta_range=(0.60, 0.85),
    ),
}

DEFAULT_RESOLUTION = "1D"
_INTRADAY_RESOLUTIONS = frozenset({"1H", "5M", "15M"})
_SWING_RESOLUTIONS = frozenset({"1D", "4H"})
_MONTHLY_RESOLUTIONS = frozenset({"1W"})


def classify_dte(dte: int) -> Regime:
    if dte <= 7:
        return Regime.INTRADAY
    if dte <= 45:
        return Regime.SWING
    if dte <= 60:
        return Regime.MONTHLY
    return Regime.LEAPS


def classify_resolution(resolution: str | None) -> Regime:
    res = resolution or DEFAULT_RESOLUTION
    if "m" in res or res in _INTRADAY_RESOLUTIONS:
        return Regime.INTRADAY
    if res in _SWING_RESOLUTIONS:
        return Regime.SWING
    if res in _MONTHLY_RESOLUTIONS:
        return Regime.MONTHLY
    return Regime.SWING


def classify_timeframe(signal: Signal, dte: int | None = None) -> Regime:
    """Classify a signal; an explicit DTE overrides the resolution."""
    if dte is not None:
        return classify_dte(dte)
    return classify_resolution(signal.resolution)


def regime_config(regime: Regime) -> RegimeConfig:
    return REGIME_CONFIGS[regime]
