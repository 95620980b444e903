"""Options structural validation gate.

Fails closed: every sub-check must pass. The reported reason is the first
failing sub-check's description.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from signalgate.decision.timeframe import Regime, RegimeConfig
from signalgate.options.types import Greeks, OptionSnapshot, days_to_expiration
from signalgate.signals.signal import Direction, Signal

GATE_NAME = "Options Validation"
ALL_PASSED = "All options checks passed"

DEFAULT_IV = 20.0
DEFAULT_IV_RANK = 50.0
DEFAULT_GREEKS = Greeks(delta=0.5, gamma=0.01, theta=-0.05, vega=0.1)
DEFAULT_SPREAD = 0.05
DEFAULT_OPEN_INTEREST = 1000
DEFAULT_VOLUME = 500


def min_liquidity(regime: Regime) -> float:
    return 1000.0 if regime == Regime.INTRADAY else 500.0


def max_spread(regime: Regime) -> float:
    return 0.10 if regime == Regime.INTRADAY else 0.15


@dataclass(frozen=True)
class OptionsCheck:
    name: str
    passed: bool
    reason: str


@dataclass(frozen=True)
class OptionsValidationResult:
    passed: bool
    reason: str
    checks: tuple[OptionsCheck, ...] = field(default_factory=tuple)

    def check(self, name: str) -> OptionsCheck | None:
        for c in self.checks:
            if c.name == name:
                return c
        return None


@dataclass(frozen=True)
class _Resolved:
    expiration: datetime
    current_price: float
    iv_rank: float
    greeks: Greeks
    spread: float
    open_interest: int
    volume: int


def _resolve(
    snapshot: OptionSnapshot, signal: Signal, config: RegimeConfig, now: datetime,
) -> _Resolved:
    return _Resolved(
        expiration=snapshot.expiration or now + timedelta(days=config.dte_range[0]),
        current_price=snapshot.current_price or signal.entry_price,
        iv_rank=snapshot.iv_rank if snapshot.iv_rank is not None else DEFAULT_IV_RANK,
        greeks=snapshot.greeks or DEFAULT_GREEKS,
        spread=snapshot.bid_ask_spread if snapshot.bid_ask_spread is not None else DEFAULT_SPREAD,
        open_interest=snapshot.open_interest if snapshot.open_interest is not None else DEFAULT_OPEN_INTEREST,
        volume=snapshot.volume if snapshot.volume is not None else DEFAULT_VOLUME,
    )


def validate_options(
    snapshot: OptionSnapshot,
    signal: Signal,
    config: RegimeConfig,
    now: datetime,
) -> OptionsValidationResult:
    """Run liquidity, IV regime, theta, delta and DTE checks."""
    s = _resolve(snapshot, signal, config, now)
    checks: list[OptionsCheck] = []

    liquidity = s.volume * 0.4 + s.open_interest * 0.6
    liq_ok = liquidity >= min_liquidity(config.regime) and s.spread <= max_spread(config.regime)
    checks.append(OptionsCheck(
        "Liquidity",
        liq_ok,
        f"OI: {s.open_interest}, Vol: {s.volume}, Spread: {s.spread * 100:.1f}%",
    ))

    lo_iv, hi_iv = config.iv_rank_range
    iv_ok = lo_iv <= s.iv_rank <= hi_iv
    checks.append(OptionsCheck(
        "IV Regime",
        iv_ok,
        f"IV Rank {s.iv_rank:g} {'within' if iv_ok else 'outside'} [{lo_iv:g}-{hi_iv:g}]",
    ))

    if signal.direction == Direction.LONG:
        burn = abs(s.greeks.theta) / s.current_price if s.current_price > 0 else float("inf")
        checks.append(OptionsCheck(
            "Theta Tolerance",
            burn <= config.theta_tolerance,
            f"Daily decay: {burn * 100:.2f}% vs max {config.theta_tolerance * 100:g}%",
        ))

    abs_delta = abs(s.greeks.delta)
    lo_d, hi_d = config.delta_range
    delta_ok = lo_d <= abs_delta <= hi_d
    checks.append(OptionsCheck(
        "Delta Range",
        delta_ok,
        f"Delta {abs_delta:.2f} {'within' if delta_ok else 'outside'} [{lo_d:g}-{hi_d:g}]",
    ))

    dte = days_to_expiration(s.expiration, now)
    lo_dte, hi_dte = config.dte_range
    dte_ok = lo_dte <= dte <= hi_dte
    checks.append(OptionsCheck(
        "DTE Range",
        dte_ok,
        f"{dte} DTE {'within' if dte_ok else 'outside'} [{lo_dte}-{hi_dte}]",
    ))

    failed = next((c for c in checks if not c.passed), None)
    return OptionsValidationResult(
        passed=failed is None,
        reason=failed.reason if failed else ALL_PASSED,
        checks=tuple(checks),
    )
