"""Greeks-aware position sizing.

The risk budget (account x risk percent x regime multiplier, halved for
REVERSAL) divided by the strategy's max loss per unit gives the base size.
The final size is the minimum of that and four independent ceilings:

    delta   5% of account in notional-delta terms
    theta   0.5% of account of daily decay
    vega    2% of account per IV point
    hard    50 units

A zero Greek imposes no ceiling. Minimum size is always 1.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from signalgate.decision.timeframe import RegimeConfig
from signalgate.options.strategy import StrategyPlan, TradeMode
from signalgate.options.types import CONTRACT_MULTIPLIER, Greeks

logger = logging.getLogger(__name__)

DELTA = "delta"
THETA = "theta"
VEGA = "vega"
HARD_CAP = "hard_cap"
RISK_BUDGET = "risk_budget"


@dataclass(frozen=True)
class SizingConfig:
    account_size: float = 100_000.0
    risk_percent: float = 0.01
    max_delta_pct: float = 0.05
    max_theta_pct: float = 0.005
    max_vega_pct: float = 0.02
    hard_cap: int = 50

    def __post_init__(self) -> None:
        if self.account_size <= 0:
            raise ValueError("account_size must be > 0")
        if not 0 < self.risk_percent <= 1:
            raise ValueError("risk_percent must be in (0, 1]")
        for name in ("max_delta_pct", "max_theta_pct", "max_vega_pct"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.hard_cap < 1:
            raise ValueError("hard_cap must be >= 1")

    @property
    def base_risk(self) -> float:
        return self.account_size * self.risk_percent


@dataclass(frozen=True)
class PositionSizing:
    """Derived sizing for a plan. Recomputed on demand, never persisted."""

    contracts: int
    base_contracts: int | None
    ceilings: dict[str, int] = field(default_factory=dict)
    binding_constraint: str = HARD_CAP
    adjusted_risk: float = 0.0
    greeks: Greeks = field(default_factory=Greeks)
    max_loss: float = 0.0
    notional_exposure: float = 0.0

    def to_dict(self) -> dict:
        return {
            "contracts": self.contracts,
            "base_contracts": self.base_contracts,
            "ceilings": dict(self.ceilings),
            "binding_constraint": self.binding_constraint,
            "adjusted_risk": self.adjusted_risk,
            "total_delta": self.greeks.delta,
            "total_gamma": self.greeks.gamma,
            "total_theta": self.greeks.theta,
            "total_vega": self.greeks.vega,
            "max_loss": self.max_loss,
            "notional_exposure": self.notional_exposure,
        }


def adjusted_risk(
    config: SizingConfig, regime: RegimeConfig, trade_mode: TradeMode,
) -> float:
    mode_mult = 0.5 if trade_mode == TradeMode.REVERSAL else 1.0
    return config.base_risk * regime.risk_multiplier * mode_mult


def _ceiling(budget: float, per_unit: float) -> int | None:
    if per_unit == 0:
        return None
    return math.floor(budget / abs(per_unit))


def greeks_ceilings(per_unit: Greeks, config: SizingConfig) -> dict[str, int]:
    """Per-constraint maximum unit counts; unconstrained Greeks are omitted."""
    acct = config.account_size
    ceilings: dict[str, int] = {}
    delta = _ceiling(acct * config.max_delta_pct, per_unit.delta * CONTRACT_MULTIPLIER)
    if delta is not None:
        ceilings[DELTA] = delta
    theta = _ceiling(acct * config.max_theta_pct, per_unit.theta)
    if theta is not None:
        ceilings[THETA] = theta
    vega = _ceiling(acct * config.max_vega_pct, per_unit.vega)
    if vega is not None:
        ceilings[VEGA] = vega
    ceilings[HARD_CAP] = config.hard_cap
    return ceilings


def size_position(
    plan: StrategyPlan,
    regime: RegimeConfig,
    trade_mode: TradeMode,
    config: SizingConfig | None = None,
) -> PositionSizing:
    """Size an options plan against the risk budget and Greeks ceilings."""
    cfg = config or SizingConfig()
    risk = adjusted_risk(cfg, regime, trade_mode)
    per_unit = plan.greeks

    base = math.floor(risk / plan.max_loss) if plan.max_loss > 0 else None
    ceilings = greeks_ceilings(per_unit, cfg)

    candidates = dict(ceilings)
    if base is not None:
        candidates[RISK_BUDGET] = base
    binding = min(candidates, key=lambda k: candidates[k])
    contracts = max(1, candidates[binding])

    underlying = plan.underlying_price or plan.primary.strike
    sizing = PositionSizing(
        contracts=contracts,
        base_contracts=base,
        ceilings=ceilings,
        binding_constraint=binding,
        adjusted_risk=risk,
        greeks=Greeks(
            delta=per_unit.delta * contracts * CONTRACT_MULTIPLIER,
            gamma=per_unit.gamma * contracts * CONTRACT_MULTIPLIER,
            theta=per_unit.theta * contracts,
            vega=per_unit.vega * contracts,
        ),
        max_loss=plan.max_loss * contracts,
        notional_exposure=underlying * abs(per_unit.delta) * contracts * CONTRACT_MULTIPLIER,
    )
    logger.debug(
        "Sized %s: %d contracts (binding=%s, base=%s)",
        plan.strategy.value, contracts, binding, base,
    )
    return sizing


def size_shares(entry_price: float, stop_loss: float, risk: float) -> int:
    """Share quantity risking ``risk`` dollars between entry and stop."""
    distance = abs(entry_price - stop_loss)
    if distance == 0:
        return 0
    return math.floor(risk / distance)
