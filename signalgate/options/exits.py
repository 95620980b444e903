"""Exit rules — declarative monitoring rules attached to an options position.

Rules are evaluated in declaration order on every monitoring tick; the
first rule whose trigger matches wins.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Sequence

from signalgate.decision.timeframe import Regime
from signalgate.options.strategy import Strategy, is_credit_strategy, is_volatility_strategy


class ExitTrigger(enum.Enum):
    PROFIT_TARGET = "PROFIT_TARGET"
    STOP_LOSS = "STOP_LOSS"
    TIME_STOP = "TIME_STOP"
    THETA_STOP = "THETA_STOP"
    IV_CRUSH = "IV_CRUSH"
    DELTA_HEDGE = "DELTA_HEDGE"


class ExitAction(enum.Enum):
    CLOSE_FULL = "CLOSE_FULL"
    CLOSE_HALF = "CLOSE_HALF"
    ROLL = "ROLL"
    HEDGE = "HEDGE"


@dataclass(frozen=True)
class ExitRule:
    """``trigger`` units: P&L fraction, hours held, DTE or IV change fraction."""

    trigger_type: ExitTrigger
    trigger: float
    action: ExitAction

    def to_dict(self) -> dict:
        return {
            "type": self.trigger_type.value,
            "trigger": self.trigger,
            "action": self.action.value,
        }


_REGIME_RULES: dict[Regime, tuple[ExitRule, ...]] = {
    Regime.INTRADAY: (
        ExitRule(ExitTrigger.STOP_LOSS, -0.30, ExitAction.CLOSE_FULL),
        ExitRule(ExitTrigger.TIME_STOP, 4, ExitAction.CLOSE_FULL),
    ),
    Regime.SWING: (
        ExitRule(ExitTrigger.STOP_LOSS, -0.40, ExitAction.CLOSE_FULL),
        ExitRule(ExitTrigger.THETA_STOP, 14, ExitAction.ROLL),
    ),
    Regime.MONTHLY: (
        ExitRule(ExitTrigger.STOP_LOSS, -0.50, ExitAction.CLOSE_FULL),
        ExitRule(ExitTrigger.THETA_STOP, 21, ExitAction.ROLL),
        ExitRule(ExitTrigger.IV_CRUSH, -0.20, ExitAction.CLOSE_HALF),
    ),
    Regime.LEAPS: (
        ExitRule(ExitTrigger.STOP_LOSS, -0.35, ExitAction.CLOSE_HALF),
        ExitRule(ExitTrigger.THETA_STOP, 90, ExitAction.ROLL),
    ),
}


def generate_exit_rules(regime: Regime, strategy: Strategy) -> list[ExitRule]:
    rules: list[ExitRule] = []
    # Credit structures take profit in full before the universal half-trim.
    if is_credit_strategy(strategy):
        rules.append(ExitRule(ExitTrigger.PROFIT_TARGET, 0.50, ExitAction.CLOSE_FULL))
    rules.append(ExitRule(ExitTrigger.PROFIT_TARGET, 0.50, ExitAction.CLOSE_HALF))
    rules.append(ExitRule(ExitTrigger.PROFIT_TARGET, 1.00, ExitAction.CLOSE_FULL))
    rules.extend(_REGIME_RULES[regime])
    if is_volatility_strategy(strategy):
        rules.append(ExitRule(ExitTrigger.IV_CRUSH, -0.15, ExitAction.CLOSE_FULL))
    return rules


def check_exit_rules(
    rules: Sequence[ExitRule],
    pnl_pct: float,
    dte: int,
    iv: float,
    entry_iv: float,
    hours_held: float,
) -> ExitRule | None:
    """Return the first matching rule, or ``None``.

    DELTA_HEDGE rules never match here; hedging is driven by the caller.
    """
    for rule in rules:
        kind = rule.trigger_type
        if kind == ExitTrigger.PROFIT_TARGET and pnl_pct >= rule.trigger:
            return rule
        if kind == ExitTrigger.STOP_LOSS and pnl_pct <= rule.trigger:
            return rule
        if kind == ExitTrigger.TIME_STOP and hours_held >= rule.trigger:
            return rule
        if kind == ExitTrigger.THETA_STOP and dte <= rule.trigger:
            return rule
        if kind == ExitTrigger.IV_CRUSH and entry_iv > 0:
            if (iv - entry_iv) / entry_iv <= rule.trigger:
                return rule
    return None
