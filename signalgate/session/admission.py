"""Admission stage — stateful gates appended to an engine Decision.

Runs only on TRADE decisions, in order:

  Daily Limits -> Position Limits -> Portfolio Greeks -> Event Calendar

The last two apply to options decisions only. Each appended gate may flip
the decision to BLOCK; later gates are skipped once it does.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Mapping

from signalgate.decision.gates import Decision, GateResult
from signalgate.decision.timeframe import regime_config
from signalgate.options import events as event_rules
from signalgate.options.events import EventCalendar
from signalgate.options.portfolio_greeks import GreeksLimits, PortfolioGreeks, would_breach
from signalgate.options.types import CONTRACT_MULTIPLIER
from signalgate.session.limits import DailyLimitGuard, PositionLimitGuard
from signalgate.session.results import CheckResult
from signalgate.signals.signal import Signal

logger = logging.getLogger(__name__)

DAILY_LIMITS = "Daily Limits"
POSITION_LIMITS = "Position Limits"
PORTFOLIO_GREEKS = "Portfolio Greeks"


def _gate(name: str, check: CheckResult) -> GateResult:
    return GateResult(name, check.allowed, None if check.allowed else check.reason)


def position_value(decision: Decision, signal: Signal) -> float:
    """Capital committed by the decision's sized position."""
    if decision.plan is not None:
        return abs(decision.plan.net_premium) * decision.risk.quantity * CONTRACT_MULTIPLIER
    return decision.risk.quantity * signal.entry_price


class AdmissionGuard:
    def __init__(
        self,
        daily: DailyLimitGuard,
        positions: PositionLimitGuard,
        *,
        greeks_limits: GreeksLimits | None = None,
        calendar: EventCalendar | None = None,
    ) -> None:
        self.daily = daily
        self.positions = positions
        self.greeks_limits = greeks_limits or GreeksLimits()
        self.calendar = calendar

    def admit(
        self,
        decision: Decision,
        signal: Signal,
        *,
        open_values: Mapping[str, float] | None = None,
        open_count: int | None = None,
        portfolio: PortfolioGreeks | None = None,
        now: datetime | None = None,
    ) -> Decision:
        now = now or datetime.now(timezone.utc)
        if not decision.is_trade:
            return decision

        decision.append_gate(_gate(DAILY_LIMITS, self.daily.check(now)))
        if not decision.is_trade:
            return decision

        check = self.positions.check(
            signal.symbol, position_value(decision, signal), open_values or {}, open_count,
        )
        decision.append_gate(_gate(POSITION_LIMITS, check))
        if not decision.is_trade:
            return decision

        if decision.strategy is None:
            return decision

        sizing = decision.risk.sizing
        if sizing is not None:
            breaches = would_breach(portfolio or PortfolioGreeks(), sizing.greeks, self.greeks_limits)
            decision.append_gate(GateResult(
                PORTFOLIO_GREEKS,
                not breaches,
                "; ".join(breaches) or None,
                details={"portfolio": (portfolio or PortfolioGreeks()).plus(sizing.greeks).to_dict()},
            ))
            if not decision.is_trade:
                return decision

        if self.calendar is not None:
            cfg = regime_config(decision.regime)
            upcoming = self.calendar.upcoming(signal.symbol, now, cfg.max_holding_hours)
            adjustment = event_rules.adjust_for_events(
                signal.symbol, signal.direction, cfg, upcoming, now,
            )
            if adjustment.has_concerns:
                decision.append_gate(GateResult(
                    event_rules.GATE_NAME,
                    adjustment.approved,
                    adjustment.reason,
                    details={"adjustments": list(adjustment.adjustments)},
                ))
                if not adjustment.approved:
                    decision.block_reason = event_rules.BLOCK_REASON
        return decision
