"""Tests for the admission stage appended after the gate engine."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from signalgate.decision.gates import Outcome, run_decision_engine
from signalgate.decision.options_engine import run_options_decision_engine
from signalgate.decision.timeframe import Regime
from signalgate.options.events import EventCalendar, EventType, MarketEvent
from signalgate.options.portfolio_greeks import PortfolioGreeks
from signalgate.options.strategy import Strategy, StrategyPlan
from signalgate.options.types import Greeks, OptionLeg, OptionType
from signalgate.session.admission import (
    DAILY_LIMITS,
    PORTFOLIO_GREEKS,
    POSITION_LIMITS,
    AdmissionGuard,
    position_value,
)
from signalgate.session.limits import (
    DailyLimitConfig,
    DailyLimitGuard,
    PositionLimitConfig,
    PositionLimitGuard,
)

WIDE = PositionLimitConfig(max_position_value=1_000_000.0, max_total_exposure=5_000_000.0)


def admission(max_daily_trades: int = 5, positions: PositionLimitConfig = WIDE, **kw) -> AdmissionGuard:
    return AdmissionGuard(
        DailyLimitGuard(DailyLimitConfig(max_daily_trades=max_daily_trades)),
        PositionLimitGuard(positions),
        **kw,
    )


def long_call_plan(now: datetime) -> StrategyPlan:
    leg = OptionLeg(
        4500.0, now + timedelta(days=30), OptionType.CALL, 1, 5.0,
        Greeks(delta=0.5, gamma=0.01, theta=-0.1, vega=0.2),
    )
    return StrategyPlan.build(Strategy.LONG_CALL, [leg], Regime.SWING, 4500.0)


class TestDirectional:
    def test_passes_daily_and_position_limits(self, make_signal, market_open) -> None:
        signal = make_signal()
        decision = run_decision_engine(signal, now=market_open)
        admission().admit(decision, signal, now=market_open)
        assert decision.is_trade
        assert [g.gate for g in decision.gate_results][-2:] == [DAILY_LIMITS, POSITION_LIMITS]

    def test_blocked_decision_untouched(self, make_signal, market_open) -> None:
        signal = make_signal(confidence=2.0)
        decision = run_decision_engine(signal, now=market_open)
        admission().admit(decision, signal, now=market_open)
        assert len(decision.gate_results) == 1

    def test_daily_limit_blocks(self, make_signal, market_open) -> None:
        guard = admission(max_daily_trades=1)
        guard.daily.record_trade(market_open)
        signal = make_signal()
        decision = guard.admit(run_decision_engine(signal, now=market_open), signal, now=market_open)
        assert decision.outcome == Outcome.BLOCK
        assert decision.block_reason == "Daily trade limit reached (1 trades)"
        assert decision.gate(POSITION_LIMITS) is None

    def test_position_limit_blocks_default_config(self, make_signal, market_open) -> None:
        signal = make_signal()
        decision = admission(positions=PositionLimitConfig()).admit(
            run_decision_engine(signal, now=market_open), signal, now=market_open,
        )
        # 100 units at 4500 is 450% of the account
        assert decision.block_reason == "Position size limit exceeded for ES (450.0% of account)"

    def test_open_count_passed_through(self, make_signal, market_open) -> None:
        signal = make_signal()
        decision = admission().admit(
            run_decision_engine(signal, now=market_open), signal, open_count=5, now=market_open,
        )
        assert decision.block_reason == "Maximum open positions reached (5/5)"


class TestOptions:
    def test_greeks_breach_blocks(self, make_signal, market_open) -> None:
        signal = make_signal()
        decision = run_options_decision_engine(
            signal, plan=long_call_plan(market_open), now=market_open,
        )
        assert decision.risk.sizing.greeks.delta == pytest.approx(100.0)
        admission().admit(
            decision, signal, portfolio=PortfolioGreeks(delta=950.0), now=market_open,
        )
        assert decision.outcome == Outcome.BLOCK
        assert decision.block_reason == "Delta limit: 1050 exceeds ±1000"
        assert decision.gate(PORTFOLIO_GREEKS).details["portfolio"]["delta"] == pytest.approx(1050.0)

    def test_greeks_within_limits(self, make_signal, market_open) -> None:
        signal = make_signal()
        decision = run_options_decision_engine(
            signal, plan=long_call_plan(market_open), now=market_open,
        )
        admission().admit(decision, signal, now=market_open)
        assert decision.is_trade
        assert decision.gate(PORTFOLIO_GREEKS).passed

    def test_event_concerns_block(self, make_signal, market_open) -> None:
        calendar = EventCalendar([
            MarketEvent(EventType.FOMC, market_open + timedelta(hours=1)),
            MarketEvent(EventType.CPI, market_open + timedelta(hours=2)),
            MarketEvent(EventType.NFP, market_open + timedelta(hours=3)),
        ])
        signal = make_signal(active_signals=("FVG", "BOS", "ORB"))
        decision = run_options_decision_engine(signal, now=market_open, dte=3)
        assert decision.regime == Regime.INTRADAY
        admission(calendar=calendar).admit(decision, signal, now=market_open)
        assert decision.outcome == Outcome.BLOCK
        assert decision.block_reason == "Too many event concerns"

    def test_single_event_warns_only(self, make_signal, market_open) -> None:
        calendar = EventCalendar([MarketEvent(EventType.OPEX, market_open + timedelta(days=2))])
        signal = make_signal()
        decision = run_options_decision_engine(signal, now=market_open)
        admission(calendar=calendar).admit(decision, signal, now=market_open)
        assert decision.is_trade
        assert decision.gate_results[-1].gate == "Event Calendar"
        assert decision.gate_results[-1].passed

    def test_calendar_queried_over_holding_period(self, make_signal, market_open) -> None:
        calendar = MagicMock(wraps=EventCalendar([
            MarketEvent(EventType.OPEX, market_open + timedelta(days=12)),
        ]))
        signal = make_signal()
        decision = run_options_decision_engine(signal, now=market_open)
        assert decision.regime == Regime.SWING
        admission(calendar=calendar).admit(decision, signal, now=market_open)

        calendar.upcoming.assert_called_once_with("ES", market_open, 240)
        assert decision.is_trade
        assert decision.gate("Event Calendar") is None


def test_position_value(make_signal, market_open) -> None:
    signal = make_signal()
    directional = run_decision_engine(signal, now=market_open)
    assert position_value(directional, signal) == pytest.approx(450_000.0)
    options = run_options_decision_engine(signal, plan=long_call_plan(market_open), now=market_open)
    assert position_value(options, signal) == pytest.approx(1000.0)
