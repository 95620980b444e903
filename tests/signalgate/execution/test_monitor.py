"""Tests for paper trade records and position monitoring."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from signalgate.decision.timeframe import Regime
from signalgate.execution.monitor import (
    ExitReason,
    PaperTrade,
    PositionMonitor,
    TradeStatus,
    close_trade,
    split_trade,
)
from signalgate.options.exits import ExitAction, generate_exit_rules
from signalgate.options.strategy import Strategy
from signalgate.options.types import OptionLeg, OptionType
from signalgate.signals.signal import Direction

ALWAYS_OPEN = PositionMonitor(market_open=lambda now: True)
ALWAYS_CLOSED = PositionMonitor(market_open=lambda now: False)


@pytest.fixture
def long_trade(market_open: datetime) -> PaperTrade:
    return PaperTrade(
        symbol="ES",
        direction=Direction.LONG,
        entry_price=4500.0,
        quantity=10,
        stop_loss=4490.0,
        take_profit_1=4520.0,
        take_profit_2=4530.0,
        take_profit_3=4540.0,
        opened_at=market_open,
        trade_id="t1",
    )


@pytest.fixture
def short_trade(market_open: datetime) -> PaperTrade:
    return PaperTrade(
        symbol="ES",
        direction=Direction.SHORT,
        entry_price=4500.0,
        quantity=10,
        stop_loss=4510.0,
        take_profit_1=4480.0,
        opened_at=market_open,
        trade_id="t2",
    )


@pytest.fixture
def option_trade(market_open: datetime) -> PaperTrade:
    expiration = market_open + timedelta(days=30)
    leg = OptionLeg(4500.0, expiration, OptionType.CALL, 1, 5.0, implied_volatility=0.2)
    return PaperTrade(
        symbol="SPX",
        direction=Direction.LONG,
        entry_price=5.0,
        quantity=4,
        stop_loss=3.0,
        take_profit_1=7.5,
        opened_at=market_open,
        strategy=Strategy.LONG_CALL.value,
        multiplier=100,
        legs=(leg,),
        expiration=expiration,
        entry_iv=0.2,
        exit_rules=tuple(generate_exit_rules(Regime.SWING, Strategy.LONG_CALL)),
        trade_id="o1",
    )


# ---------------------------------------------------------------------------
# Trade records
# ---------------------------------------------------------------------------


class TestPaperTrade:
    def test_pnl_long_and_short(self, long_trade: PaperTrade, short_trade: PaperTrade) -> None:
        assert long_trade.pnl_at(4510.0) == pytest.approx(100.0)
        assert short_trade.pnl_at(4510.0) == pytest.approx(-100.0)
        assert short_trade.pnl_pct(4455.0) == pytest.approx(0.01)

    def test_option_values_use_multiplier(self, option_trade: PaperTrade) -> None:
        assert option_trade.is_option
        assert option_trade.value == pytest.approx(2000.0)
        assert option_trade.initial_risk == pytest.approx(800.0)
        assert option_trade.pnl_at(6.0) == pytest.approx(400.0)

    def test_close_trade(self, long_trade: PaperTrade, market_open: datetime) -> None:
        closed = close_trade(
            long_trade, 4520.0, ExitReason.TAKE_PROFIT_1, market_open + timedelta(minutes=90),
        )
        assert closed.status == TradeStatus.CLOSED
        assert not closed.is_open
        assert closed.pnl == pytest.approx(200.0)
        assert closed.r_multiple == pytest.approx(2.0)
        assert closed.duration_minutes == 90
        assert long_trade.is_open

    def test_cannot_close_twice(self, long_trade: PaperTrade, market_open: datetime) -> None:
        closed = close_trade(long_trade, 4520.0, ExitReason.MANUAL, market_open)
        with pytest.raises(ValueError, match="already closed"):
            close_trade(closed, 4520.0, ExitReason.MANUAL, market_open)

    def test_split(self, long_trade: PaperTrade) -> None:
        part, rest = split_trade(long_trade, 3)
        assert (part.quantity, rest.quantity) == (3, 7)
        assert rest.trade_id == "t1"
        assert part.trade_id == "t1-0"
        assert part.position_key == rest.position_key == "t1"

    @pytest.mark.parametrize("qty", [0, 10, 11])
    def test_split_bounds(self, long_trade: PaperTrade, qty: int) -> None:
        with pytest.raises(ValueError, match="cannot split"):
            split_trade(long_trade, qty)

    def test_to_dict(self, option_trade: PaperTrade) -> None:
        data = option_trade.to_dict()
        assert data["status"] == "OPEN"
        assert data["multiplier"] == 100
        assert len(data["legs"]) == 1
        assert data["exit_rules"][0] == {"type": "PROFIT_TARGET", "trigger": 0.5, "action": "CLOSE_HALF"}


# ---------------------------------------------------------------------------
# Level checks
# ---------------------------------------------------------------------------


class TestLevels:
    def test_hold_between_levels(self, long_trade, market_open) -> None:
        assert ALWAYS_OPEN.check(long_trade, 4505.0, market_open) is None

    def test_stop_loss(self, long_trade, market_open) -> None:
        hit = ALWAYS_OPEN.check(long_trade, 4485.0, market_open)
        assert hit.reason == ExitReason.STOP_LOSS
        assert hit.price == 4490.0

    def test_highest_target_wins(self, long_trade, market_open) -> None:
        assert ALWAYS_OPEN.check(long_trade, 4545.0, market_open).reason == ExitReason.TAKE_PROFIT_3
        assert ALWAYS_OPEN.check(long_trade, 4532.0, market_open).reason == ExitReason.TAKE_PROFIT_2
        assert ALWAYS_OPEN.check(long_trade, 4520.0, market_open).reason == ExitReason.TAKE_PROFIT_1

    def test_short_levels(self, short_trade, market_open) -> None:
        assert ALWAYS_OPEN.check(short_trade, 4511.0, market_open).reason == ExitReason.STOP_LOSS
        assert ALWAYS_OPEN.check(short_trade, 4479.0, market_open).reason == ExitReason.TAKE_PROFIT_1

    def test_end_of_day(self, long_trade, market_open) -> None:
        hit = ALWAYS_CLOSED.check(long_trade, 4505.0, market_open)
        assert hit.reason == ExitReason.END_OF_DAY
        assert hit.price == 4505.0

    def test_default_uses_market_hours(self, long_trade, after_close) -> None:
        hit = PositionMonitor().check(long_trade, 4505.0, after_close)
        assert hit.reason == ExitReason.END_OF_DAY


# ---------------------------------------------------------------------------
# Exit rules
# ---------------------------------------------------------------------------


class TestExitRules:
    def test_close_half_splits_once(self, option_trade, market_open) -> None:
        report = ALWAYS_CLOSED.monitor_all([option_trade], {"SPX": 7.6}, market_open)
        assert len(report.closed) == 1
        part = report.closed[0]
        assert part.quantity == 2
        assert part.trade_id == "o1-1"
        assert part.position_key == "o1"
        assert part.exit_reason == ExitReason.EXIT_RULE
        assert part.exit_rule.action == ExitAction.CLOSE_HALF
        assert part.pnl == pytest.approx(520.0)

        (rest,) = report.updated
        assert rest.trade_id == "o1"
        assert rest.quantity == 2
        assert rest.fired_rules == (0,)
        assert ALWAYS_CLOSED.check(rest, 7.6, market_open) is None

    def test_close_half_of_one_closes_all(self, option_trade, market_open) -> None:
        single = replace(option_trade, quantity=1)
        report = ALWAYS_OPEN.monitor_all([single], {"SPX": 7.6}, market_open)
        assert report.closed[0].quantity == 1
        assert report.updated == []

    def test_stop_rule_closes_full(self, option_trade, market_open) -> None:
        report = ALWAYS_OPEN.monitor_all([option_trade], {"SPX": 2.9}, market_open)
        assert report.closed[0].quantity == 4
        assert report.realized_pnl == pytest.approx(-840.0)

    def test_roll_raises_alert_once(self, option_trade, market_open) -> None:
        later = market_open + timedelta(days=20)
        report = ALWAYS_OPEN.monitor_all([option_trade], {"SPX": 5.0}, later)
        assert report.closed == []
        (alert,) = report.alerts
        assert alert.rule.action == ExitAction.ROLL
        (updated,) = report.updated
        assert updated.fired_rules == (3,)
        assert ALWAYS_OPEN.check(updated, 5.0, later) is None

    def test_options_not_closed_at_end_of_day(self, option_trade, after_close) -> None:
        assert ALWAYS_CLOSED.check(option_trade, 5.1, after_close) is None

    def test_iv_passed_per_trade(self, market_open) -> None:
        # No IV_CRUSH rule on a long call; the straddle carries one
        expiration = market_open + timedelta(days=3)
        legs = (
            OptionLeg(4500.0, expiration, OptionType.CALL, 1, 5.0),
            OptionLeg(4500.0, expiration, OptionType.PUT, 1, 5.0),
        )
        straddle = PaperTrade(
            symbol="SPX", direction=Direction.LONG, entry_price=10.0, quantity=2, stop_loss=5.0,
            take_profit_1=15.0, opened_at=market_open, multiplier=100, legs=legs,
            expiration=expiration, entry_iv=0.25, trade_id="s1",
            exit_rules=tuple(generate_exit_rules(Regime.INTRADAY, Strategy.LONG_STRADDLE)),
        )
        report = ALWAYS_OPEN.monitor_all([straddle], {"SPX": 10.0}, market_open, {"s1": 0.2})
        assert report.closed[0].exit_rule.trigger_type.value == "IV_CRUSH"


class TestMonitorAll:
    def test_callable_prices(self, long_trade, short_trade, market_open) -> None:
        report = ALWAYS_OPEN.monitor_all(
            [long_trade, short_trade], lambda trade: 4520.0, market_open,
        )
        assert report.checked == 2
        assert [t.exit_reason for t in report.closed] == [
            ExitReason.TAKE_PROFIT_1, ExitReason.STOP_LOSS,
        ]

    def test_failures_collected(self, long_trade, market_open) -> None:
        other = replace(long_trade, symbol="NQ", trade_id="t3")
        report = ALWAYS_OPEN.monitor_all([other, long_trade], {"ES": 4485.0}, market_open)
        assert len(report.failures) == 1
        assert report.failures[0].trade_id == "t3"
        assert len(report.closed) == 1

    def test_closed_trades_skipped(self, long_trade, market_open) -> None:
        closed = close_trade(long_trade, 4500.0, ExitReason.MANUAL, market_open)
        report = ALWAYS_OPEN.monitor_all([closed], {"ES": 4400.0}, market_open)
        assert report.checked == 0
