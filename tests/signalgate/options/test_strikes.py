"""Tests for strike selection from chain snapshots."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from signalgate.decision.timeframe import Regime
from signalgate.marketdata.provider import StaticMarketData
from signalgate.options.strategy import Strategy
from signalgate.options.strikes import (
    NO_SPREAD,
    NO_STRIKES,
    NOT_ENOUGH_STRIKES,
    StrikeCriteria,
    StrikeSelectionError,
    StrikeSelector,
    liquidity_score,
    select_from_chain,
)
from signalgate.options.types import OptionQuote, OptionType
from signalgate.signals.signal import Direction


@pytest.fixture
def chain(make_chain, market_open: datetime):
    return make_chain(market_open + timedelta(days=29, hours=5))


def criteria(strategy: Strategy, direction: Direction | None = Direction.LONG, **kw) -> StrikeCriteria:
    return StrikeCriteria(
        symbol="SPX",
        strategy=strategy,
        regime=kw.pop("regime", Regime.SWING),
        direction=direction,
        underlying_price=4500.0,
        **kw,
    )


# ---------------------------------------------------------------------------
# Single legs
# ---------------------------------------------------------------------------


class TestSingleLeg:
    def test_long_call_nearest_target_delta(self, chain, market_open) -> None:
        selection = select_from_chain(chain, criteria(Strategy.LONG_CALL), market_open)
        (leg,) = selection.legs
        assert leg.strike == 4525.0
        assert leg.option_type == OptionType.CALL
        assert leg.quantity == 1
        assert leg.entry_price == pytest.approx(38.0)
        assert selection.dte == 29
        assert selection.reason.startswith("Delta: 0.44")

    def test_long_put(self, chain, market_open) -> None:
        selection = select_from_chain(
            chain, criteria(Strategy.LONG_PUT, Direction.SHORT), market_open,
        )
        assert selection.legs[0].strike == 4475.0
        assert selection.legs[0].option_type == OptionType.PUT

    def test_explicit_target_delta(self, chain, market_open) -> None:
        selection = select_from_chain(
            chain, criteria(Strategy.LONG_CALL, target_delta=0.55), market_open,
        )
        assert selection.legs[0].strike == 4475.0

    def test_illiquid_chain_fails(self, make_chain, market_open) -> None:
        thin = make_chain(market_open + timedelta(days=29), open_interest=10)
        with pytest.raises(StrikeSelectionError, match=NO_STRIKES):
            select_from_chain(thin, criteria(Strategy.LONG_CALL), market_open)

    def test_to_plan(self, chain, market_open) -> None:
        plan = select_from_chain(chain, criteria(Strategy.LONG_CALL), market_open).to_plan()
        assert plan.strategy == Strategy.LONG_CALL
        assert plan.max_loss == pytest.approx(3800.0)
        assert plan.underlying_price == 4500.0


# ---------------------------------------------------------------------------
# Vertical spreads
# ---------------------------------------------------------------------------


class TestVerticals:
    def test_call_debit_spread(self, chain, market_open) -> None:
        selection = select_from_chain(chain, criteria(Strategy.CALL_DEBIT_SPREAD), market_open)
        long_leg, short_leg = selection.legs
        assert long_leg.quantity == 1 and short_leg.quantity == -1
        assert short_leg.strike > long_leg.strike
        assert 112.5 <= short_leg.strike - long_leg.strike <= 450
        assert 0.30 <= long_leg.greeks.delta <= 0.60
        assert selection.risk_reward > 1
        assert selection.reason.startswith("Debit spread:")
        plan = selection.to_plan()
        assert plan.net_premium > 0
        assert plan.max_loss > 0

    def test_put_credit_spread(self, chain, market_open) -> None:
        selection = select_from_chain(chain, criteria(Strategy.PUT_CREDIT_SPREAD), market_open)
        long_leg, short_leg = selection.legs
        assert long_leg.quantity == 1 and short_leg.quantity == -1
        assert long_leg.option_type == short_leg.option_type == OptionType.PUT
        assert long_leg.strike < short_leg.strike
        assert 0.30 <= abs(short_leg.greeks.delta) <= 0.60
        assert 0 < selection.risk_reward < 1
        assert selection.reason.startswith("Credit spread:")
        assert selection.to_plan().net_premium < 0

    def test_min_rr_unreachable(self, chain, market_open) -> None:
        with pytest.raises(StrikeSelectionError, match=NO_SPREAD):
            select_from_chain(
                chain, criteria(Strategy.CALL_DEBIT_SPREAD, min_rr=50.0), market_open,
            )

    def test_not_enough_strikes(self, make_chain, market_open) -> None:
        thin = make_chain(market_open + timedelta(days=29), open_interest=10)
        with pytest.raises(StrikeSelectionError, match=NOT_ENOUGH_STRIKES):
            select_from_chain(thin, criteria(Strategy.CALL_DEBIT_SPREAD), market_open)


# ---------------------------------------------------------------------------
# Volatility structures and fallbacks
# ---------------------------------------------------------------------------


class TestVolatility:
    def test_straddle_at_the_money(self, chain, market_open) -> None:
        selection = select_from_chain(
            chain, criteria(Strategy.LONG_STRADDLE, None, regime=Regime.INTRADAY), market_open,
        )
        call, put = selection.legs
        assert call.strike == put.strike == 4500.0
        assert (call.option_type, put.option_type) == (OptionType.CALL, OptionType.PUT)
        assert selection.reason == "ATM straddle at 4500"

    def test_strangle_near_thirty_delta(self, chain, market_open) -> None:
        selection = select_from_chain(
            chain, criteria(Strategy.LONG_STRANGLE, None, regime=Regime.INTRADAY), market_open,
        )
        call, put = selection.legs
        assert call.strike == 4575.0
        assert put.strike == 4425.0
        assert selection.reason == "Strangle 4425/4575"


class TestFallbacks:
    def test_diagonal_falls_back_to_long_option(self, chain, market_open) -> None:
        selection = select_from_chain(chain, criteria(Strategy.DIAGONAL_SPREAD), market_open)
        assert selection.strategy == Strategy.LONG_CALL

    def test_neutral_four_leg_unsupported(self, chain, market_open) -> None:
        with pytest.raises(StrikeSelectionError, match="not supported for IRON_CONDOR"):
            select_from_chain(chain, criteria(Strategy.IRON_CONDOR, None), market_open)


class TestStrikeSelector:
    def test_fetches_chain_from_provider(self, chain, market_open) -> None:
        selector = StrikeSelector(StaticMarketData(chains={"SPX": chain}))
        selection = selector.select(criteria(Strategy.LONG_CALL), market_open)
        assert selection.legs[0].strike == 4525.0

    def test_expiration_from_regime_target(self, market_open) -> None:
        selector = StrikeSelector(StaticMarketData())
        assert selector.expiration_for(criteria(Strategy.LONG_CALL), market_open) == (
            market_open + timedelta(days=29)
        )
        assert selector.expiration_for(
            criteria(Strategy.LONG_CALL, target_dte=10), market_open,
        ) == market_open + timedelta(days=10)

    def test_missing_chain_is_selection_error(self, market_open) -> None:
        selector = StrikeSelector(StaticMarketData())
        with pytest.raises(StrikeSelectionError, match="Options chain unavailable for SPX"):
            selector.select(criteria(Strategy.LONG_CALL), market_open)


def test_liquidity_score_weights() -> None:
    quote = OptionQuote(bid=9.8, ask=10.2, volume=2000, open_interest=10_000)
    assert liquidity_score(quote) == pytest.approx(0.4 + 0.4 + 0.2 * (1 - 0.04 / 0.2))


def test_criteria_validation() -> None:
    with pytest.raises(ValueError, match="max_premium"):
        criteria(Strategy.LONG_CALL, max_premium=0)
