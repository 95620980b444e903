"""Strategy selection — picks an options structure for a trade idea.

The choice is a table lookup keyed by direction, trade mode, regime,
IV regime (split at IV rank 50) and conviction tier:

    INTRADAY  single-leg long options (straddle when neutral)
    SWING     high IV: credit spreads / iron condor
              low IV:  long option on HIGH conviction, else debit spread
    MONTHLY   high IV and not HIGH conviction: credit spreads / iron butterfly
              TREND: diagonal, else debit spread
    LEAPS     HIGH conviction and low IV: long option
              else PMCC (long) / diagonal (short)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from signalgate.decision.timeframe import Regime
from signalgate.options.types import CONTRACT_MULTIPLIER, Greeks, OptionLeg, OptionType
from signalgate.signals.signal import Direction


class Strategy(enum.Enum):
    LONG_CALL = "LONG_CALL"
    LONG_PUT = "LONG_PUT"
    CALL_DEBIT_SPREAD = "CALL_DEBIT_SPREAD"
    PUT_DEBIT_SPREAD = "PUT_DEBIT_SPREAD"
    CALL_CREDIT_SPREAD = "CALL_CREDIT_SPREAD"
    PUT_CREDIT_SPREAD = "PUT_CREDIT_SPREAD"
    LONG_STRADDLE = "LONG_STRADDLE"
    LONG_STRANGLE = "LONG_STRANGLE"
    IRON_CONDOR = "IRON_CONDOR"
    IRON_BUTTERFLY = "IRON_BUTTERFLY"
    CALENDAR_SPREAD = "CALENDAR_SPREAD"
    DIAGONAL_SPREAD = "DIAGONAL_SPREAD"
    PMCC = "PMCC"


class TradeMode(enum.Enum):
    TREND = "TREND"
    REVERSAL = "REVERSAL"
    BREAKOUT = "BREAKOUT"


class Conviction(enum.Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


SINGLE_LEG = frozenset({Strategy.LONG_CALL, Strategy.LONG_PUT})
DEBIT_SPREADS = frozenset({Strategy.CALL_DEBIT_SPREAD, Strategy.PUT_DEBIT_SPREAD})
CREDIT_SPREADS = frozenset({Strategy.CALL_CREDIT_SPREAD, Strategy.PUT_CREDIT_SPREAD})
CREDIT_STRATEGIES = CREDIT_SPREADS | {Strategy.IRON_CONDOR, Strategy.IRON_BUTTERFLY}
VOLATILITY_STRATEGIES = frozenset({Strategy.LONG_STRADDLE, Strategy.LONG_STRANGLE})

HIGH_IV_RANK = 50.0


def conviction_for(confidence: float) -> Conviction:
    if confidence >= 7.0:
        return Conviction.HIGH
    if confidence >= 6.0:
        return Conviction.MEDIUM
    return Conviction.LOW


def is_credit_strategy(strategy: Strategy) -> bool:
    return strategy in CREDIT_STRATEGIES


def is_volatility_strategy(strategy: Strategy) -> bool:
    return strategy in VOLATILITY_STRATEGIES


def _long_option(direction: Direction | None) -> Strategy:
    return Strategy.LONG_CALL if direction == Direction.LONG else Strategy.LONG_PUT


def _debit_spread(direction: Direction | None) -> Strategy:
    return Strategy.CALL_DEBIT_SPREAD if direction == Direction.LONG else Strategy.PUT_DEBIT_SPREAD


def _credit_spread(direction: Direction) -> Strategy:
    # Bullish credit is sold on the put side, bearish on the call side.
    return Strategy.PUT_CREDIT_SPREAD if direction == Direction.LONG else Strategy.CALL_CREDIT_SPREAD


def select_strategy(
    direction: Direction | None,
    trade_mode: TradeMode,
    regime: Regime,
    iv_rank: float,
    conviction: Conviction,
) -> Strategy:
    """Select a strategy. ``direction=None`` means a neutral view."""
    high_iv = iv_rank > HIGH_IV_RANK

    if regime == Regime.INTRADAY:
        if direction is None:
            return Strategy.LONG_STRADDLE
        return _long_option(direction)

    if regime == Regime.SWING:
        if high_iv:
            if direction is None:
                return Strategy.IRON_CONDOR
            return _credit_spread(direction)
        if conviction == Conviction.HIGH:
            return _long_option(direction)
        return _debit_spread(direction)

    if regime == Regime.MONTHLY:
        if high_iv and conviction != Conviction.HIGH:
            if direction is None:
                return Strategy.IRON_BUTTERFLY
            return _credit_spread(direction)
        if trade_mode == TradeMode.TREND:
            return Strategy.DIAGONAL_SPREAD
        return _debit_spread(direction)

    if regime == Regime.LEAPS:
        if conviction == Conviction.HIGH and not high_iv:
            return _long_option(direction)
        if direction == Direction.LONG:
            return Strategy.PMCC
        return Strategy.DIAGONAL_SPREAD

    return _debit_spread(direction)


# ---------------------------------------------------------------------------
# Strategy plan
# ---------------------------------------------------------------------------


def aggregate_greeks(legs: Sequence[OptionLeg]) -> Greeks:
    """Net Greeks per unit of the plan. Short legs negate their contribution."""
    if not legs:
        return Greeks()
    matrix = np.array(
        [[leg.greeks.delta, leg.greeks.gamma, leg.greeks.theta, leg.greeks.vega] for leg in legs],
        dtype=float,
    )
    qty = np.array([leg.quantity for leg in legs], dtype=float)
    delta, gamma, theta, vega = (qty @ matrix).tolist()
    return Greeks(delta=delta, gamma=gamma, theta=theta, vega=vega)


def _long_short(legs: Sequence[OptionLeg]) -> tuple[OptionLeg | None, OptionLeg | None]:
    long_leg = next((leg for leg in legs if leg.quantity > 0), None)
    short_leg = next((leg for leg in legs if leg.quantity < 0), None)
    return long_leg, short_leg


def strategy_max_loss(strategy: Strategy, legs: Sequence[OptionLeg]) -> float:
    """Maximum loss in dollars for one unit of the plan."""
    if not legs:
        return 0.0

    if strategy in SINGLE_LEG:
        leg = legs[0]
        return leg.entry_price * abs(leg.quantity) * CONTRACT_MULTIPLIER

    long_leg, short_leg = _long_short(legs)
    if long_leg is not None and short_leg is not None:
        if strategy in DEBIT_SPREADS:
            net_debit = long_leg.entry_price - abs(short_leg.entry_price)
            return net_debit * abs(long_leg.quantity) * CONTRACT_MULTIPLIER
        if strategy in CREDIT_SPREADS:
            width = abs(long_leg.strike - short_leg.strike)
            net_credit = abs(short_leg.entry_price) - long_leg.entry_price
            qty = abs(short_leg.quantity)
            return (width - net_credit) * qty * CONTRACT_MULTIPLIER

    return sum(leg.entry_price * abs(leg.quantity) * CONTRACT_MULTIPLIER for leg in legs)


def strategy_max_profit(strategy: Strategy, legs: Sequence[OptionLeg]) -> float | None:
    """Maximum profit for one unit, or ``None`` when unbounded."""
    long_leg, short_leg = _long_short(legs)
    if long_leg is None or short_leg is None:
        return None
    width = abs(long_leg.strike - short_leg.strike)
    if strategy in DEBIT_SPREADS:
        net_debit = long_leg.entry_price - abs(short_leg.entry_price)
        return (width - net_debit) * abs(long_leg.quantity) * CONTRACT_MULTIPLIER
    if strategy in CREDIT_SPREADS:
        net_credit = abs(short_leg.entry_price) - long_leg.entry_price
        return net_credit * abs(short_leg.quantity) * CONTRACT_MULTIPLIER
    return None


@dataclass(frozen=True)
class StrategyPlan:
    """A concrete strategy with its legs. Legs belong to this plan only."""

    strategy: Strategy
    legs: tuple[OptionLeg, ...]
    regime: Regime
    underlying_price: float = 0.0
    max_loss: float = 0.0
    max_profit: float | None = None
    net_premium: float = 0.0  # per unit, positive = debit
    breakevens: tuple[float, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not 1 <= len(self.legs) <= 2:
            raise ValueError(f"StrategyPlan requires 1-2 legs, got {len(self.legs)}")

    @classmethod
    def build(
        cls,
        strategy: Strategy,
        legs: Sequence[OptionLeg],
        regime: Regime,
        underlying_price: float = 0.0,
    ) -> StrategyPlan:
        legs = tuple(legs)
        net = sum(leg.entry_price * leg.quantity for leg in legs)
        return cls(
            strategy=strategy,
            legs=legs,
            regime=regime,
            underlying_price=underlying_price,
            max_loss=strategy_max_loss(strategy, legs),
            max_profit=strategy_max_profit(strategy, legs),
            net_premium=net,
            breakevens=_breakevens(strategy, legs, net),
        )

    @property
    def greeks(self) -> Greeks:
        return aggregate_greeks(self.legs)

    @property
    def primary(self) -> OptionLeg:
        return next((leg for leg in self.legs if leg.quantity > 0), self.legs[0])

    def to_dict(self) -> dict:
        return {
            "strategy": self.strategy.value,
            "regime": self.regime.value,
            "legs": [leg.to_dict() for leg in self.legs],
            "max_loss": self.max_loss,
            "max_profit": self.max_profit,
            "net_premium": self.net_premium,
            "breakevens": list(self.breakevens),
            "greeks": self.greeks.to_dict(),
        }


def _breakevens(
    strategy: Strategy, legs: Sequence[OptionLeg], net_premium: float,
) -> tuple[float, ...]:
    long_leg, short_leg = _long_short(legs)
    if strategy in SINGLE_LEG and long_leg is not None:
        if long_leg.option_type == OptionType.CALL:
            return (long_leg.strike + long_leg.entry_price,)
        return (long_leg.strike - long_leg.entry_price,)
    if strategy in DEBIT_SPREADS and long_leg is not None:
        if long_leg.option_type == OptionType.CALL:
            return (long_leg.strike + net_premium,)
        return (long_leg.strike - net_premium,)
    if strategy in CREDIT_SPREADS and short_leg is not None:
        credit = -net_premium
        if short_leg.option_type == OptionType.PUT:
            return (short_leg.strike - credit,)
        return (short_leg.strike + credit,)
    if strategy in VOLATILITY_STRATEGIES and len(legs) == 2:
        strikes = sorted(leg.strike for leg in legs)
        return (strikes[0] - net_premium, strikes[1] + net_premium)
    return ()
