"""Strike selection — turns a strategy into concrete legs from a chain snapshot.

Candidates are filtered on liquidity, spread and (for the directional leg)
the regime's delta band, then scored. Single legs blend liquidity,
delta-fit and premium affordability; vertical spreads search widths of
0.5x to 2x a target width of 5% of the underlying and score risk/reward,
liquidity and premium efficiency.

No surviving candidate is an error: selection never falls back to a
default strike.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from signalgate.decision.timeframe import Regime, regime_config
from signalgate.marketdata.provider import MarketDataProvider
from signalgate.options.strategy import (
    CREDIT_SPREADS,
    DEBIT_SPREADS,
    SINGLE_LEG,
    Strategy,
    StrategyPlan,
)
from signalgate.options.types import (
    OptionLeg,
    OptionQuote,
    OptionsChain,
    OptionType,
    StrikeRow,
    days_to_expiration,
)
from signalgate.signals.signal import Direction

logger = logging.getLogger(__name__)

NO_STRIKES = "No suitable strikes found matching criteria"
NOT_ENOUGH_STRIKES = "Not enough strikes for spread"
NO_SPREAD = "No suitable spread found"

TARGET_WIDTH_PCT = 0.05
STRANGLE_DELTA = 0.30


class StrikeSelectionError(Exception):
    """No strike combination satisfies the selection criteria."""


@dataclass(frozen=True)
class StrikeCriteria:
    symbol: str
    strategy: Strategy
    regime: Regime
    direction: Direction | None = None
    underlying_price: float = 0.0
    target_delta: float | None = None
    target_dte: int | None = None
    max_premium: float | None = None
    min_rr: float | None = None

    def __post_init__(self) -> None:
        if self.max_premium is not None and self.max_premium <= 0:
            raise ValueError("max_premium must be > 0")
        if self.min_rr is not None and self.min_rr < 0:
            raise ValueError("min_rr must be >= 0")


@dataclass(frozen=True)
class Candidate:
    row: StrikeRow
    option_type: OptionType
    quote: OptionQuote
    liquidity_score: float
    score: float = 0.0

    @property
    def strike(self) -> float:
        return self.row.strike

    @property
    def premium(self) -> float:
        return self.quote.mid

    @property
    def abs_delta(self) -> float:
        return abs(self.quote.greeks.delta)


@dataclass(frozen=True)
class StrikeSelection:
    """Selected legs for a strategy, ready to become a StrategyPlan."""

    strategy: Strategy
    regime: Regime
    expiration: datetime
    dte: int
    underlying_price: float
    legs: tuple[OptionLeg, ...]
    score: float
    risk_reward: float | None = None
    reason: str = ""
    liquidity_scores: tuple[float, ...] = field(default_factory=tuple)

    def to_plan(self) -> StrategyPlan:
        return StrategyPlan.build(
            self.strategy, self.legs, self.regime, underlying_price=self.underlying_price,
        )


# ---------------------------------------------------------------------------
# Regime thresholds and scoring
# ---------------------------------------------------------------------------


def min_open_interest(regime: Regime) -> int:
    return 1000 if regime == Regime.INTRADAY else 500


def min_volume(regime: Regime) -> int:
    return 200 if regime == Regime.INTRADAY else 50


def max_spread_pct(regime: Regime) -> float:
    return 0.10 if regime == Regime.INTRADAY else 0.15


def liquidity_score(quote: OptionQuote) -> float:
    volume_score = min(1.0, quote.volume / 1000)
    oi_score = min(1.0, quote.open_interest / 5000)
    spread_score = 1.0 - min(1.0, quote.spread_pct / 0.20)
    return volume_score * 0.4 + oi_score * 0.4 + spread_score * 0.2


def _is_liquid(quote: OptionQuote, regime: Regime, *, check_volume: bool = True) -> bool:
    if quote.open_interest < min_open_interest(regime):
        return False
    if check_volume and quote.volume < min_volume(regime):
        return False
    return quote.spread_pct <= max_spread_pct(regime)


def _candidates(
    chain: OptionsChain,
    option_type: OptionType,
    regime: Regime,
    *,
    delta_band: tuple[float, float] | None = None,
    check_volume: bool = True,
) -> list[Candidate]:
    out: list[Candidate] = []
    for row in chain.sorted_strikes():
        quote = row.quote(option_type)
        if quote is None:
            continue
        if delta_band is not None:
            d = abs(quote.greeks.delta)
            if not delta_band[0] <= d <= delta_band[1]:
                continue
        if not _is_liquid(quote, regime, check_volume=check_volume):
            continue
        out.append(Candidate(row, option_type, quote, liquidity_score(quote)))
    return out


def single_leg_score(
    candidate: Candidate, target_delta: float, max_premium: float | None,
) -> float:
    delta_fit = 1.0 - abs(candidate.abs_delta - target_delta) / 0.5
    if max_premium:
        premium_fit = max(0.0, 1.0 - candidate.premium / max_premium)
    else:
        premium_fit = 1.0
    return candidate.liquidity_score * 0.4 + delta_fit * 0.3 + premium_fit * 0.3


def _best_single(
    candidates: list[Candidate], target_delta: float, max_premium: float | None,
) -> Candidate:
    scored = [
        Candidate(c.row, c.option_type, c.quote, c.liquidity_score,
                  single_leg_score(c, target_delta, max_premium))
        for c in candidates
    ]
    # Ties go to the strike whose delta sits closer to target.
    return max(scored, key=lambda c: (c.score, -abs(c.abs_delta - target_delta)))


def _leg(c: Candidate, expiration: datetime, quantity: int) -> OptionLeg:
    return OptionLeg.from_quote(c.row, c.option_type, expiration, quantity)


# ---------------------------------------------------------------------------
# Selection per structure
# ---------------------------------------------------------------------------


def _strategy_option_type(strategy: Strategy, direction: Direction | None) -> OptionType:
    if strategy in (Strategy.LONG_CALL, Strategy.CALL_DEBIT_SPREAD, Strategy.CALL_CREDIT_SPREAD):
        return OptionType.CALL
    if strategy in (Strategy.LONG_PUT, Strategy.PUT_DEBIT_SPREAD, Strategy.PUT_CREDIT_SPREAD):
        return OptionType.PUT
    return OptionType.CALL if direction != Direction.SHORT else OptionType.PUT


def _select_single(
    chain: OptionsChain, criteria: StrikeCriteria, strategy: Strategy, now: datetime,
) -> StrikeSelection:
    cfg = regime_config(criteria.regime)
    target = criteria.target_delta or cfg.target_delta
    option_type = _strategy_option_type(strategy, criteria.direction)
    candidates = _candidates(chain, option_type, criteria.regime, delta_band=cfg.delta_range)
    if not candidates:
        raise StrikeSelectionError(NO_STRIKES)
    best = _best_single(candidates, target, criteria.max_premium)
    return StrikeSelection(
        strategy=strategy,
        regime=criteria.regime,
        expiration=chain.expiration,
        dte=days_to_expiration(chain.expiration, now),
        underlying_price=criteria.underlying_price or chain.underlying_price,
        legs=(_leg(best, chain.expiration, 1),),
        score=best.score,
        reason=f"Delta: {best.quote.greeks.delta:.2f}, Liquidity: {best.liquidity_score:.2f}",
        liquidity_scores=(best.liquidity_score,),
    )


def _further_otm(option_type: OptionType, anchor: float, strike: float) -> bool:
    return strike > anchor if option_type == OptionType.CALL else strike < anchor


def _select_vertical(
    chain: OptionsChain, criteria: StrikeCriteria, now: datetime,
) -> StrikeSelection:
    strategy = criteria.strategy
    credit = strategy in CREDIT_SPREADS
    cfg = regime_config(criteria.regime)
    target = criteria.target_delta or cfg.target_delta
    option_type = _strategy_option_type(strategy, criteria.direction)
    underlying = criteria.underlying_price or chain.underlying_price

    liquid = _candidates(chain, option_type, criteria.regime, check_volume=False)
    if len(liquid) < 2:
        raise StrikeSelectionError(NOT_ENOUGH_STRIKES)

    # The anchor is the bought leg of a debit spread or the sold leg of a
    # credit spread; the wing always sits further out of the money.
    anchors = [c for c in liquid if cfg.delta_range[0] <= c.abs_delta <= cfg.delta_range[1]]
    if not anchors:
        raise StrikeSelectionError(NO_STRIKES)

    target_width = underlying * TARGET_WIDTH_PCT
    best: tuple[float, Candidate, Candidate, float, float] | None = None
    for anchor in anchors:
        for wing in liquid:
            if not _further_otm(option_type, anchor.strike, wing.strike):
                continue
            width = abs(wing.strike - anchor.strike)
            if width < target_width * 0.5 or width > target_width * 2:
                continue
            if credit:
                net = anchor.premium - wing.premium  # credit received
                if net <= 0 or net >= width:
                    continue
                rr = net / (width - net)
                efficiency = net / width
            else:
                net = anchor.premium - wing.premium  # debit paid
                if net <= 0 or net >= width:
                    continue
                rr = (width - net) / net
                efficiency = 1.0 - net / width
            if criteria.min_rr is not None and rr < criteria.min_rr:
                continue
            liq = (anchor.liquidity_score + wing.liquidity_score) / 2
            score = rr * 0.5 + liq * 0.3 + efficiency * 0.2
            delta_gap = abs(anchor.abs_delta - target)
            if best is None or (score, -delta_gap) > (best[0], -abs(best[1].abs_delta - target)):
                best = (score, anchor, wing, rr, width)

    if best is None:
        raise StrikeSelectionError(NO_SPREAD)

    score, anchor, wing, rr, width = best
    if credit:
        legs = (_leg(wing, chain.expiration, 1), _leg(anchor, chain.expiration, -1))
        kind = "Credit"
    else:
        legs = (_leg(anchor, chain.expiration, 1), _leg(wing, chain.expiration, -1))
        kind = "Debit"
    return StrikeSelection(
        strategy=strategy,
        regime=criteria.regime,
        expiration=chain.expiration,
        dte=days_to_expiration(chain.expiration, now),
        underlying_price=underlying,
        legs=legs,
        score=score,
        risk_reward=rr,
        reason=f"{kind} spread: {width:.0f} width, R:R {rr:.2f}",
        liquidity_scores=(anchor.liquidity_score, wing.liquidity_score),
    )


def _select_volatility(
    chain: OptionsChain, criteria: StrikeCriteria, now: datetime,
) -> StrikeSelection:
    underlying = criteria.underlying_price or chain.underlying_price
    calls = _candidates(chain, OptionType.CALL, criteria.regime)
    puts = _candidates(chain, OptionType.PUT, criteria.regime)
    if not calls or not puts:
        raise StrikeSelectionError(NO_STRIKES)

    if criteria.strategy == Strategy.LONG_STRADDLE:
        put_strikes = {p.strike: p for p in puts}
        pairs = [(c, put_strikes[c.strike]) for c in calls if c.strike in put_strikes]
        if not pairs:
            raise StrikeSelectionError(NO_STRIKES)
        call, put = min(pairs, key=lambda p: abs(p[0].strike - underlying))
        reason = f"ATM straddle at {call.strike:g}"
    else:
        otm_calls = [c for c in calls if c.strike > underlying]
        otm_puts = [p for p in puts if p.strike < underlying]
        if not otm_calls or not otm_puts:
            raise StrikeSelectionError(NO_STRIKES)
        call = min(otm_calls, key=lambda c: (abs(c.abs_delta - STRANGLE_DELTA), c.strike))
        put = min(otm_puts, key=lambda p: (abs(p.abs_delta - STRANGLE_DELTA), -p.strike))
        reason = f"Strangle {put.strike:g}/{call.strike:g}"

    liq = (call.liquidity_score + put.liquidity_score) / 2
    return StrikeSelection(
        strategy=criteria.strategy,
        regime=criteria.regime,
        expiration=chain.expiration,
        dte=days_to_expiration(chain.expiration, now),
        underlying_price=underlying,
        legs=(_leg(call, chain.expiration, 1), _leg(put, chain.expiration, 1)),
        score=liq,
        reason=reason,
        liquidity_scores=(call.liquidity_score, put.liquidity_score),
    )


def select_from_chain(
    chain: OptionsChain, criteria: StrikeCriteria, now: datetime | None = None,
) -> StrikeSelection:
    """Select legs for ``criteria.strategy`` from a chain snapshot."""
    now = now or datetime.now(timezone.utc)
    strategy = criteria.strategy
    if strategy in SINGLE_LEG:
        return _select_single(chain, criteria, strategy, now)
    if strategy in DEBIT_SPREADS or strategy in CREDIT_SPREADS:
        return _select_vertical(chain, criteria, now)
    if strategy in (Strategy.LONG_STRADDLE, Strategy.LONG_STRANGLE):
        return _select_volatility(chain, criteria, now)

    # Multi-expiry and four-leg structures fall back to the long option.
    if criteria.direction is None:
        raise StrikeSelectionError(f"Strike selection not supported for {strategy.value}")
    fallback = Strategy.LONG_CALL if criteria.direction == Direction.LONG else Strategy.LONG_PUT
    logger.info("No leg model for %s, selecting %s", strategy.value, fallback.value)
    return _select_single(chain, criteria, fallback, now)


class StrikeSelector:
    """Fetches a chain through the injected provider and selects strikes."""

    def __init__(self, provider: MarketDataProvider) -> None:
        self._provider = provider

    def expiration_for(self, criteria: StrikeCriteria, now: datetime) -> datetime:
        dte = criteria.target_dte
        if dte is None:
            dte = regime_config(criteria.regime).target_dte
        return now + timedelta(days=dte)

    def select(self, criteria: StrikeCriteria, now: datetime | None = None) -> StrikeSelection:
        now = now or datetime.now(timezone.utc)
        try:
            chain = self._provider.get_options_chain(
                criteria.symbol, self.expiration_for(criteria, now),
            )
        except Exception as exc:
            raise StrikeSelectionError(
                f"Options chain unavailable for {criteria.symbol}: {exc}"
            ) from exc
        selection = select_from_chain(chain, criteria, now)
        logger.info(
            "Selected %s for %s: %s", selection.strategy.value, criteria.symbol, selection.reason,
        )
        return selection
