"""Options domain types — quotes, chains, legs and Greeks."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

CONTRACT_MULTIPLIER = 100


class OptionType(enum.Enum):
    CALL = "CALL"
    PUT = "PUT"


@dataclass(frozen=True)
class Greeks:
    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0

    def scaled(self, factor: float) -> Greeks:
        return Greeks(
            delta=self.delta * factor,
            gamma=self.gamma * factor,
            theta=self.theta * factor,
            vega=self.vega * factor,
        )

    def __add__(self, other: Greeks) -> Greeks:
        return Greeks(
            delta=self.delta + other.delta,
            gamma=self.gamma + other.gamma,
            theta=self.theta + other.theta,
            vega=self.vega + other.vega,
        )

    def to_dict(self) -> dict[str, float]:
        return {
            "delta": self.delta,
            "gamma": self.gamma,
            "theta": self.theta,
            "vega": self.vega,
        }


@dataclass(frozen=True)
class OptionQuote:
    """A single option quote from a chain snapshot."""

    bid: float
    ask: float
    last: float = 0.0
    volume: int = 0
    open_interest: int = 0
    implied_volatility: float = 0.0
    greeks: Greeks = field(default_factory=Greeks)

    @property
    def mid(self) -> float:
        return (self.bid + self.ask) / 2.0

    @property
    def spread_pct(self) -> float:
        """Bid/ask spread relative to mid; 1.0 for one-sided markets."""
        if self.bid <= 0 or self.ask <= 0:
            return 1.0
        return (self.ask - self.bid) / self.mid


@dataclass(frozen=True)
class StrikeRow:
    strike: float
    call: OptionQuote | None = None
    put: OptionQuote | None = None

    def quote(self, option_type: OptionType) -> OptionQuote | None:
        return self.call if option_type == OptionType.CALL else self.put


@dataclass(frozen=True)
class OptionsChain:
    """Chain snapshot for one underlying and expiration."""

    symbol: str
    expiration: datetime
    strikes: tuple[StrikeRow, ...]
    underlying_price: float = 0.0

    def sorted_strikes(self) -> list[StrikeRow]:
        return sorted(self.strikes, key=lambda row: row.strike)


def days_to_expiration(expiration: datetime, now: datetime) -> int:
    """Whole days until expiration, floored."""
    if expiration.tzinfo is None:
        expiration = expiration.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return math.floor((expiration - now).total_seconds() / 86_400)


@dataclass(frozen=True)
class OptionLeg:
    """One leg of a strategy. Negative quantity is a short leg."""

    strike: float
    expiration: datetime
    option_type: OptionType
    quantity: int
    entry_price: float
    greeks: Greeks = field(default_factory=Greeks)
    open_interest: int = 0
    volume: int = 0
    bid: float = 0.0
    ask: float = 0.0
    implied_volatility: float = 0.0

    @property
    def is_long(self) -> bool:
        return self.quantity > 0

    @classmethod
    def from_quote(
        cls,
        row: StrikeRow,
        option_type: OptionType,
        expiration: datetime,
        quantity: int,
    ) -> OptionLeg:
        quote = row.quote(option_type)
        if quote is None:
            raise ValueError(f"no {option_type.value} quote at strike {row.strike}")
        return cls(
            strike=row.strike,
            expiration=expiration,
            option_type=option_type,
            quantity=quantity,
            entry_price=quote.mid,
            greeks=quote.greeks,
            open_interest=quote.open_interest,
            volume=quote.volume,
            bid=quote.bid,
            ask=quote.ask,
            implied_volatility=quote.implied_volatility,
        )

    def to_dict(self) -> dict:
        return {
            "strike": self.strike,
            "expiration": self.expiration.isoformat(),
            "option_type": self.option_type.value,
            "quantity": self.quantity,
            "entry_price": self.entry_price,
            "greeks": self.greeks.to_dict(),
        }


@dataclass(frozen=True)
class OptionSnapshot:
    """Option contract data consumed by the options validation gate.

    Any field left as ``None`` falls back to a neutral default when the
    gate runs.
    """

    strike: float | None = None
    expiration: datetime | None = None
    option_type: OptionType | None = None
    current_price: float | None = None
    implied_volatility: float | None = None
    iv_rank: float | None = None
    iv_percentile: float | None = None
    greeks: Greeks | None = None
    bid_ask_spread: float | None = None
    open_interest: int | None = None
    volume: int | None = None
