"""Shared fixtures for signalgate tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from signalgate.options.types import Greeks, OptionQuote, OptionsChain, StrikeRow
from signalgate.signals.signal import Direction, Signal

# Wednesday 2024-06-12 11:00 America/New_York (EDT, UTC-4)
MARKET_OPEN = datetime(2024, 6, 12, 15, 0, tzinfo=timezone.utc)
# Same day 17:30 New York, after the close
AFTER_CLOSE = datetime(2024, 6, 12, 21, 30, tzinfo=timezone.utc)
# Saturday 2024-06-15 11:00 New York
WEEKEND = datetime(2024, 6, 15, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def market_open() -> datetime:
    return MARKET_OPEN


@pytest.fixture
def after_close() -> datetime:
    return AFTER_CLOSE


@pytest.fixture
def weekend() -> datetime:
    return WEEKEND


@pytest.fixture
def make_signal():
    """Factory for the SWING reference signal with per-test overrides."""

    def _make(**overrides) -> Signal:
        fields = dict(
            symbol="ES",
            timestamp=int(MARKET_OPEN.timestamp()),
            signal_type="FVG_BOS",
            direction=Direction.LONG,
            confidence=8.0,
            confluence_count=4,
            entry_price=4500.0,
            stop_loss=4490.0,
            take_profit_1=4520.0,
            active_signals=("FVG", "DISPLACEMENT", "BOS"),
            resolution="1D",
            signal_id="sig-1",
        )
        fields.update(overrides)
        return Signal(**fields)

    return _make


@pytest.fixture
def signal_payload() -> dict:
    return {
        "symbol": "ES",
        "resolution": "1D",
        "timestamp": int(MARKET_OPEN.timestamp()),
        "signal_type": "FVG_BOS",
        "direction": "LONG",
        "confidence": 8,
        "signal_strength": 7.5,
        "confluence_count": 4,
        "entry_price": 4500,
        "stop_loss": 4490,
        "take_profit_1": 4520,
        "active_signals": ["FVG", "DISPLACEMENT", "BOS"],
    }


def _quote(mid: float, delta: float, open_interest: int, volume: int) -> OptionQuote:
    return OptionQuote(
        bid=round(mid * 0.98, 2),
        ask=round(mid * 1.02, 2),
        last=mid,
        volume=volume,
        open_interest=open_interest,
        implied_volatility=0.18,
        greeks=Greeks(delta=delta, gamma=0.002, theta=-1.5, vega=5.0),
    )


@pytest.fixture
def make_chain():
    """Factory for a synthetic chain: strikes every 25 points, +/-200 around spot.

    Call delta falls linearly from 0.5 at the money by 0.0025 per point;
    premiums are intrinsic value plus a time value that decays away from
    the money.
    """

    def _make(
        expiration: datetime,
        underlying: float = 4500.0,
        symbol: str = "SPX",
        open_interest: int = 4000,
        volume: int = 800,
    ) -> OptionsChain:
        rows = []
        for k in range(-8, 9):
            strike = underlying + k * 25
            offset = strike - underlying
            call_delta = min(0.98, max(0.02, 0.5 - offset / 400))
            time_value = 40.0 - 0.08 * abs(offset)
            call_mid = max(0.0, -offset) + time_value
            put_mid = max(0.0, offset) + time_value
            rows.append(StrikeRow(
                strike=strike,
                call=_quote(call_mid, call_delta, open_interest, volume),
                put=_quote(put_mid, call_delta - 1.0, open_interest, volume),
            ))
        return OptionsChain(
            symbol=symbol,
            expiration=expiration,
            strikes=tuple(rows),
            underlying_price=underlying,
        )

    return _make
