"""Market-data provider interface and an in-memory implementation.

The provider is resolved once by name at startup and injected. Single
number metrics degrade to a neutral default when the provider fails;
chain lookups are left to fail the calling operation.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Mapping, Protocol

from signalgate.options.types import OptionsChain

logger = logging.getLogger(__name__)

DEFAULT_IV_RANK = 50.0


class MarketDataError(Exception):
    """Provider could not serve a request."""

    def __init__(self, message: str, *, symbol: str = "", retryable: bool = True):
        super().__init__(message)
        self.symbol = symbol
        self.retryable = retryable


class MarketDataProvider(Protocol):
    """Narrow interface consumed by strike selection and session checks."""

    def get_current_price(self, symbol: str) -> float: ...

    def get_options_chain(self, symbol: str, expiration: datetime | None = None) -> OptionsChain: ...

    def get_iv_rank(self, symbol: str) -> float: ...

    def get_vix(self) -> float: ...


class StaticMarketData:
    """Provider backed by in-memory dictionaries.

    Used for replay, shadow sessions and tests. Missing data raises
    ``MarketDataError`` the same way a remote provider would.
    """

    def __init__(
        self,
        prices: Mapping[str, float] | None = None,
        chains: Mapping[str, OptionsChain] | None = None,
        iv_ranks: Mapping[str, float] | None = None,
        vix: float | None = None,
    ) -> None:
        self._prices = dict(prices or {})
        self._chains = dict(chains or {})
        self._iv_ranks = dict(iv_ranks or {})
        self._vix = vix
        self._lock = threading.Lock()

    def set_price(self, symbol: str, price: float) -> None:
        with self._lock:
            self._prices[symbol] = price

    def set_chain(self, chain: OptionsChain) -> None:
        with self._lock:
            self._chains[chain.symbol] = chain

    def set_vix(self, vix: float | None) -> None:
        with self._lock:
            self._vix = vix

    def get_current_price(self, symbol: str) -> float:
        with self._lock:
            price = self._prices.get(symbol)
        if price is None:
            raise MarketDataError(f"No price for {symbol}", symbol=symbol, retryable=False)
        return price

    def get_options_chain(self, symbol: str, expiration: datetime | None = None) -> OptionsChain:
        # One snapshot per symbol; the requested expiration is advisory.
        with self._lock:
            chain = self._chains.get(symbol)
        if chain is None:
            raise MarketDataError(f"No options chain for {symbol}", symbol=symbol, retryable=False)
        return chain

    def get_iv_rank(self, symbol: str) -> float:
        with self._lock:
            rank = self._iv_ranks.get(symbol)
        if rank is None:
            raise MarketDataError(f"No IV rank for {symbol}", symbol=symbol, retryable=False)
        return rank

    def get_vix(self) -> float:
        with self._lock:
            vix = self._vix
        if vix is None:
            raise MarketDataError("VIX unavailable", symbol="VIX")
        return vix


ProviderFactory = Callable[[], MarketDataProvider]

PROVIDERS: dict[str, ProviderFactory] = {
    "static": StaticMarketData,
}


def resolve_provider(
    name: str,
    registry: Mapping[str, ProviderFactory] | None = None,
) -> MarketDataProvider:
    """Construct the provider registered under ``name``."""
    reg = PROVIDERS if registry is None else registry
    factory = reg.get(name)
    if factory is None:
        raise ValueError(f"Unknown market data source '{name}'. Available: {sorted(reg)}")
    logger.info("Market data source: %s", name)
    return factory()


# ---------------------------------------------------------------------------
# Fallback helpers
# ---------------------------------------------------------------------------


def iv_rank_or_default(
    provider: MarketDataProvider,
    symbol: str,
    default: float = DEFAULT_IV_RANK,
) -> float:
    try:
        return provider.get_iv_rank(symbol)
    except Exception as exc:
        logger.warning("IV rank unavailable for %s, using %.0f: %s", symbol, default, exc)
        return default


def vix_or_none(provider: MarketDataProvider) -> float | None:
    try:
        return provider.get_vix()
    except Exception as exc:
        logger.warning("VIX unavailable: %s", exc)
        return None
