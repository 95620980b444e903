"""Retry with exponential backoff for flaky provider calls."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, TypeVar

from signalgate.marketdata.provider import MarketDataError, MarketDataProvider
from signalgate.options.types import OptionsChain

logger = logging.getLogger(__name__)

T = TypeVar("T")

ShouldRetry = Callable[[Exception], bool]
OnRetry = Callable[[int, Exception], None]


def _delay(attempt: int, delay_s: float, backoff: float) -> float:
    return delay_s * backoff ** (attempt - 1)


def retry(
    fn: Callable[[], T],
    *,
    attempts: int = 3,
    delay_s: float = 1.0,
    backoff: float = 2.0,
    should_retry: ShouldRetry | None = None,
    on_retry: OnRetry | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds or ``attempts`` are exhausted.

    A failure rejected by ``should_retry`` is re-raised immediately. After
    the last attempt the final exception propagates.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as exc:
            if should_retry is not None and not should_retry(exc):
                raise
            if attempt == attempts:
                raise
            wait = _delay(attempt, delay_s, backoff)
            logger.warning(
                "Attempt %d/%d failed: %s (retrying in %.2fs)", attempt, attempts, exc, wait,
            )
            if on_retry is not None:
                on_retry(attempt, exc)
            sleep(wait)
    raise AssertionError("unreachable")


def is_transient(exc: Exception) -> bool:
    return isinstance(exc, MarketDataError) and exc.retryable


class RetryingMarketData:
    """Provider wrapper that retries transient ``MarketDataError`` failures.

    Failures marked ``retryable=False`` and any other exception propagate
    on the first attempt.
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        *,
        attempts: int = 3,
        delay_s: float = 0.5,
        backoff: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.provider = provider
        self.attempts = attempts
        self.delay_s = delay_s
        self.backoff = backoff
        self._sleep = sleep

    def _call(self, fn: Callable[[], T]) -> T:
        return retry(
            fn,
            attempts=self.attempts,
            delay_s=self.delay_s,
            backoff=self.backoff,
            should_retry=is_transient,
            sleep=self._sleep,
        )

    def get_current_price(self, symbol: str) -> float:
        return self._call(lambda: self.provider.get_current_price(symbol))

    def get_options_chain(self, symbol: str, expiration: datetime | None = None) -> OptionsChain:
        return self._call(lambda: self.provider.get_options_chain(symbol, expiration))

    def get_iv_rank(self, symbol: str) -> float:
        return self._call(lambda: self.provider.get_iv_rank(symbol))

    def get_vix(self) -> float:
        return self._call(self.provider.get_vix)
