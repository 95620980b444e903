"""VIX volatility check. Fails open when VIX is unavailable."""

from __future__ import annotations

import logging

from signalgate.marketdata.provider import MarketDataProvider, vix_or_none
from signalgate.session.results import CheckResult

logger = logging.getLogger(__name__)

VIX_THRESHOLD = 30.0


def check_vix(vix: float | None, threshold: float = VIX_THRESHOLD) -> CheckResult:
    if vix is None:
        return CheckResult.degrade("VIX data unavailable, allowing trade", vix=None)
    if vix > threshold:
        return CheckResult.block(
            f"High volatility: VIX ({vix:.2f}) exceeds threshold ({threshold:g})", vix=vix,
        )
    return CheckResult.ok(vix=vix)


class VolatilityGuard:
    def __init__(self, provider: MarketDataProvider, threshold: float = VIX_THRESHOLD) -> None:
        if threshold <= 0:
            raise ValueError("threshold must be > 0")
        self._provider = provider
        self.threshold = threshold

    def check(self) -> CheckResult:
        result = check_vix(vix_or_none(self._provider), self.threshold)
        if not result.allowed:
            logger.info("Volatility check blocked: %s", result.reason)
        return result
