"""Portfolio-level Greeks — aggregate exposure across open positions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import numpy as np

from signalgate.options.types import Greeks


@dataclass(frozen=True)
class GreeksLimits:
    max_abs_delta: float = 1000.0
    max_abs_gamma: float = 500.0
    max_negative_theta: float = -500.0  # max daily bleed
    max_abs_vega: float = 2000.0

    def __post_init__(self) -> None:
        if self.max_abs_delta <= 0 or self.max_abs_gamma <= 0 or self.max_abs_vega <= 0:
            raise ValueError("absolute Greeks limits must be > 0")
        if self.max_negative_theta >= 0:
            raise ValueError("max_negative_theta must be < 0")


@dataclass(frozen=True)
class PortfolioGreeks:
    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0

    @property
    def beta_weighted_delta(self) -> float:
        # Beta of 1.0 against the index underlyings traded here.
        return self.delta

    def plus(self, greeks: Greeks) -> PortfolioGreeks:
        return PortfolioGreeks(
            delta=self.delta + greeks.delta,
            gamma=self.gamma + greeks.gamma,
            theta=self.theta + greeks.theta,
            vega=self.vega + greeks.vega,
        )

    def to_dict(self) -> dict[str, float]:
        return {
            "delta": self.delta,
            "gamma": self.gamma,
            "theta": self.theta,
            "vega": self.vega,
            "beta_weighted_delta": self.beta_weighted_delta,
        }


def calculate_portfolio_greeks(position_greeks: Iterable[Greeks]) -> PortfolioGreeks:
    """Sum total Greeks of every open position."""
    rows = [[g.delta, g.gamma, g.theta, g.vega] for g in position_greeks]
    if not rows:
        return PortfolioGreeks()
    delta, gamma, theta, vega = np.asarray(rows, dtype=float).sum(axis=0).tolist()
    return PortfolioGreeks(delta=delta, gamma=gamma, theta=theta, vega=vega)


def check_limits(greeks: PortfolioGreeks, limits: GreeksLimits | None = None) -> list[str]:
    """Human-readable breach descriptions; empty when within limits."""
    lim = limits or GreeksLimits()
    breaches: list[str] = []
    if abs(greeks.delta) > lim.max_abs_delta:
        breaches.append(f"Delta limit: {greeks.delta:.0f} exceeds ±{lim.max_abs_delta:g}")
    if abs(greeks.gamma) > lim.max_abs_gamma:
        breaches.append(f"Gamma limit: {greeks.gamma:.0f} exceeds ±{lim.max_abs_gamma:g}")
    if greeks.theta < lim.max_negative_theta:
        breaches.append(f"Theta limit: {greeks.theta:.0f} exceeds {lim.max_negative_theta:g}/day")
    if abs(greeks.vega) > lim.max_abs_vega:
        breaches.append(f"Vega limit: {greeks.vega:.0f} exceeds ±{lim.max_abs_vega:g}")
    return breaches


def would_breach(
    current: PortfolioGreeks,
    candidate: Greeks,
    limits: GreeksLimits | None = None,
) -> list[str]:
    """Breaches the portfolio would have after adding ``candidate``."""
    return check_limits(current.plus(candidate), limits)
