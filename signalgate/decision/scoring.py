"""Signal scoring — weighted confluence by signal family.

Each contributing tag belongs to one of four families and contributes a
regime-specific weight to its family sub-score. Tags outside the four
families score zero.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Sequence

from signalgate.decision.timeframe import Regime

MARKET_STRUCTURE = "market_structure"
LIQUIDITY = "liquidity"
ORDER_FLOW = "order_flow"
VOLUME = "volume"

FAMILIES = (MARKET_STRUCTURE, LIQUIDITY, ORDER_FLOW, VOLUME)

TAG_FAMILIES: dict[str, str] = {
    "STRAT_212": MARKET_STRUCTURE,
    "BOS": MARKET_STRUCTURE,
    "MSS": MARKET_STRUCTURE,
    "CHoCH": MARKET_STRUCTURE,
    "SWEEP_LOW": LIQUIDITY,
    "SWEEP_HIGH": LIQUIDITY,
    "SMT": LIQUIDITY,
    "FVG": ORDER_FLOW,
    "DISPLACEMENT": ORDER_FLOW,
    "BREAKER": ORDER_FLOW,
    "VOLUME_SURGE": VOLUME,
    "ORB": VOLUME,
}

_TAG_ORDER = (
    "STRAT_212", "BOS", "MSS", "CHoCH",
    "SWEEP_LOW", "SWEEP_HIGH", "SMT",
    "FVG", "DISPLACEMENT", "BREAKER",
    "VOLUME_SURGE", "ORB",
)


def _table(*weights: float) -> dict[str, float]:
    return dict(zip(_TAG_ORDER, weights))


# Short-dated regimes lean on order flow and volume, long-dated ones on
# market structure shifts.
REGIME_WEIGHTS: dict[Regime, dict[str, float]] = {
    Regime.INTRADAY: _table(3.0, 3.0, 2.5, 2.5, 2.5, 2.5, 1.5, 3.5, 3.5, 2.5, 3.0, 3.5),
    Regime.SWING: _table(2.5, 2.5, 2.5, 3.0, 2.5, 2.5, 2.5, 2.5, 2.5, 3.0, 2.0, 1.5),
    Regime.MONTHLY: _table(2.0, 2.5, 3.0, 3.0, 2.0, 2.0, 3.0, 2.0, 2.0, 3.0, 1.5, 1.0),
    Regime.LEAPS: _table(1.5, 2.0, 3.5, 3.5, 1.5, 1.5, 3.0, 1.5, 1.5, 2.5, 1.0, 0.5),
}


def weights_for(regime: Regime) -> dict[str, float]:
    return REGIME_WEIGHTS[regime]


def family_of(tag: str) -> str | None:
    return TAG_FAMILIES.get(tag)


@dataclass(frozen=True)
class ScoreBreakdown:
    market_structure: float = 0.0
    liquidity: float = 0.0
    order_flow: float = 0.0
    volume: float = 0.0
    total: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            MARKET_STRUCTURE: self.market_structure,
            LIQUIDITY: self.liquidity,
            ORDER_FLOW: self.order_flow,
            VOLUME: self.volume,
            "total": self.total,
        }


@dataclass(frozen=True)
class RoleAssignment:
    primary: str | None
    confirmations: tuple[str, ...] = field(default_factory=tuple)


def score_signals(tags: Sequence[str], weights: Mapping[str, float]) -> ScoreBreakdown:
    """Sum tag weights per family. Unknown tags contribute nothing."""
    sub = dict.fromkeys(FAMILIES, 0.0)
    for tag in tags:
        family = TAG_FAMILIES.get(tag)
        if family is None:
            continue
        sub[family] += weights.get(tag, 0.0)
    return ScoreBreakdown(
        market_structure=sub[MARKET_STRUCTURE],
        liquidity=sub[LIQUIDITY],
        order_flow=sub[ORDER_FLOW],
        volume=sub[VOLUME],
        total=sum(sub.values()),
    )


def _cross_family_support(tag: str, tags: Sequence[str]) -> int:
    family = TAG_FAMILIES.get(tag)
    return sum(
        1 for other in tags
        if other != tag and TAG_FAMILIES.get(other) not in (None, family)
    )


def assign_roles(
    tags: Sequence[str],
    weights: Mapping[str, float],
    *,
    max_confirmations: int = 2,
) -> RoleAssignment:
    """Pick the highest-weighted tag as primary and up to two confirmations.

    Among equally weighted tags the primary is the one with the most tags
    from other families behind it, then the earliest. Confirmations are
    taken in signal order from families other than the primary's.
    """
    if not tags:
        return RoleAssignment(primary=None)

    best = max(weights.get(tag, 0.0) for tag in tags)
    candidates = [tag for tag in tags if weights.get(tag, 0.0) == best]
    primary = max(
        candidates,
        key=lambda tag: (_cross_family_support(tag, tags), -tags.index(tag)),
    )

    primary_family = TAG_FAMILIES.get(primary)
    confirmations: list[str] = []
    for tag in tags:
        if tag == primary:
            continue
        family = TAG_FAMILIES.get(tag)
        # Tags outside the four families score nothing and never confirm.
        if family is None or family == primary_family:
            continue
        confirmations.append(tag)
        if len(confirmations) == max_confirmations:
            break
    return RoleAssignment(primary=primary, confirmations=tuple(confirmations))
