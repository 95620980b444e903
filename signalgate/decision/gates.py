"""Gate engine — sequential pass/fail pipeline from Signal to Decision.

Gates are evaluated in a fixed order and the pipeline short-circuits on
the first failure:

  1. Signal Integrity
  2. Session & Volatility
  3. Signal Factorization
  4. Role Assignment
  5. Weighted Score & Mode
  6. Risk & Position Sizing

The engine is total: every signal yields exactly one Decision. A failing
gate is a BLOCK outcome, never an exception. Admission gates that need
session state (daily limits, position limits, event calendar) are appended
afterwards through :meth:`Decision.append_gate`.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Any, Callable
from zoneinfo import ZoneInfo

from signalgate.decision.scoring import (
    LIQUIDITY,
    MARKET_STRUCTURE,
    VOLUME,
    ScoreBreakdown,
    assign_roles,
    score_signals,
    weights_for,
)
from signalgate.decision.timeframe import Regime, RegimeConfig, classify_timeframe, regime_config
from signalgate.options.sizing import PositionSizing, size_shares
from signalgate.options.strategy import Conviction, Strategy, StrategyPlan, TradeMode
from signalgate.session.results import CheckResult
from signalgate.signals.signal import Direction, Signal

logger = logging.getLogger(__name__)

MARKET_TZ = ZoneInfo("America/New_York")

INTEGRITY = "Signal Integrity"
SESSION = "Session & Volatility"
FACTORIZATION = "Signal Factorization"
ROLES = "Role Assignment"
MODE = "Weighted Score & Mode"
SIZING = "Risk & Position Sizing"

SESSION_REGULAR = "REGULAR"
SESSION_UNKNOWN = "UNKNOWN"

REGULAR_OPEN = time(9, 30)
REGULAR_CLOSE = time(16, 0)
INTRADAY_OPEN = time(9, 45)
INTRADAY_CLOSE = time(15, 45)


class Outcome(enum.Enum):
    TRADE = "TRADE"
    BLOCK = "BLOCK"


@dataclass(frozen=True)
class GateResult:
    gate: str
    passed: bool
    reason: str | None = None
    score: float | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"gate": self.gate, "passed": self.passed}
        if self.reason is not None:
            out["reason"] = self.reason
        if self.score is not None:
            out["score"] = self.score
        if self.details:
            out.update(self.details)
        return out


@dataclass(frozen=True)
class RiskCalculation:
    base_risk: float = 0.0
    adjusted_risk: float = 0.0
    quantity: int = 0
    risk_reward: float = 0.0
    sizing: PositionSizing | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "base_risk": self.base_risk,
            "adjusted_risk": self.adjusted_risk,
            "quantity": self.quantity,
            "risk_reward": self.risk_reward,
        }
        if self.sizing is not None:
            out["greeks_sizing"] = self.sizing.to_dict()
        return out


@dataclass
class Decision:
    """The single outcome of running a signal through the gates.

    Only :meth:`append_gate` and :meth:`attach_volatility` mutate a
    Decision, and only before it is persisted.
    """

    signal_id: str | None
    symbol: str
    direction: Direction
    outcome: Outcome
    regime: Regime
    gate_results: list[GateResult] = field(default_factory=list)
    trade_mode: TradeMode | None = None
    block_reason: str | None = None
    primary: str = ""
    confirmations: tuple[str, ...] = ()
    score_breakdown: ScoreBreakdown = field(default_factory=ScoreBreakdown)
    risk: RiskCalculation = field(default_factory=RiskCalculation)
    volatility: float | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    strategy: Strategy | None = None
    conviction: Conviction | None = None
    plan: StrategyPlan | None = None

    @property
    def is_trade(self) -> bool:
        return self.outcome == Outcome.TRADE

    @property
    def session(self) -> str:
        return SESSION_REGULAR if self.is_trade else SESSION_UNKNOWN

    def gate(self, name: str) -> GateResult | None:
        return next((g for g in self.gate_results if g.gate == name), None)

    def append_gate(self, result: GateResult) -> None:
        """Append a gate result; a failing result blocks the decision."""
        self.gate_results.append(result)
        if not result.passed and self.outcome == Outcome.TRADE:
            self.outcome = Outcome.BLOCK
            self.block_reason = result.reason or f"{result.gate} failed"

    def attach_volatility(self, check: CheckResult) -> None:
        """Record the volatility check on the session gate result.

        A blocking check flips a TRADE decision to BLOCK.
        """
        vix = check.details.get("vix")
        self.volatility = vix
        for i, g in enumerate(self.gate_results):
            if g.gate != SESSION:
                continue
            details = dict(g.details)
            details["volatility"] = {
                "status": check.status.value,
                "vix": vix,
                "reason": check.reason,
            }
            self.gate_results[i] = GateResult(g.gate, g.passed, g.reason, g.score, details)
            break
        if not check.allowed and self.outcome == Outcome.TRADE:
            self.outcome = Outcome.BLOCK
            self.block_reason = check.reason

    def to_dict(self) -> dict[str, Any]:
        regime: dict[str, Any] = {"session": self.session, "timeframe": self.regime.value}
        if self.volatility is not None:
            regime["volatility"] = self.volatility
        out: dict[str, Any] = {
            "signal_id": self.signal_id,
            "symbol": self.symbol,
            "direction": self.direction.value,
            "decision": self.outcome.value,
            "trade_mode": self.trade_mode.value if self.trade_mode else None,
            "block_reason": self.block_reason,
            "gate_results": [g.to_dict() for g in self.gate_results],
            "signals": {"primary": self.primary, "confirmations": list(self.confirmations)},
            "score_breakdown": {
                "total": self.score_breakdown.total,
                "by_family": {
                    k: v for k, v in self.score_breakdown.to_dict().items() if k != "total"
                },
            },
            "regime": regime,
            "risk_calculation": self.risk.to_dict(),
            "created_at": self.created_at.isoformat(),
        }
        if self.strategy is not None:
            out["strategy"] = self.strategy.value
        if self.conviction is not None:
            out["conviction"] = self.conviction.value
        if self.plan is not None:
            out["plan"] = self.plan.to_dict()
        return out


@dataclass(frozen=True)
class EngineConfig:
    account_size: float = 100_000.0
    risk_percent: float = 0.01
    min_confidence: float = 5.5
    min_confluence: int = 2
    min_confirmations: int = 2
    reversal_min_rr: float = 3.0

    def __post_init__(self) -> None:
        if self.account_size <= 0:
            raise ValueError("account_size must be > 0")
        if not 0 < self.risk_percent <= 1:
            raise ValueError("risk_percent must be in (0, 1]")
        if self.min_confirmations < 0:
            raise ValueError("min_confirmations must be >= 0")

    @property
    def base_risk(self) -> float:
        return self.account_size * self.risk_percent


# ---------------------------------------------------------------------------
# Session window
# ---------------------------------------------------------------------------


def _market_time(now: datetime) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(MARKET_TZ)


def is_market_open(now: datetime, regime: Regime | None = None) -> bool:
    """Weekday trading window in New York time.

    ``regime=None`` is the directional window (09:30-16:00). INTRADAY trims
    the first and last 15 minutes; LEAPS accepts any time on a weekday.
    """
    local = _market_time(now)
    if local.weekday() >= 5:
        return False
    if regime == Regime.LEAPS:
        return True
    opens, closes = REGULAR_OPEN, REGULAR_CLOSE
    if regime == Regime.INTRADAY:
        opens, closes = INTRADAY_OPEN, INTRADAY_CLOSE
    return opens <= local.time() < closes


def risk_reward(signal: Signal) -> float:
    if signal.direction == Direction.LONG:
        risk = signal.entry_price - signal.stop_loss
        reward = signal.take_profit_1 - signal.entry_price
    else:
        risk = signal.stop_loss - signal.entry_price
        reward = signal.entry_price - signal.take_profit_1
    if risk <= 0:
        return 0.0
    return reward / risk


def trade_mode_for(breakdown: ScoreBreakdown) -> TradeMode:
    scores = breakdown.to_dict()
    ms, liq, vol = scores[MARKET_STRUCTURE], scores[LIQUIDITY], scores[VOLUME]
    if liq > ms and liq > vol:
        return TradeMode.REVERSAL
    if vol > ms and vol > liq:
        return TradeMode.BREAKOUT
    return TradeMode.TREND


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass
class GateContext:
    """Working state shared by the gate steps of one evaluation."""

    signal: Signal
    regime: RegimeConfig
    now: datetime
    decision: Decision
    weights: dict[str, float] = field(default_factory=dict)


Step = Callable[[GateContext], GateResult]


class GateEngine:
    """Directional gate pipeline.

    Subclasses extend :meth:`steps` to insert gates; each step returns a
    GateResult and may record context on the Decision.
    """

    session_reason = "Outside market hours"

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()

    def classify(self, signal: Signal) -> Regime:
        return classify_timeframe(signal)

    def steps(self) -> list[Step]:
        return [
            self.check_integrity,
            self.check_session,
            self.check_factorization,
            self.check_roles,
            self.check_mode,
            self.check_sizing,
        ]

    def new_decision(self, signal: Signal, regime: Regime) -> Decision:
        return Decision(
            signal_id=signal.signal_id,
            symbol=signal.symbol,
            direction=signal.direction,
            outcome=Outcome.TRADE,
            regime=regime,
            primary=signal.active_signals[0] if signal.active_signals else "",
        )

    def evaluate(self, signal: Signal, now: datetime | None = None) -> Decision:
        now = now or datetime.now(timezone.utc)
        regime = self.classify(signal)
        decision = self.new_decision(signal, regime)
        ctx = GateContext(
            signal=signal,
            regime=regime_config(regime),
            now=now,
            decision=decision,
            weights=weights_for(regime),
        )
        for step in self.steps():
            result = step(ctx)
            decision.append_gate(result)
            if not result.passed:
                break

        if decision.is_trade:
            logger.info(
                "Decision: %s %s %s (%s)",
                signal.symbol, signal.direction.value, decision.outcome.value,
                decision.trade_mode.value if decision.trade_mode else "",
            )
        else:
            logger.info(
                "Decision: %s %s %s (%s)",
                signal.symbol, signal.direction.value, decision.outcome.value,
                decision.block_reason,
            )
        return decision

    # -- gates -------------------------------------------------------------

    def check_integrity(self, ctx: GateContext) -> GateResult:
        s = ctx.signal
        cfg = self.config
        reason = None
        if s.confidence < cfg.min_confidence:
            reason = f"Confidence too low ({s.confidence:g} < {cfg.min_confidence:g})"
        elif s.confluence_count < cfg.min_confluence:
            reason = f"Insufficient confluence ({s.confluence_count} < {cfg.min_confluence})"
        elif not s.active_signals:
            reason = "No active signals"
        elif not (s.entry_price > 0 and s.stop_loss > 0 and s.take_profit_1 > 0):
            reason = "Missing required fields"
        return GateResult(INTEGRITY, reason is None, reason)

    def session_window(self, ctx: GateContext) -> Regime | None:
        return None

    def check_session(self, ctx: GateContext) -> GateResult:
        open_ = is_market_open(ctx.now, self.session_window(ctx))
        return GateResult(SESSION, open_, None if open_ else self.session_reason)

    def check_factorization(self, ctx: GateContext) -> GateResult:
        breakdown = score_signals(ctx.signal.active_signals, ctx.weights)
        ctx.decision.score_breakdown = breakdown
        threshold = ctx.regime.score_threshold
        passed = breakdown.total >= threshold
        reason = None if passed else (
            f"Total score {breakdown.total:.2f} below threshold {threshold:g}"
        )
        return GateResult(FACTORIZATION, passed, reason, score=breakdown.total)

    def check_roles(self, ctx: GateContext) -> GateResult:
        roles = assign_roles(ctx.signal.active_signals, ctx.weights)
        ctx.decision.primary = roles.primary or ""
        ctx.decision.confirmations = roles.confirmations
        passed = len(roles.confirmations) >= self.config.min_confirmations
        reason = None if passed else "Insufficient confirmations from different families"
        return GateResult(ROLES, passed, reason)

    def min_rr(self, ctx: GateContext, mode: TradeMode) -> float:
        if mode == TradeMode.REVERSAL:
            return max(ctx.regime.min_rr, self.config.reversal_min_rr)
        return ctx.regime.min_rr

    def check_mode(self, ctx: GateContext) -> GateResult:
        mode = trade_mode_for(ctx.decision.score_breakdown)
        ctx.decision.trade_mode = mode
        rr = risk_reward(ctx.signal)
        ctx.decision.risk = RiskCalculation(risk_reward=rr)
        minimum = self.min_rr(ctx, mode)
        passed = rr >= minimum
        reason = None if passed else f"Risk/reward {rr:.2f} below minimum {minimum:g}"
        return GateResult(MODE, passed, reason, score=rr)

    def adjusted_risk(self, ctx: GateContext) -> float:
        risk = self.config.base_risk * ctx.regime.risk_multiplier
        if ctx.decision.trade_mode == TradeMode.REVERSAL:
            risk *= 0.5
        return risk

    def size(self, ctx: GateContext, adjusted: float) -> tuple[int, PositionSizing | None]:
        signal = ctx.signal
        return size_shares(signal.entry_price, signal.stop_loss, adjusted), None

    def check_sizing(self, ctx: GateContext) -> GateResult:
        adjusted = self.adjusted_risk(ctx)
        quantity, sizing = self.size(ctx, adjusted)
        ctx.decision.risk = RiskCalculation(
            base_risk=self.config.base_risk,
            adjusted_risk=adjusted,
            quantity=quantity,
            risk_reward=ctx.decision.risk.risk_reward,
            sizing=sizing,
        )
        passed = quantity >= 1
        reason = None if passed else "Invalid position size calculated"
        return GateResult(SIZING, passed, reason)


def run_decision_engine(
    signal: Signal,
    *,
    now: datetime | None = None,
    config: EngineConfig | None = None,
) -> Decision:
    """Evaluate a directional signal."""
    return GateEngine(config).evaluate(signal, now)
