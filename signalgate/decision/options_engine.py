"""Options-aware gate engine.

Extends the directional pipeline with a regime-specific session window,
an options structural validation gate after the session gate (only when
an option snapshot is supplied), strategy selection at the mode gate and
Greeks-aware sizing when a StrategyPlan is supplied.
"""

from __future__ import annotations

import logging
from datetime import datetime

from signalgate.decision.gates import (
    Decision,
    EngineConfig,
    GateContext,
    GateEngine,
    GateResult,
    Step,
)
from signalgate.decision.timeframe import Regime, classify_timeframe
from signalgate.options.sizing import PositionSizing, SizingConfig, size_position
from signalgate.options.strategy import (
    StrategyPlan,
    TradeMode,
    conviction_for,
    select_strategy,
)
from signalgate.options.types import OptionSnapshot
from signalgate.options.validation import DEFAULT_IV_RANK, GATE_NAME, validate_options
from signalgate.signals.signal import Signal

logger = logging.getLogger(__name__)


class OptionsGateEngine(GateEngine):
    session_reason = "Outside market hours for timeframe"

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        snapshot: OptionSnapshot | None = None,
        plan: StrategyPlan | None = None,
        dte: int | None = None,
        sizing: SizingConfig | None = None,
        iv_rank: float | None = None,
    ) -> None:
        super().__init__(config)
        self.snapshot = snapshot
        self.iv_rank = iv_rank
        self.plan = plan
        self.dte = dte
        self.sizing = sizing or SizingConfig(
            account_size=self.config.account_size, risk_percent=self.config.risk_percent,
        )

    def classify(self, signal: Signal) -> Regime:
        return classify_timeframe(signal, self.dte)

    def steps(self) -> list[Step]:
        steps = super().steps()
        if self.snapshot is not None:
            steps.insert(2, self.check_options)
        return steps

    def new_decision(self, signal: Signal, regime: Regime) -> Decision:
        decision = super().new_decision(signal, regime)
        decision.conviction = conviction_for(signal.confidence)
        decision.plan = self.plan
        return decision

    def session_window(self, ctx: GateContext) -> Regime | None:
        return ctx.regime.regime

    def check_options(self, ctx: GateContext) -> GateResult:
        snapshot = self.snapshot or OptionSnapshot()
        result = validate_options(snapshot, ctx.signal, ctx.regime, ctx.now)
        details = {"checks": {c.name: c.passed for c in result.checks}}
        return GateResult(
            GATE_NAME, result.passed, None if result.passed else result.reason, details=details,
        )

    def check_mode(self, ctx: GateContext) -> GateResult:
        result = super().check_mode(ctx)
        iv_rank = self.iv_rank if self.iv_rank is not None else DEFAULT_IV_RANK
        if self.snapshot is not None and self.snapshot.iv_rank is not None:
            iv_rank = self.snapshot.iv_rank
        ctx.decision.strategy = select_strategy(
            ctx.signal.direction,
            ctx.decision.trade_mode or TradeMode.TREND,
            ctx.regime.regime,
            iv_rank,
            ctx.decision.conviction or conviction_for(ctx.signal.confidence),
        )
        if self.plan is not None and self.plan.strategy != ctx.decision.strategy:
            logger.info(
                "Strategy %s replaced by selected plan %s",
                ctx.decision.strategy.value, self.plan.strategy.value,
            )
            ctx.decision.strategy = self.plan.strategy
        return result

    def size(self, ctx: GateContext, adjusted: float) -> tuple[int, PositionSizing | None]:
        if self.plan is None:
            return super().size(ctx, adjusted)
        sizing = size_position(
            self.plan, ctx.regime, ctx.decision.trade_mode or TradeMode.TREND, self.sizing,
        )
        return sizing.contracts, sizing


def run_options_decision_engine(
    signal: Signal,
    snapshot: OptionSnapshot | None = None,
    plan: StrategyPlan | None = None,
    *,
    now: datetime | None = None,
    dte: int | None = None,
    config: EngineConfig | None = None,
    sizing: SizingConfig | None = None,
    iv_rank: float | None = None,
) -> Decision:
    """Evaluate a signal for an options trade."""
    engine = OptionsGateEngine(
        config, snapshot=snapshot, plan=plan, dte=dte, sizing=sizing, iv_rank=iv_rank,
    )
    return engine.evaluate(signal, now)
