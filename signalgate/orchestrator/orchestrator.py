"""Auto-trade orchestrator — runs an automated paper or shadow session.

Signals arrive on a bounded queue and are consumed in order by a single
worker task, so every admission mutation (daily counters, cooldowns,
open positions) is serialized. Per signal:

  pre-checks (schedule, timeframe, duplicate, cooldown)
  -> gate engine (options engine with strike selection for options symbols)
  -> volatility check -> admission stage -> decision log + audit
  -> on TRADE outside SHADOW mode: simulated order, exit rules, trade record

The kill switch flattens every open position best-effort, disables the
session and persists its state.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping

from signalgate.audit.jsonl import DecisionLogger
from signalgate.audit.questdb_writer import AuditWriterConfig, DecisionAuditWriter
from signalgate.decision.gates import Decision, GateResult, Outcome, run_decision_engine
from signalgate.decision.options_engine import run_options_decision_engine
from signalgate.decision.timeframe import classify_timeframe
from signalgate.execution.monitor import (
    ExitReason,
    MonitorFailure,
    MonitorReport,
    PaperTrade,
    PositionMonitor,
    close_trade,
    split_trade,
)
from signalgate.execution.orders import (
    Order,
    OrderResult,
    OrderSide,
    OrderType,
    new_order_id,
)
from signalgate.execution.simulator import ExecutionSimulator
from signalgate.marketdata.provider import (
    MarketDataProvider,
    iv_rank_or_default,
    resolve_provider,
)
from signalgate.marketdata.retry import RetryingMarketData
from signalgate.options.events import EventCalendar
from signalgate.options.exits import ExitRule, ExitTrigger, generate_exit_rules
from signalgate.options.portfolio_greeks import PortfolioGreeks, calculate_portfolio_greeks
from signalgate.options.strategy import StrategyPlan
from signalgate.options.strikes import StrikeCriteria, StrikeSelectionError, StrikeSelector
from signalgate.options.types import CONTRACT_MULTIPLIER, Greeks, OptionSnapshot
from signalgate.orchestrator.config import AutoTradeConfig, TradingMode
from signalgate.orchestrator.state_machine import (
    ControlAction,
    SessionState,
    SessionStateMachine,
    TransitionResult,
)
from signalgate.session.admission import AdmissionGuard
from signalgate.session.cooldowns import CooldownGuard, CooldownStore, InMemoryCooldownStore
from signalgate.session.limits import DailyLimitGuard, DailyLimitRecord, PositionLimitGuard
from signalgate.session.volatility import VolatilityGuard
from signalgate.signals.duplicates import DuplicateDetector, SignalLog
from signalgate.signals.signal import Direction, Signal

logger = logging.getLogger(__name__)

SCHEDULE = "Trading Schedule"
TIMEFRAME = "Timeframe Enabled"
DUPLICATE = "Duplicate Check"
COOLDOWN = "Cooldown"
STRIKE_SELECTION = "Strike Selection"


class OrchestratorError(Exception):
    """Invalid session control request."""


@dataclass(frozen=True)
class CloseFailure:
    symbol: str
    error: str
    trade_id: str | None = None


@dataclass
class KillSwitchReport:
    transition: TransitionResult
    closed: list[PaperTrade] = field(default_factory=list)
    failures: list[CloseFailure] = field(default_factory=list)


@dataclass
class SessionCounters:
    signals_generated: int = 0
    trades_executed: int = 0
    trades_blocked: int = 0
    orders_rejected: int = 0
    session_start: datetime | None = None

    def reset(self, now: datetime) -> None:
        self.signals_generated = 0
        self.trades_executed = 0
        self.trades_blocked = 0
        self.orders_rejected = 0
        self.session_start = now

    def to_dict(self) -> dict[str, Any]:
        return {
            "signals_generated": self.signals_generated,
            "trades_executed": self.trades_executed,
            "trades_blocked": self.trades_blocked,
            "orders_rejected": self.orders_rejected,
            "session_start": self.session_start.isoformat() if self.session_start else None,
        }


def _blocked(signal: Signal, gate: str, reason: str) -> Decision:
    decision = Decision(
        signal_id=signal.signal_id,
        symbol=signal.symbol,
        direction=signal.direction,
        outcome=Outcome.TRADE,
        regime=classify_timeframe(signal),
        primary=signal.active_signals[0] if signal.active_signals else "",
    )
    decision.append_gate(GateResult(gate, False, reason))
    return decision


def snapshot_from_plan(
    plan: StrategyPlan, underlying_price: float, iv_rank: float | None,
) -> OptionSnapshot:
    """Option snapshot of the plan's primary leg.

    ``current_price`` is the leg premium and the spread is relative to mid.
    """
    leg = plan.primary
    spread = None
    if leg.ask > 0 and leg.bid > 0:
        spread = (leg.ask - leg.bid) / ((leg.ask + leg.bid) / 2.0)
    return OptionSnapshot(
        strike=leg.strike,
        expiration=leg.expiration,
        option_type=leg.option_type,
        current_price=leg.entry_price or underlying_price,
        implied_volatility=leg.implied_volatility,
        iv_rank=iv_rank,
        greeks=leg.greeks,
        bid_ask_spread=spread,
        open_interest=leg.open_interest,
        volume=leg.volume,
    )


class Orchestrator:
    """One auto-trade session, owned by the process that constructs it."""

    def __init__(
        self,
        config: AutoTradeConfig | None = None,
        *,
        provider: MarketDataProvider | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
        signal_log: SignalLog | None = None,
        cooldown_store: CooldownStore | None = None,
        calendar: EventCalendar | None = None,
        audit: AuditWriterConfig | None = None,
        decision_logger: DecisionLogger | None = None,
        state_path: Path | None = None,
    ) -> None:
        self.config = config or AutoTradeConfig()
        cfg = self.config
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        provider = provider or resolve_provider(cfg.data_source)
        if not isinstance(provider, RetryingMarketData):
            provider = RetryingMarketData(
                provider, attempts=cfg.provider_retries, delay_s=cfg.provider_retry_delay_s,
            )
        self.provider = provider
        self.state = SessionStateMachine(cfg.mode.value, audit=audit)
        self.counters = SessionCounters()
        self.state_path = Path(state_path) if state_path else None

        self.duplicates = DuplicateDetector(signal_log)
        self.cooldowns = CooldownGuard(
            cooldown_store if cooldown_store is not None else InMemoryCooldownStore(),
            cfg.cooldowns,
            clock=self._clock,
        )
        self.volatility = VolatilityGuard(self.provider, cfg.vix_threshold)
        self.daily = DailyLimitGuard(cfg.daily_limits())
        self.admission = AdmissionGuard(
            self.daily,
            PositionLimitGuard(cfg.position_limits()),
            greeks_limits=cfg.greeks_limits,
            calendar=calendar,
        )
        self.strikes = StrikeSelector(self.provider)
        self.monitor = PositionMonitor()
        self.simulator = ExecutionSimulator(
            self._price, cfg.execution, rng, clock=self._clock,
        )
        self.audit_writer = (
            DecisionAuditWriter(audit, mode=cfg.mode.value, algorithm_version=cfg.algorithm_version)
            if audit is not None
            else None
        )
        self.decision_logger = decision_logger

        self._trades: dict[str, PaperTrade] = {}
        self._closed: list[PaperTrade] = []
        self._unit_greeks: dict[str, Greeks] = {}
        self._marks: dict[str, float] = {}
        self._queue: asyncio.Queue[Signal] | None = None
        self._worker: asyncio.Task | None = None
        self._intake: asyncio.Event | None = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def open_trades(self) -> list[PaperTrade]:
        return list(self._trades.values())

    @property
    def closed_trades(self) -> list[PaperTrade]:
        return list(self._closed)

    def total_exposure(self) -> float:
        return sum(t.value for t in self._trades.values())

    def open_values(self) -> dict[str, float]:
        values: dict[str, float] = {}
        for t in self._trades.values():
            values[t.symbol] = values.get(t.symbol, 0.0) + t.value
        return values

    def portfolio_greeks(self) -> PortfolioGreeks:
        return calculate_portfolio_greeks(
            self._unit_greeks[t.trade_id].scaled(t.quantity)
            for t in self._trades.values()
            if t.trade_id in self._unit_greeks
        )

    def status(self) -> dict[str, Any]:
        now = self._clock()
        record = self.daily.record(now)
        cfg = self.config
        return {
            "state": self.state.state.value,
            "enabled": cfg.enabled,
            "mode": cfg.mode.value,
            "is_running": self.state.is_running,
            "is_paused": self.state.is_paused,
            **self.counters.to_dict(),
            "daily_trades": record.trades_count,
            "max_daily_trades": cfg.max_daily_trades,
            "trades_remaining": max(0, cfg.max_daily_trades - record.trades_count),
            "daily_pnl": record.daily_pnl,
            "current_drawdown": record.max_drawdown,
            "max_daily_loss": cfg.max_daily_loss,
            "max_drawdown_reached": record.daily_pnl <= -cfg.max_daily_loss,
            "daily_limit_reached": record.trades_count >= cfg.max_daily_trades,
            "open_positions": len(self._trades),
            "total_exposure": self.total_exposure(),
            "queue_depth": self._queue.qsize() if self._queue is not None else 0,
            "algorithm_version": cfg.algorithm_version,
        }

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    async def start(self) -> TransitionResult:
        if self.state.is_running:
            return self.state.transition(ControlAction.START)
        if not self.config.enabled:
            raise OrchestratorError("Auto-trading is disabled in config")
        if self.config.mode == TradingMode.LIVE:
            raise OrchestratorError("LIVE mode is not supported; use PAPER or SHADOW")

        result = self.state.transition(
            ControlAction.START, details={"mode": self.config.mode.value},
        )
        if result.changed:
            self.counters.reset(self._clock())
            self._queue = asyncio.Queue(maxsize=self.config.queue_size)
            self._intake = asyncio.Event()
            self._intake.set()
            self._worker = asyncio.create_task(self._run_worker())
            logger.info(
                "Auto-trade session started: mode=%s algorithm=%s",
                self.config.mode.value, self.config.algorithm_version,
            )
        return result

    async def stop(self) -> TransitionResult:
        result = self.state.transition(ControlAction.STOP)
        if result.changed:
            await self._stop_worker()
            logger.info("Auto-trade session stopped: %s", self.counters.to_dict())
        return result

    async def pause(self) -> TransitionResult:
        result = self.state.transition(ControlAction.PAUSE)
        if result.changed and self._intake is not None:
            self._intake.clear()
        return result

    async def resume(self) -> TransitionResult:
        result = self.state.transition(ControlAction.RESUME)
        if result.changed and self._intake is not None:
            self._intake.set()
        return result

    async def kill_switch(self, reason: str = "manual") -> KillSwitchReport:
        """Flatten every open trade, disable the session and save state.

        Each position is closed independently; failures are collected and
        never stop the remaining closes. A partly filled close books the
        filled units; the remainder stays tracked and is reported as a
        failure.
        """
        transition = self.state.transition(ControlAction.KILL, details={"reason": reason})
        report = KillSwitchReport(transition)
        if not transition.changed:
            return report

        await self._stop_worker()
        now = self._clock()
        for trade in list(self._trades.values()):
            try:
                if trade.is_option:
                    self._refresh_mark(trade)
                await self._flatten(trade, now, report.closed)
            except Exception as exc:
                logger.error(
                    "Kill switch failed to close %s %s: %s",
                    trade.symbol, trade.trade_id, exc, exc_info=True,
                )
                report.failures.append(CloseFailure(trade.symbol, str(exc), trade.trade_id))

        self.config = replace(self.config, enabled=False)
        logger.warning(
            "Kill switch complete: %d closed, %d failed (%s)",
            len(report.closed), len(report.failures), reason,
        )
        if self.state_path is not None:
            self.save_state(self.state_path)
        return report

    # ------------------------------------------------------------------
    # Signal intake
    # ------------------------------------------------------------------

    def _require_intake(self) -> asyncio.Queue[Signal]:
        if not self.state.accepts_signals or self._queue is None:
            raise OrchestratorError(
                f"Session is {self.state.state.value}, not accepting signals"
            )
        return self._queue

    async def submit_signal(self, signal: Signal) -> None:
        """Queue a signal, waiting for room when the queue is full."""
        await self._require_intake().put(signal)

    def try_submit(self, signal: Signal) -> bool:
        """Queue a signal without waiting. False when full or not accepting."""
        try:
            self._require_intake().put_nowait(signal)
        except (OrchestratorError, asyncio.QueueFull):
            return False
        return True

    async def drain(self) -> None:
        """Wait until every queued signal has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def _run_worker(self) -> None:
        queue, intake = self._queue, self._intake
        while True:
            signal = await queue.get()
            try:
                await intake.wait()
                await self.process_signal(signal)
            except Exception as exc:
                logger.error("Signal processing failed for %s: %s", signal.symbol, exc, exc_info=True)
            finally:
                queue.task_done()

    async def _stop_worker(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        if self._queue is not None and not self._queue.empty():
            logger.warning("Dropping %d queued signals", self._queue.qsize())
        self._queue = None
        self._intake = None

    # ------------------------------------------------------------------
    # Per-signal flow
    # ------------------------------------------------------------------

    def _pre_check(self, signal: Signal, now: datetime) -> Decision | None:
        if not self.config.schedule.contains(now):
            return _blocked(signal, SCHEDULE, "Outside trading schedule")

        regime = classify_timeframe(signal)
        if self.config.timeframe_weights.get(regime.value, 1.0) <= 0:
            return _blocked(signal, TIMEFRAME, f"Timeframe {regime.value} is disabled")

        check = self.duplicates.check(signal)
        if not check.allowed:
            return _blocked(signal, DUPLICATE, check.reason)

        check = self.cooldowns.check_all(signal.symbol, signal.signal_type, now)
        if not check.allowed:
            return _blocked(signal, COOLDOWN, check.reason)
        return None

    def _evaluate(self, signal: Signal, now: datetime) -> Decision:
        cfg = self.config
        if not cfg.is_options_symbol(signal.symbol):
            return run_decision_engine(signal, now=now, config=cfg.engine_config())

        iv_rank = iv_rank_or_default(self.provider, signal.symbol)
        decision = run_options_decision_engine(
            signal, now=now, config=cfg.engine_config(), sizing=cfg.sizing_config(),
            iv_rank=iv_rank,
        )
        if not decision.is_trade:
            return decision

        try:
            underlying = self.provider.get_current_price(signal.symbol)
        except Exception as exc:
            logger.warning("No underlying price for %s, using entry: %s", signal.symbol, exc)
            underlying = signal.entry_price
        criteria = StrikeCriteria(
            symbol=signal.symbol,
            strategy=decision.strategy,
            regime=decision.regime,
            direction=signal.direction,
            underlying_price=underlying,
        )
        try:
            selection = self.strikes.select(criteria, now)
        except StrikeSelectionError as exc:
            decision.append_gate(GateResult(STRIKE_SELECTION, False, str(exc)))
            return decision

        plan = selection.to_plan()
        return run_options_decision_engine(
            signal,
            snapshot_from_plan(plan, underlying, iv_rank),
            plan,
            now=now,
            dte=selection.dte,
            config=cfg.engine_config(),
            sizing=cfg.sizing_config(),
            iv_rank=iv_rank,
        )

    async def process_signal(self, signal: Signal, now: datetime | None = None) -> Decision:
        """Run one signal through the whole flow and return its Decision."""
        now = now or self._clock()
        self.counters.signals_generated += 1

        decision = self._pre_check(signal, now)
        if decision is None:
            volatility = self.volatility.check()
            decision = self._evaluate(signal, now)
            decision.attach_volatility(volatility)
            self.admission.admit(
                decision,
                signal,
                open_values=self.open_values(),
                open_count=len(self._trades),
                portfolio=self.portfolio_greeks(),
                now=now,
            )
        self.duplicates.mark_processed(signal)
        self._log_decision(decision)

        if not decision.is_trade:
            self.counters.trades_blocked += 1
        elif self.config.mode == TradingMode.SHADOW:
            logger.info("Shadow mode: %s %s logged, not executed", signal.symbol, signal.direction.value)
        else:
            await self._execute(signal, decision, now)
        return decision

    def _log_decision(self, decision: Decision) -> None:
        if self.decision_logger is not None:
            try:
                self.decision_logger.log_decision(decision)
            except OSError as exc:
                logger.error("Failed to append decision log: %s", exc)
        if self.audit_writer is not None:
            self.audit_writer.log_decision(decision)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _price(self, symbol: str) -> float:
        if symbol in self._marks:
            return self._marks[symbol]
        return self.provider.get_current_price(symbol)

    @staticmethod
    def _order_symbol(trade: PaperTrade) -> str:
        return f"{trade.symbol}:{trade.position_key}" if trade.is_option else trade.symbol

    def _build_trade(
        self, signal: Signal, decision: Decision, trade_id: str, now: datetime,
    ) -> tuple[PaperTrade, Order]:
        plan = decision.plan
        quantity = decision.risk.quantity
        if plan is None:
            side = OrderSide.BUY if signal.direction == Direction.LONG else OrderSide.SELL
            trade = PaperTrade(
                symbol=signal.symbol,
                direction=signal.direction,
                entry_price=signal.entry_price,
                quantity=quantity,
                stop_loss=signal.stop_loss,
                take_profit_1=signal.take_profit_1,
                take_profit_2=signal.take_profit_2,
                take_profit_3=signal.take_profit_3,
                signal_id=signal.signal_id,
                signal_type=signal.signal_type,
                opened_at=now,
                trade_id=trade_id,
            )
            return trade, Order(symbol=signal.symbol, side=side, quantity=quantity)

        premium = abs(plan.net_premium)
        debit = plan.net_premium > 0
        rules = tuple(generate_exit_rules(decision.regime, plan.strategy))
        stop = next(r.trigger for r in rules if r.trigger_type == ExitTrigger.STOP_LOSS)
        trade = PaperTrade(
            symbol=signal.symbol,
            direction=Direction.LONG if debit else Direction.SHORT,
            entry_price=premium,
            quantity=quantity,
            stop_loss=premium * (1 + stop) if debit else premium * (1 - stop),
            take_profit_1=premium * 1.5 if debit else premium * 0.5,
            take_profit_2=premium * 2.0 if debit else None,
            signal_id=signal.signal_id,
            signal_type=signal.signal_type,
            strategy=plan.strategy.value,
            multiplier=CONTRACT_MULTIPLIER,
            legs=plan.legs,
            expiration=plan.primary.expiration,
            entry_iv=plan.primary.implied_volatility,
            exit_rules=rules,
            opened_at=now,
            trade_id=trade_id,
        )
        order = Order(
            symbol=self._order_symbol(trade),
            side=OrderSide.BUY if debit else OrderSide.SELL,
            quantity=quantity,
            order_type=OrderType.LIMIT,
            limit_price=premium,
            multiplier=CONTRACT_MULTIPLIER,
            legs=plan.legs,
        )
        return trade, order

    async def _execute(self, signal: Signal, decision: Decision, now: datetime) -> PaperTrade | None:
        trade, order = self._build_trade(signal, decision, new_order_id(), now)
        if trade.is_option:
            self._marks[order.symbol] = trade.entry_price

        result = await self.simulator.submit_order(order)
        if not result.is_filled:
            self.counters.orders_rejected += 1
            self._marks.pop(order.symbol, None)
            logger.warning(
                "Order for %s not filled: %s %s", signal.symbol, result.status.value, result.reason,
            )
            return None

        trade = replace(trade, entry_price=result.fill.price, quantity=result.filled_qty)
        self._trades[trade.trade_id] = trade
        sizing = decision.risk.sizing
        if sizing is not None and sizing.contracts > 0:
            self._unit_greeks[trade.trade_id] = sizing.greeks.scaled(1 / sizing.contracts)

        self.daily.record_trade(now)
        self.cooldowns.record_trade(signal.symbol, signal.signal_type, now)
        self.counters.trades_executed += 1
        logger.info(
            "Opened %s %s x%d @ %.2f (%s)",
            trade.symbol, trade.direction.value, trade.quantity, trade.entry_price,
            trade.strategy or "shares",
        )
        return trade

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def _option_mark(self, trade: PaperTrade) -> tuple[float, float]:
        """Per-unit premium mark and primary-leg IV from the current chain."""
        chain = self.provider.get_options_chain(trade.symbol, trade.expiration)
        rows = {row.strike: row for row in chain.strikes}
        net = 0.0
        iv = trade.entry_iv
        for leg in trade.legs:
            row = rows.get(leg.strike)
            quote = row.quote(leg.option_type) if row is not None else None
            if quote is None:
                raise StrikeSelectionError(
                    f"No {leg.option_type.value} quote at {leg.strike} for {trade.symbol}"
                )
            net += quote.mid * leg.quantity
            if leg.quantity > 0:
                iv = quote.implied_volatility
        return abs(net), iv

    def _refresh_mark(self, trade: PaperTrade) -> None:
        try:
            self._marks[self._order_symbol(trade)] = self._option_mark(trade)[0]
        except Exception as exc:
            logger.warning("Using last mark for %s %s: %s", trade.symbol, trade.trade_id, exc)

    def _settle(
        self, trade: PaperTrade, price: float, reason: ExitReason, now: datetime,
    ) -> PaperTrade:
        closed = close_trade(trade, price, reason, now)
        self._record_closed(closed, now)
        self._forget(trade)
        return closed

    def _settle_part(
        self,
        trade: PaperTrade,
        quantity: int,
        price: float,
        reason: ExitReason,
        now: datetime,
        rule: ExitRule | None = None,
    ) -> tuple[PaperTrade, PaperTrade]:
        """Book ``quantity`` units of an open trade as closed; the rest stays open."""
        n = sum(1 for t in self._closed if t.position_key == trade.position_key)
        part, rest = split_trade(trade, quantity, part_id=f"{trade.position_key}-f{n + 1}")
        closed = close_trade(part, price, reason, now, rule)
        self._record_closed(closed, now)
        self._trades[rest.trade_id] = rest
        return closed, rest

    async def _flatten(self, trade: PaperTrade, now: datetime, closed: list[PaperTrade]) -> None:
        """Close ``trade`` with one market order.

        Raises when the close is rejected or fills only in part; a filled
        part is booked first and the remainder stays open.
        """
        result = await self.simulator.close_position(self._order_symbol(trade), trade.quantity)
        if not result.is_filled:
            raise RuntimeError(result.reason or result.status.value)
        if result.filled_qty >= trade.quantity:
            closed.append(self._settle(trade, result.fill.price, ExitReason.KILL_SWITCH, now))
            return
        part, rest = self._settle_part(
            trade, result.filled_qty, result.fill.price, ExitReason.KILL_SWITCH, now,
        )
        closed.append(part)
        raise RuntimeError(
            f"Partial fill {part.quantity}/{trade.quantity}: {rest.quantity} units still open"
        )

    def _forget(self, trade: PaperTrade) -> None:
        self._trades.pop(trade.trade_id, None)
        self._unit_greeks.pop(trade.trade_id, None)
        self._marks.pop(self._order_symbol(trade), None)

    def _record_closed(self, closed: PaperTrade, now: datetime) -> None:
        self._closed.append(closed)
        self.daily.record_pnl(closed.pnl, now)
        if self.audit_writer is not None:
            self.audit_writer.log_trade(closed)

    async def monitor_positions(
        self,
        prices: Mapping[str, float] | None = None,
        now: datetime | None = None,
    ) -> MonitorReport:
        """Check every open trade against its exits.

        Directional trades use ``prices`` (falling back to the provider);
        options trades are marked from the current chain.

        A trade is booked as closed only for the units the simulator
        filled. A rejected close leaves the trade as it was before the
        tick, a partial fill closes the filled units, and both are listed
        in ``failures`` so the exit is retried on the next tick.
        """
        now = now or self._clock()
        marks: dict[str, float] = {}
        ivs: dict[str, float] = {}
        for trade in self._trades.values():
            try:
                if trade.is_option:
                    marks[trade.trade_id], ivs[trade.trade_id] = self._option_mark(trade)
                elif prices is not None and trade.symbol in prices:
                    marks[trade.trade_id] = prices[trade.symbol]
                else:
                    marks[trade.trade_id] = self.provider.get_current_price(trade.symbol)
            except Exception as exc:
                logger.warning("No mark for %s %s: %s", trade.symbol, trade.trade_id, exc)

        before = dict(self._trades)
        report = self.monitor.monitor_all(
            list(before.values()), lambda t: marks[t.trade_id], now, ivs,
        )
        for trade in report.updated:
            self._trades[trade.trade_id] = trade

        settled: list[PaperTrade] = []
        for closed in report.closed:
            key = self._order_symbol(closed)
            if closed.is_option:
                self._marks[key] = closed.exit_price
            result: OrderResult = await self.simulator.close_position(key, closed.quantity)
            filled = min(result.filled_qty, closed.quantity) if result.is_filled else 0
            if filled == closed.quantity:
                self._record_closed(closed, now)
                if closed.trade_id in self._trades:
                    self._forget(closed)
                settled.append(closed)
                continue

            error = (
                f"Close filled {filled}/{closed.quantity}: "
                f"{result.reason or result.status.value}"
            )
            logger.warning("Simulator close for %s %s", key, error)
            report.failures.append(MonitorFailure(closed.trade_id, closed.symbol, error))
            # Open trades are keyed by their position; a split part points back at it.
            open_id = closed.position_key
            if filled == 0:
                self._trades[open_id] = before[open_id]
                continue
            if closed.trade_id == open_id:
                base = before[open_id]
            else:
                rest = self._trades[open_id]
                base = replace(rest, quantity=rest.quantity + closed.quantity)
            part, _ = self._settle_part(
                base, filled, closed.exit_price, closed.exit_reason, now, closed.exit_rule,
            )
            settled.append(part)
        report.closed = settled
        return report

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_state(self, path: Path | None = None) -> Path:
        target = Path(path or self.state_path or "autotrade_state.json")
        store = self.cooldowns.store
        state = {
            "state": self.state.state.value,
            "enabled": self.config.enabled,
            "mode": self.config.mode.value,
            "counters": self.counters.to_dict(),
            "daily_limits": self.daily.record(self._clock()).to_dict(),
            "cooldowns": store.snapshot() if hasattr(store, "snapshot") else {},
            "open_trades": [t.to_dict() for t in self._trades.values()],
            "saved_at": self._clock().isoformat(),
        }
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(state, indent=2), encoding="utf-8")
        logger.info("Session state saved to %s", target)
        return target

    def load_state(self, path: Path | None = None) -> None:
        """Restore flags, counters, daily limits and cooldowns.

        A session that was killed stays KILLED; anything else comes back
        STOPPED, since no worker survives a restart.
        """
        source = Path(path or self.state_path or "autotrade_state.json")
        state = json.loads(source.read_text(encoding="utf-8"))

        self.config = replace(
            self.config,
            enabled=bool(state.get("enabled", self.config.enabled)),
            mode=TradingMode(state.get("mode", self.config.mode.value)),
        )
        counters = state.get("counters", {})
        self.counters = SessionCounters(
            signals_generated=int(counters.get("signals_generated", 0)),
            trades_executed=int(counters.get("trades_executed", 0)),
            trades_blocked=int(counters.get("trades_blocked", 0)),
            orders_rejected=int(counters.get("orders_rejected", 0)),
            session_start=(
                datetime.fromisoformat(counters["session_start"])
                if counters.get("session_start")
                else None
            ),
        )
        if state.get("daily_limits"):
            self.daily.restore(DailyLimitRecord.from_dict(state["daily_limits"]))
        store = self.cooldowns.store
        if state.get("cooldowns") and hasattr(store, "restore"):
            store.restore(state["cooldowns"])
        if state.get("open_trades"):
            logger.warning(
                "%d open trades in saved state are not restored", len(state["open_trades"]),
            )

        saved = SessionState(state.get("state", SessionState.STOPPED.value))
        self.state.restore(SessionState.KILLED if saved == SessionState.KILLED else SessionState.STOPPED)
        logger.info("Session state loaded from %s (%s)", source, self.state.state.value)
