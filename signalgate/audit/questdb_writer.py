"""Decision audit logging — writes decisions and closed trades to QuestDB.

Every Decision leaving the admission stage is written to the
``decision_audit`` table, and every closed paper trade to ``paper_trades``,
via QuestDB ILP. Writes never raise: a failed write is logged and the
session carries on.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from questdb.ingress import Protocol, Sender, TimestampNanos

from signalgate.decision.gates import Decision
from signalgate.execution.monitor import PaperTrade

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditWriterConfig:
    ilp_host: str = "localhost"
    ilp_port: int = 9009


def _nanos(ts: datetime) -> TimestampNanos:
    return TimestampNanos(int(ts.timestamp() * 1_000_000_000))


class DecisionAuditWriter:
    """Writes gate decisions to ``decision_audit`` and trades to ``paper_trades``.

    Table schema (decision_audit):
        timestamp TIMESTAMP,
        symbol SYMBOL,
        direction SYMBOL,
        decision SYMBOL,
        timeframe SYMBOL,
        mode SYMBOL,
        signal_id STRING,
        trade_mode STRING,
        block_reason STRING,
        gate_results STRING,
        score_breakdown STRING,
        regime STRING,
        risk_calculation STRING,
        algorithm_version STRING
    """

    def __init__(
        self,
        config: AuditWriterConfig | None = None,
        *,
        mode: str = "PAPER",
        algorithm_version: str = "v1.0",
    ) -> None:
        self._config = config or AuditWriterConfig()
        self._mode = mode
        self._algorithm_version = algorithm_version

    def log_decision(self, decision: Decision) -> None:
        payload = decision.to_dict()
        try:
            with Sender(Protocol.Tcp, self._config.ilp_host, self._config.ilp_port) as sender:
                sender.row(
                    "decision_audit",
                    symbols={
                        "symbol": decision.symbol,
                        "direction": decision.direction.value,
                        "decision": decision.outcome.value,
                        "timeframe": decision.regime.value,
                        "mode": self._mode,
                    },
                    columns={
                        "signal_id": decision.signal_id or "",
                        "trade_mode": payload["trade_mode"] or "",
                        "block_reason": decision.block_reason or "",
                        "gate_results": json.dumps(payload["gate_results"]),
                        "score_breakdown": json.dumps(payload["score_breakdown"]),
                        "regime": json.dumps(payload["regime"]),
                        "risk_calculation": json.dumps(payload["risk_calculation"]),
                        "algorithm_version": self._algorithm_version,
                    },
                    at=_nanos(decision.created_at),
                )
                sender.flush()
        except Exception as exc:
            logger.error("Failed to write decision_audit for %s: %s", decision.symbol, exc)

    def log_trade(self, trade: PaperTrade) -> None:
        """Write a closed trade. Open trades are skipped."""
        if trade.is_open:
            return
        try:
            with Sender(Protocol.Tcp, self._config.ilp_host, self._config.ilp_port) as sender:
                sender.row(
                    "paper_trades",
                    symbols={
                        "symbol": trade.symbol,
                        "direction": trade.direction.value,
                        "exit_reason": trade.exit_reason.value if trade.exit_reason else "",
                        "mode": self._mode,
                    },
                    columns={
                        "trade_id": trade.trade_id,
                        "signal_id": trade.signal_id or "",
                        "strategy": trade.strategy or "",
                        "entry_price": trade.entry_price,
                        "exit_price": trade.exit_price or 0.0,
                        "quantity": trade.quantity,
                        "pnl": trade.pnl,
                        "r_multiple": trade.r_multiple,
                        "duration_minutes": trade.duration_minutes,
                    },
                    at=_nanos(trade.closed_at or datetime.now(timezone.utc)),
                )
                sender.flush()
        except Exception as exc:
            logger.error("Failed to write paper_trades for %s: %s", trade.trade_id, exc)
