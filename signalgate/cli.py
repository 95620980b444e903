"""CLI entry points for signal evaluation and session replay.

Usage:
    python -m signalgate.cli evaluate --signal-json '{...}' [--options-json '{...}'] [--at ISO]
    python -m signalgate.cli replay --signals signals.jsonl [--mode PAPER|SHADOW] [--out decisions.jsonl]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import random
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from signalgate.audit.jsonl import DecisionLogger
from signalgate.decision.gates import run_decision_engine
from signalgate.decision.options_engine import run_options_decision_engine
from signalgate.marketdata.provider import StaticMarketData
from signalgate.options.types import Greeks, OptionSnapshot, OptionType
from signalgate.orchestrator.orchestrator import Orchestrator
from signalgate.settings.loader import load_autotrade_config, merge_overrides
from signalgate.signals.validation import SignalValidationError, parse_signal

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_at(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    at = datetime.fromisoformat(value)
    return at if at.tzinfo else at.replace(tzinfo=timezone.utc)


def _build_snapshot(raw: dict[str, Any]) -> OptionSnapshot:
    """Construct an OptionSnapshot from a flat dict (JSON-parsed)."""
    raw = dict(raw)
    if raw.get("expiration"):
        raw["expiration"] = _parse_at(raw["expiration"])
    if raw.get("option_type"):
        raw["option_type"] = OptionType(raw["option_type"].upper())
    if isinstance(raw.get("greeks"), dict):
        raw["greeks"] = Greeks(**raw["greeks"])
    return OptionSnapshot(**raw)


def cmd_evaluate(args: argparse.Namespace) -> int:
    """Run one signal through the gate engine and print the Decision."""
    try:
        signal = parse_signal(json.loads(args.signal_json))
    except SignalValidationError as exc:
        print(json.dumps({"error": "invalid signal", "details": exc.errors}))
        return 2

    now = _parse_at(args.at)
    if args.options_json:
        snapshot = _build_snapshot(json.loads(args.options_json))
        decision = run_options_decision_engine(signal, snapshot, now=now)
    else:
        decision = run_decision_engine(signal, now=now)
    print(json.dumps(decision.to_dict(), default=str))
    return 0


def _read_signals(path: Path) -> list[dict[str, Any]]:
    with open(path, encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


async def _replay(args: argparse.Namespace) -> dict[str, Any]:
    base = load_autotrade_config(Path(args.config) if args.config else None)
    config = merge_overrides(base, {"enabled": True, "mode": args.mode})

    provider = StaticMarketData(vix=args.vix)
    current = [datetime.now(timezone.utc)]
    orchestrator = Orchestrator(
        config,
        provider=provider,
        rng=random.Random(args.seed),
        clock=lambda: current[0],
        decision_logger=DecisionLogger(Path(args.out)) if args.out else None,
    )

    payloads = _read_signals(Path(args.signals))
    invalid = 0
    await orchestrator.start()
    for payload in payloads:
        try:
            signal = parse_signal(payload)
        except SignalValidationError as exc:
            invalid += 1
            logger.warning("Skipping invalid signal: %s", exc)
            continue
        current[0] = signal.received_at
        provider.set_price(signal.symbol, signal.entry_price)
        await orchestrator.submit_signal(signal)
        await orchestrator.drain()
        await orchestrator.monitor_positions()

    await orchestrator.stop()
    status = orchestrator.status()
    status["invalid_signals"] = invalid
    return status


def cmd_replay(args: argparse.Namespace) -> int:
    """Replay recorded signals through a paper or shadow session."""
    status = asyncio.run(_replay(args))
    print(json.dumps(status, default=str))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="signalgate.cli")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    p_eval = sub.add_parser("evaluate")
    p_eval.add_argument("--signal-json", required=True, help="JSON signal payload")
    p_eval.add_argument("--options-json", help="JSON option snapshot")
    p_eval.add_argument("--at", help="Evaluation time (ISO 8601, default now)")

    p_replay = sub.add_parser("replay")
    p_replay.add_argument("--signals", required=True, help="JSONL file of signal payloads")
    p_replay.add_argument("--mode", choices=("PAPER", "SHADOW"), default="PAPER")
    p_replay.add_argument("--out", help="Append decisions to this JSONL file")
    p_replay.add_argument("--config", help="autotrade.yml path")
    p_replay.add_argument("--vix", type=float, help="VIX level for the session")
    p_replay.add_argument("--seed", type=int, default=42, help="Simulator RNG seed")

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "evaluate":
        return cmd_evaluate(args)
    return cmd_replay(args)


if __name__ == "__main__":
    raise SystemExit(main())
