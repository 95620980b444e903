"""Tests for the evaluate and replay CLI commands."""

from __future__ import annotations

import json
from datetime import timedelta

import pytest

from signalgate.cli import main

WIDE_CONFIG = """
max_position_size: 5000000
max_total_exposure: 10000000
provider_retry_delay_s: 0
execution:
  slippage_model: none
  fill_delay_ms: 0
  reject_probability: 0
  partial_fill_probability: 0
"""


def _last_json(capsys) -> dict:
    out = capsys.readouterr().out.strip().splitlines()
    return json.loads(out[-1])


class TestEvaluate:
    def test_prints_decision(self, signal_payload, market_open, capsys) -> None:
        code = main([
            "evaluate",
            "--signal-json", json.dumps(signal_payload),
            "--at", market_open.isoformat(),
        ])
        assert code == 0
        decision = _last_json(capsys)
        assert decision["decision"] == "TRADE"
        assert decision["signal_id"] is None
        assert decision["regime"]["timeframe"] == "SWING"

    def test_with_option_snapshot(self, signal_payload, market_open, capsys) -> None:
        snapshot = {
            "strike": 4500,
            "expiration": (market_open + timedelta(days=30, hours=1)).isoformat(),
            "option_type": "call",
            "current_price": 150.0,
            "iv_rank": 30.0,
            "greeks": {"delta": 0.45, "gamma": 0.002, "theta": -2.0, "vega": 8.0},
            "bid_ask_spread": 0.05,
            "open_interest": 1000,
            "volume": 500,
        }
        code = main([
            "evaluate",
            "--signal-json", json.dumps(signal_payload),
            "--options-json", json.dumps(snapshot),
            "--at", market_open.isoformat(),
        ])
        assert code == 0
        decision = _last_json(capsys)
        assert "Options Validation" in [g["gate"] for g in decision["gate_results"]]
        assert decision["strategy"] == "LONG_CALL"

    def test_invalid_signal_exit_code(self, capsys) -> None:
        code = main(["evaluate", "--signal-json", json.dumps({"symbol": "ES"})])
        assert code == 2
        out = _last_json(capsys)
        assert out["error"] == "invalid signal"
        assert out["details"]

    def test_unknown_command_exits(self) -> None:
        with pytest.raises(SystemExit):
            main(["bogus"])


class TestReplay:
    @pytest.fixture
    def files(self, tmp_path, signal_payload):
        signals = tmp_path / "signals.jsonl"
        signals.write_text(
            json.dumps(signal_payload) + "\n\n" + json.dumps({"symbol": "ES"}) + "\n"
        )
        config = tmp_path / "autotrade.yml"
        config.write_text(WIDE_CONFIG)
        return signals, config, tmp_path / "out" / "decisions.jsonl"

    def test_paper_replay(self, files, capsys) -> None:
        signals, config, out = files
        code = main([
            "replay", "--signals", str(signals), "--config", str(config),
            "--out", str(out), "--vix", "15",
        ])
        assert code == 0
        status = _last_json(capsys)
        assert status["state"] == "STOPPED"
        assert status["mode"] == "PAPER"
        assert status["signals_generated"] == 1
        assert status["trades_executed"] == 1
        assert status["open_positions"] == 1
        assert status["invalid_signals"] == 1

        (entry,) = [json.loads(line) for line in out.read_text().splitlines()]
        assert entry["decision"] == "TRADE"

    def test_shadow_replay_does_not_trade(self, files, capsys) -> None:
        signals, config, _ = files
        code = main([
            "replay", "--signals", str(signals), "--config", str(config), "--mode", "SHADOW",
        ])
        assert code == 0
        status = _last_json(capsys)
        assert status["mode"] == "SHADOW"
        assert status["trades_executed"] == 0
        assert status["open_positions"] == 0
