"""Tests for exit rule generation and evaluation."""

from __future__ import annotations

from signalgate.decision.timeframe import Regime
from signalgate.options.exits import (
    ExitAction,
    ExitRule,
    ExitTrigger,
    check_exit_rules,
    generate_exit_rules,
)
from signalgate.options.strategy import Strategy


def kinds(rules: list[ExitRule]) -> list[tuple[str, float, str]]:
    return [(r.trigger_type.value, r.trigger, r.action.value) for r in rules]


class TestGenerateExitRules:
    def test_debit_swing(self) -> None:
        assert kinds(generate_exit_rules(Regime.SWING, Strategy.LONG_CALL)) == [
            ("PROFIT_TARGET", 0.50, "CLOSE_HALF"),
            ("PROFIT_TARGET", 1.00, "CLOSE_FULL"),
            ("STOP_LOSS", -0.40, "CLOSE_FULL"),
            ("THETA_STOP", 14, "ROLL"),
        ]

    def test_credit_takes_full_profit_first(self) -> None:
        rules = generate_exit_rules(Regime.SWING, Strategy.PUT_CREDIT_SPREAD)
        assert kinds(rules)[0] == ("PROFIT_TARGET", 0.50, "CLOSE_FULL")
        assert len(rules) == 5

    def test_volatility_strategy_adds_iv_crush(self) -> None:
        rules = generate_exit_rules(Regime.INTRADAY, Strategy.LONG_STRADDLE)
        assert kinds(rules)[-1] == ("IV_CRUSH", -0.15, "CLOSE_FULL")
        assert ("TIME_STOP", 4, "CLOSE_FULL") in kinds(rules)

    def test_monthly_and_leaps(self) -> None:
        monthly = kinds(generate_exit_rules(Regime.MONTHLY, Strategy.CALL_DEBIT_SPREAD))
        assert ("IV_CRUSH", -0.20, "CLOSE_HALF") in monthly
        leaps = kinds(generate_exit_rules(Regime.LEAPS, Strategy.LONG_CALL))
        assert ("STOP_LOSS", -0.35, "CLOSE_HALF") in leaps
        assert ("THETA_STOP", 90, "ROLL") in leaps


class TestCheckExitRules:
    DEBIT = generate_exit_rules(Regime.SWING, Strategy.LONG_CALL)
    CREDIT = generate_exit_rules(Regime.SWING, Strategy.PUT_CREDIT_SPREAD)

    def check(self, rules, pnl=0.0, dte=30, iv=0.2, entry_iv=0.2, hours=1.0):
        return check_exit_rules(rules, pnl, dte, iv, entry_iv, hours)

    def test_nothing_matches(self) -> None:
        assert self.check(self.DEBIT, pnl=0.1) is None

    def test_first_match_wins(self) -> None:
        assert self.check(self.DEBIT, pnl=1.2).action == ExitAction.CLOSE_HALF
        assert self.check(self.CREDIT, pnl=0.6).action == ExitAction.CLOSE_FULL

    def test_stop_loss(self) -> None:
        rule = self.check(self.DEBIT, pnl=-0.4)
        assert rule.trigger_type == ExitTrigger.STOP_LOSS

    def test_theta_stop(self) -> None:
        rule = self.check(self.DEBIT, dte=14)
        assert rule.trigger_type == ExitTrigger.THETA_STOP
        assert rule.action == ExitAction.ROLL

    def test_time_stop(self) -> None:
        rules = generate_exit_rules(Regime.INTRADAY, Strategy.LONG_CALL)
        assert self.check(rules, dte=3, hours=3.9) is None
        assert self.check(rules, dte=3, hours=4.0).trigger_type == ExitTrigger.TIME_STOP

    def test_iv_crush(self) -> None:
        rules = [ExitRule(ExitTrigger.IV_CRUSH, -0.15, ExitAction.CLOSE_FULL)]
        assert self.check(rules, iv=0.17, entry_iv=0.2) is not None
        assert self.check(rules, iv=0.18, entry_iv=0.2) is None

    def test_iv_crush_skipped_without_entry_iv(self) -> None:
        rules = [ExitRule(ExitTrigger.IV_CRUSH, -0.15, ExitAction.CLOSE_FULL)]
        assert self.check(rules, iv=0.0, entry_iv=0.0) is None

    def test_delta_hedge_never_matches(self) -> None:
        rules = [ExitRule(ExitTrigger.DELTA_HEDGE, 0.0, ExitAction.HEDGE)]
        assert self.check(rules, pnl=5.0, dte=0, hours=100) is None


def test_rule_to_dict() -> None:
    rule = ExitRule(ExitTrigger.STOP_LOSS, -0.4, ExitAction.CLOSE_FULL)
    assert rule.to_dict() == {"type": "STOP_LOSS", "trigger": -0.4, "action": "CLOSE_FULL"}
