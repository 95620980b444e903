"""Tests for the auto-trade session state machine."""

from __future__ import annotations

import json
import threading
from unittest.mock import MagicMock, patch

import pytest

from signalgate.audit.questdb_writer import AuditWriterConfig
from signalgate.orchestrator.state_machine import (
    ControlAction,
    SessionState,
    SessionStateMachine,
    TransitionResult,
)


@pytest.fixture
def sm() -> SessionStateMachine:
    return SessionStateMachine("PAPER")


def _at(state: SessionState) -> SessionStateMachine:
    return SessionStateMachine("PAPER", initial=state)


class TestTransitions:
    def test_initial_state_is_stopped(self, sm: SessionStateMachine) -> None:
        assert sm.state == SessionState.STOPPED
        assert not sm.is_running
        assert not sm.accepts_signals

    def test_full_lifecycle(self, sm: SessionStateMachine) -> None:
        assert sm.transition(ControlAction.START).changed
        assert sm.accepts_signals
        assert sm.transition(ControlAction.PAUSE).changed
        assert sm.is_paused and sm.is_running
        assert not sm.accepts_signals
        assert sm.transition(ControlAction.RESUME).changed
        result = sm.transition(ControlAction.STOP)
        assert result == TransitionResult(
            True, SessionState.RUNNING, SessionState.STOPPED, "stop by operator",
        )

    @pytest.mark.parametrize("state", [
        SessionState.STOPPED, SessionState.RUNNING, SessionState.PAUSED,
    ])
    def test_kill_from_any_live_state(self, state: SessionState) -> None:
        machine = _at(state)
        result = machine.transition(ControlAction.KILL, invoker="risk")
        assert result.success
        assert machine.state == SessionState.KILLED
        assert result.message == "kill_switch by risk"

    def test_start_leaves_killed(self) -> None:
        machine = _at(SessionState.KILLED)
        assert machine.transition(ControlAction.START).changed
        assert machine.state == SessionState.RUNNING

    def test_stop_from_paused(self) -> None:
        machine = _at(SessionState.PAUSED)
        assert machine.transition(ControlAction.STOP).changed


class TestIdempotence:
    @pytest.mark.parametrize("state, action", [
        (SessionState.RUNNING, ControlAction.START),
        (SessionState.PAUSED, ControlAction.START),
        (SessionState.STOPPED, ControlAction.STOP),
        (SessionState.KILLED, ControlAction.STOP),
        (SessionState.PAUSED, ControlAction.PAUSE),
        (SessionState.RUNNING, ControlAction.RESUME),
        (SessionState.KILLED, ControlAction.KILL),
    ])
    def test_repeat_is_successful_no_op(self, state, action) -> None:
        machine = _at(state)
        result = machine.transition(action)
        assert result.success
        assert not result.changed
        assert machine.state == state
        assert result.message.startswith("already ")


class TestRejected:
    @pytest.mark.parametrize("state, action", [
        (SessionState.STOPPED, ControlAction.PAUSE),
        (SessionState.STOPPED, ControlAction.RESUME),
        (SessionState.KILLED, ControlAction.PAUSE),
        (SessionState.KILLED, ControlAction.RESUME),
    ])
    def test_illegal_transition(self, state, action) -> None:
        machine = _at(state)
        result = machine.transition(action)
        assert not result.success
        assert machine.state == state
        assert f"cannot {action.value} from {state.value}" == result.message


class TestAuditTrail:
    def test_no_audit_config_never_connects(self, sm: SessionStateMachine) -> None:
        with patch("signalgate.orchestrator.state_machine.Sender") as mock_cls:
            sm.transition(ControlAction.START)
        mock_cls.assert_not_called()

    def test_transition_written(self) -> None:
        with patch("signalgate.orchestrator.state_machine.Sender") as mock_cls:
            instance = MagicMock()
            mock_cls.return_value.__enter__.return_value = instance
            machine = SessionStateMachine("SHADOW", audit=AuditWriterConfig())
            machine.transition(
                ControlAction.START, invoker="cli", details={"symbols": ["ES"]},
            )

        instance.row.assert_called_once()
        assert instance.row.call_args.args[0] == "audit_trail"
        kwargs = instance.row.call_args.kwargs
        assert kwargs["symbols"]["tool_name"] == "session.start"
        assert kwargs["symbols"]["invoker"] == "cli"
        assert kwargs["symbols"]["mode"] == "SHADOW"
        assert kwargs["columns"]["result_summary"] == "STOPPED->RUNNING"
        assert json.loads(kwargs["columns"]["parameters"]) == {"symbols": ["ES"]}

    def test_no_op_not_written(self) -> None:
        with patch("signalgate.orchestrator.state_machine.Sender") as mock_cls:
            machine = SessionStateMachine(
                "PAPER", audit=AuditWriterConfig(), initial=SessionState.RUNNING,
            )
            machine.transition(ControlAction.START)
        mock_cls.assert_not_called()

    def test_audit_failure_does_not_block_transition(self) -> None:
        with patch("signalgate.orchestrator.state_machine.Sender") as mock_cls:
            mock_cls.side_effect = ConnectionError("down")
            machine = SessionStateMachine("PAPER", audit=AuditWriterConfig())
            result = machine.transition(ControlAction.START)
        assert result.success
        assert machine.state == SessionState.RUNNING


class TestThreadSafety:
    def test_concurrent_kill_calls(self) -> None:
        machine = _at(SessionState.RUNNING)
        results: list[TransitionResult] = []
        lock = threading.Lock()

        def kill() -> None:
            result = machine.transition(ControlAction.KILL)
            with lock:
                results.append(result)

        threads = [threading.Thread(target=kill) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert machine.state == SessionState.KILLED
        assert sum(r.changed for r in results) == 1
        assert all(r.success for r in results)


def test_restore_sets_state(sm: SessionStateMachine) -> None:
    sm.restore(SessionState.PAUSED)
    assert sm.state == SessionState.PAUSED
