"""Session state machine — auto-trade session lifecycle.

States: STOPPED -> RUNNING <-> PAUSED -> STOPPED, with KILLED reachable
from any state. KILLED is left only by an explicit start.

- Mutex on state transitions
- Repeating a control in the state it leads to is a successful no-op
- State transitions are logged to the audit_trail table
"""

from __future__ import annotations

import enum
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from questdb.ingress import Protocol, Sender, TimestampNanos

from signalgate.audit.questdb_writer import AuditWriterConfig

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    KILLED = "KILLED"


class ControlAction(enum.Enum):
    START = "start"
    STOP = "stop"
    PAUSE = "pause"
    RESUME = "resume"
    KILL = "kill_switch"


@dataclass(frozen=True)
class TransitionResult:
    """Result of a state transition attempt."""

    success: bool
    from_state: SessionState
    to_state: SessionState
    message: str = ""

    @property
    def changed(self) -> bool:
        return self.success and self.from_state != self.to_state


# action -> (states it may leave, target state)
_TRANSITIONS: dict[ControlAction, tuple[frozenset[SessionState], SessionState]] = {
    ControlAction.START: (
        frozenset({SessionState.STOPPED, SessionState.KILLED}), SessionState.RUNNING,
    ),
    ControlAction.STOP: (
        frozenset({SessionState.RUNNING, SessionState.PAUSED}), SessionState.STOPPED,
    ),
    ControlAction.PAUSE: (frozenset({SessionState.RUNNING}), SessionState.PAUSED),
    ControlAction.RESUME: (frozenset({SessionState.PAUSED}), SessionState.RUNNING),
    ControlAction.KILL: (
        frozenset({SessionState.STOPPED, SessionState.RUNNING, SessionState.PAUSED}),
        SessionState.KILLED,
    ),
}

# action -> states in which the action is already satisfied
_NO_OP: dict[ControlAction, frozenset[SessionState]] = {
    ControlAction.START: frozenset({SessionState.RUNNING, SessionState.PAUSED}),
    ControlAction.STOP: frozenset({SessionState.STOPPED, SessionState.KILLED}),
    ControlAction.PAUSE: frozenset({SessionState.PAUSED}),
    ControlAction.RESUME: frozenset({SessionState.RUNNING}),
    ControlAction.KILL: frozenset({SessionState.KILLED}),
}


class SessionStateMachine:
    """Auto-trade session lifecycle.

    Thread-safe via mutex on all state transitions. The orchestrator does
    the side effects (worker start-up, position flattening) around each
    transition; this class only decides whether the transition is legal
    and records it.

    Args:
        mode: Trading mode (PAPER/SHADOW/LIVE), written with each audit row.
        audit: QuestDB ILP connection for the audit_trail table. ``None``
            disables audit writes.
    """

    def __init__(
        self,
        mode: str,
        *,
        audit: AuditWriterConfig | None = None,
        initial: SessionState = SessionState.STOPPED,
    ) -> None:
        self._mode = mode
        self._audit = audit
        self._state = initial
        self._lock = threading.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state in (SessionState.RUNNING, SessionState.PAUSED)

    @property
    def is_paused(self) -> bool:
        return self._state == SessionState.PAUSED

    @property
    def accepts_signals(self) -> bool:
        return self._state == SessionState.RUNNING

    def transition(
        self,
        action: ControlAction,
        *,
        invoker: str = "operator",
        details: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Apply a control action.

        Idempotent: an action whose target state is already in effect
        returns success without changing anything.
        """
        with self._lock:
            prev = self._state
            if prev in _NO_OP[action]:
                logger.info(
                    "%s requested but already %s (idempotent)", action.value, prev.value,
                )
                return TransitionResult(True, prev, prev, f"already {prev.value.lower()}")

            sources, target = _TRANSITIONS[action]
            if prev not in sources:
                msg = f"cannot {action.value} from {prev.value}"
                logger.warning("Transition rejected: %s", msg)
                return TransitionResult(False, prev, prev, msg)

            self._state = target
            self._write_audit_trail(action, invoker, prev, details or {})

        log = logger.warning if action == ControlAction.KILL else logger.info
        log("Session: %s -> %s (%s by %s)", prev.value, target.value, action.value, invoker)
        return TransitionResult(True, prev, target, f"{action.value} by {invoker}")

    def restore(self, state: SessionState) -> None:
        with self._lock:
            self._state = state

    def _write_audit_trail(
        self,
        action: ControlAction,
        invoker: str,
        prev: SessionState,
        details: dict[str, Any],
    ) -> None:
        if self._audit is None:
            return
        now = datetime.now(timezone.utc)
        ts = TimestampNanos(int(now.timestamp() * 1_000_000_000))

        try:
            with Sender(Protocol.Tcp, self._audit.ilp_host, self._audit.ilp_port) as sender:
                sender.row(
                    "audit_trail",
                    symbols={
                        "tool_name": f"session.{action.value}",
                        "invoker": invoker,
                        "mode": self._mode,
                        "result_status": "ok",
                    },
                    columns={
                        "parameters": json.dumps(details, default=str),
                        "result_summary": f"{prev.value}->{self._state.value}",
                        "duration_ms": 0,
                    },
                    at=ts,
                )
                sender.flush()
        except Exception as exc:
            logger.error("Failed to write audit_trail: %s", exc)
