"""Duplicate signal detection.

A signal is a duplicate when an already-processed signal with the same
symbol, signal type and direction exists within a timestamp tolerance.
Lookup failures fail open with a DEGRADED result.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Protocol

from signalgate.session.results import CheckResult
from signalgate.signals.signal import Signal

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_S = 60


@dataclass(frozen=True)
class ProcessedSignal:
    signal_id: str
    symbol: str
    timestamp: int
    signal_type: str
    direction: str


class SignalLog(Protocol):
    """Record of processed signals, newest last."""

    def record(self, entry: ProcessedSignal) -> None: ...

    def find(
        self, symbol: str, signal_type: str, direction: str, lo: int, hi: int,
    ) -> ProcessedSignal | None: ...


class InMemorySignalLog:
    """Bounded in-memory :class:`SignalLog`."""

    def __init__(self, max_entries: int = 10_000) -> None:
        self._entries: list[ProcessedSignal] = []
        self._max_entries = max_entries
        self._lock = threading.Lock()

    def record(self, entry: ProcessedSignal) -> None:
        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self._max_entries:
                del self._entries[: len(self._entries) - self._max_entries]

    def find(
        self, symbol: str, signal_type: str, direction: str, lo: int, hi: int,
    ) -> ProcessedSignal | None:
        with self._lock:
            for entry in reversed(self._entries):
                if (
                    entry.symbol == symbol
                    and entry.signal_type == signal_type
                    and entry.direction == direction
                    and lo <= entry.timestamp <= hi
                ):
                    return entry
        return None

    def __len__(self) -> int:
        return len(self._entries)


class DuplicateDetector:
    """Rejects re-deliveries of an already processed signal."""

    def __init__(
        self,
        log: SignalLog | None = None,
        *,
        tolerance_s: int = DEFAULT_TOLERANCE_S,
    ) -> None:
        self._log = log if log is not None else InMemorySignalLog()
        self._tolerance_s = tolerance_s
        self._counter = 0

    def check(self, signal: Signal) -> CheckResult:
        try:
            existing = self._log.find(
                signal.symbol,
                signal.signal_type,
                signal.direction.value,
                signal.timestamp - self._tolerance_s,
                signal.timestamp + self._tolerance_s,
            )
        except Exception as exc:
            logger.warning("Duplicate detection unavailable, allowing signal: %s", exc)
            return CheckResult.degrade(f"Duplicate detection unavailable: {exc}")

        if existing is not None:
            return CheckResult.block(
                "Duplicate signal detected. Similar signal already processed "
                f"(ID: {existing.signal_id})",
                existing_signal_id=existing.signal_id,
            )
        return CheckResult.ok()

    def mark_processed(self, signal: Signal) -> None:
        self._counter += 1
        signal_id = signal.signal_id or f"{signal.symbol}-{signal.timestamp}-{self._counter}"
        try:
            self._log.record(
                ProcessedSignal(
                    signal_id=signal_id,
                    symbol=signal.symbol,
                    timestamp=signal.timestamp,
                    signal_type=signal.signal_type,
                    direction=signal.direction.value,
                )
            )
        except Exception as exc:
            logger.error("Failed to record processed signal %s: %s", signal_id, exc)
