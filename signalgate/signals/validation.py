"""Signal intake validation.

Malformed payloads are rejected here, before they reach the gate
pipeline. All field errors are collected and reported together.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from signalgate.signals.signal import Direction, Signal

logger = logging.getLogger(__name__)

MAX_SYMBOL_LEN = 10


class SignalValidationError(ValueError):
    """Raised when an inbound signal payload is malformed."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(", ".join(errors))
        self.errors = errors


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_range(
    payload: Mapping[str, Any],
    key: str,
    lo: float,
    hi: float,
    errors: list[str],
    *,
    required: bool = True,
) -> None:
    value = payload.get(key)
    if value is None:
        if required:
            errors.append(f"{key}: required")
        return
    if not _is_number(value):
        errors.append(f"{key}: must be a number")
    elif not lo <= value <= hi:
        errors.append(f"{key}: must be in [{lo:g}, {hi:g}]")


def _check_positive(payload: Mapping[str, Any], key: str, errors: list[str]) -> None:
    value = payload.get(key)
    if value is None:
        errors.append(f"{key}: required")
    elif not _is_number(value):
        errors.append(f"{key}: must be a number")
    elif value <= 0:
        errors.append(f"{key}: must be > 0")


def validate_signal_payload(payload: Mapping[str, Any]) -> list[str]:
    """Return the list of field errors for a raw signal payload."""
    errors: list[str] = []

    symbol = payload.get("symbol")
    if not isinstance(symbol, str) or not 1 <= len(symbol) <= MAX_SYMBOL_LEN:
        errors.append(f"symbol: must be a string of 1-{MAX_SYMBOL_LEN} characters")

    resolution = payload.get("resolution")
    if resolution is not None and not isinstance(resolution, str):
        errors.append("resolution: must be a string")

    timestamp = payload.get("timestamp")
    if not isinstance(timestamp, int) or isinstance(timestamp, bool) or timestamp <= 0:
        errors.append("timestamp: must be a positive integer")

    signal_type = payload.get("signal_type")
    if not isinstance(signal_type, str) or not signal_type:
        errors.append("signal_type: must be a non-empty string")

    if payload.get("direction") not in ("LONG", "SHORT"):
        errors.append("direction: must be one of LONG, SHORT")

    _check_range(payload, "confidence", 0, 10, errors)
    _check_range(payload, "signal_strength", 0, 10, errors, required=False)

    confluence = payload.get("confluence_count", 0)
    if not isinstance(confluence, int) or isinstance(confluence, bool) or confluence < 0:
        errors.append("confluence_count: must be an integer >= 0")

    for key in ("entry_price", "stop_loss", "take_profit_1"):
        _check_positive(payload, key, errors)

    active = payload.get("active_signals")
    if (
        not isinstance(active, (list, tuple))
        or not active
        or not all(isinstance(tag, str) for tag in active)
    ):
        errors.append("active_signals: must be a non-empty list of strings")

    return errors


def parse_signal(payload: Mapping[str, Any]) -> Signal:
    """Validate a raw payload and build an immutable :class:`Signal`.

    Raises:
        SignalValidationError: if any field is missing or out of range.
    """
    errors = validate_signal_payload(payload)
    if errors:
        logger.warning("Rejected signal payload: %s", "; ".join(errors))
        raise SignalValidationError(errors)

    def _opt_float(key: str) -> float | None:
        value = payload.get(key)
        return float(value) if value is not None else None

    return Signal(
        symbol=payload["symbol"],
        resolution=payload.get("resolution") or "1D",
        timestamp=payload["timestamp"],
        signal_type=payload["signal_type"],
        direction=Direction(payload["direction"]),
        confidence=float(payload["confidence"]),
        signal_strength=_opt_float("signal_strength"),
        confluence_count=int(payload.get("confluence_count", 0)),
        entry_price=float(payload["entry_price"]),
        stop_loss=float(payload["stop_loss"]),
        take_profit_1=float(payload["take_profit_1"]),
        take_profit_2=_opt_float("take_profit_2"),
        take_profit_3=_opt_float("take_profit_3"),
        active_signals=tuple(payload["active_signals"]),
        signal_id=payload.get("signal_id"),
        metadata=dict(payload.get("metadata") or {}),
    )
