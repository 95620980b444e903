"""Trade cooldowns — symbol, signal-type and global pacing.

After a trade, the symbol is cooled down for 15 minutes and the signal
type for 10. Three trades within an hour trip a 30 minute global
cooldown. Cooldowns live in a key/expiry store so they can be persisted
between sessions.

Checks fail open: a store error returns a DEGRADED result.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

from signalgate.session.results import CheckResult

logger = logging.getLogger(__name__)

GLOBAL_KEY = "cooldown:global"
RECENT_TRADES_KEY = "cooldown:recent_trades"


def symbol_key(symbol: str) -> str:
    return f"cooldown:symbol:{symbol}"


def signal_type_key(signal_type: str) -> str:
    return f"cooldown:signal_type:{signal_type}"


@dataclass(frozen=True)
class CooldownConfig:
    symbol_minutes: float = 15
    signal_type_minutes: float = 10
    global_minutes: float = 30
    global_trade_count: int = 3
    global_window_minutes: float = 60

    def __post_init__(self) -> None:
        for name in ("symbol_minutes", "signal_type_minutes", "global_minutes", "global_window_minutes"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.global_trade_count < 1:
            raise ValueError("global_trade_count must be >= 1")


@dataclass(frozen=True)
class CooldownRecord:
    key: str
    value: Any
    expires_at: datetime

    def active(self, now: datetime) -> bool:
        return self.expires_at > now


class CooldownStore(Protocol):
    def get(self, key: str) -> CooldownRecord | None: ...

    def put(self, record: CooldownRecord) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryCooldownStore:
    """Thread-safe dict-backed store with JSON-friendly snapshot/restore."""

    def __init__(self) -> None:
        self._records: dict[str, CooldownRecord] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CooldownRecord | None:
        with self._lock:
            return self._records.get(key)

    def put(self, record: CooldownRecord) -> None:
        with self._lock:
            self._records[record.key] = record

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {
                k: {"value": r.value, "expires_at": r.expires_at.isoformat()}
                for k, r in self._records.items()
            }

    def restore(self, data: dict[str, dict[str, Any]]) -> None:
        with self._lock:
            self._records = {
                k: CooldownRecord(k, v.get("value"), datetime.fromisoformat(v["expires_at"]))
                for k, v in data.items()
            }


class CooldownGuard:
    """Admission check against active cooldowns."""

    def __init__(
        self,
        store: CooldownStore | None = None,
        config: CooldownConfig | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store if store is not None else InMemoryCooldownStore()
        self.config = config or CooldownConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _active(self, key: str, now: datetime) -> CooldownRecord | None:
        record = self.store.get(key)
        if record is None:
            return None
        if record.active(now):
            return record
        self.store.delete(key)
        return None

    def _check(self, key: str, kind: str, label: str, now: datetime | None) -> CheckResult:
        now = now or self._clock()
        try:
            record = self._active(key, now)
        except Exception as exc:
            logger.warning("Cooldown check failed for %s, allowing trade: %s", key, exc)
            return CheckResult.degrade(f"Cooldown check unavailable: {exc}", cooldown=kind)
        if record is None:
            return CheckResult.ok()
        remaining = (record.expires_at - now).total_seconds()
        if kind == "global":
            reason = (
                f"Global cooldown active until {record.expires_at.isoformat()} "
                f"({record.value} recent trades)"
            )
        else:
            reason = f"{label} is in cooldown until {record.expires_at.isoformat()}"
        return CheckResult.block(reason, cooldown=kind, remaining_s=remaining)

    def check_symbol(self, symbol: str, now: datetime | None = None) -> CheckResult:
        return self._check(symbol_key(symbol), "symbol", f"Symbol {symbol}", now)

    def check_signal_type(self, signal_type: str, now: datetime | None = None) -> CheckResult:
        return self._check(signal_type_key(signal_type), "signal_type", f"Signal type {signal_type}", now)

    def check_global(self, now: datetime | None = None) -> CheckResult:
        return self._check(GLOBAL_KEY, "global", "Global", now)

    def check_all(
        self, symbol: str, signal_type: str, now: datetime | None = None,
    ) -> CheckResult:
        """First active cooldown in symbol, signal type, global order."""
        now = now or self._clock()
        degraded: CheckResult | None = None
        for result in (
            self.check_symbol(symbol, now),
            self.check_signal_type(signal_type, now),
            self.check_global(now),
        ):
            if not result.allowed:
                return result
            if result.degraded and degraded is None:
                degraded = result
        return degraded or CheckResult.ok()

    def record_trade(self, symbol: str, signal_type: str, now: datetime | None = None) -> None:
        """Start symbol and signal-type cooldowns; trip the global one if due."""
        now = now or self._clock()
        cfg = self.config
        self.store.put(CooldownRecord(
            symbol_key(symbol), symbol, now + timedelta(minutes=cfg.symbol_minutes),
        ))
        self.store.put(CooldownRecord(
            signal_type_key(signal_type), signal_type, now + timedelta(minutes=cfg.signal_type_minutes),
        ))

        window_start = now - timedelta(minutes=cfg.global_window_minutes)
        existing = self.store.get(RECENT_TRADES_KEY)
        stamps = [
            datetime.fromisoformat(s) for s in (existing.value if existing else [])
        ]
        stamps = [s for s in stamps if s > window_start] + [now]
        self.store.put(CooldownRecord(
            RECENT_TRADES_KEY,
            [s.isoformat() for s in stamps],
            now + timedelta(minutes=cfg.global_window_minutes),
        ))

        if len(stamps) >= cfg.global_trade_count and self._active(GLOBAL_KEY, now) is None:
            self.store.put(CooldownRecord(
                GLOBAL_KEY, len(stamps), now + timedelta(minutes=cfg.global_minutes),
            ))
            logger.info("Global cooldown started (%d recent trades)", len(stamps))
