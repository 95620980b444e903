"""Config loader — YAML defaults and override merging.

Loads the session config from configs/autotrade.yml and the simulator
defaults from configs/execution.yml. Only known dataclass fields are
kept; nested sections build their own config objects.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import fields, is_dataclass, replace
from pathlib import Path
from typing import Any, Mapping, TypeVar

import yaml

from signalgate.execution.simulator import ExecutionConfig, SlippageModel
from signalgate.options.portfolio_greeks import GreeksLimits
from signalgate.orchestrator.config import AutoTradeConfig, TradingMode, TradingSchedule
from signalgate.session.cooldowns import CooldownConfig

logger = logging.getLogger(__name__)

_CONFIGS = Path(__file__).resolve().parents[2] / "configs"
_AUTOTRADE_YML = _CONFIGS / "autotrade.yml"
_EXECUTION_YML = _CONFIGS / "execution.yml"

T = TypeVar("T")

# Nested sections of AutoTradeConfig and the config type each one builds.
_SECTIONS: dict[str, type] = {
    "schedule": TradingSchedule,
    "cooldowns": CooldownConfig,
    "greeks_limits": GreeksLimits,
    "execution": ExecutionConfig,
}

_ENUMS: dict[str, type[enum.Enum]] = {
    "mode": TradingMode,
    "slippage_model": SlippageModel,
}

_TUPLES = {"options_symbols", "days_of_week"}


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    return raw or {}


def _coerce(key: str, value: Any) -> Any:
    if key in _ENUMS and not isinstance(value, enum.Enum):
        return _ENUMS[key](value)
    if key in _TUPLES and isinstance(value, list):
        return tuple(value)
    if key in _SECTIONS and isinstance(value, Mapping):
        return build_config(_SECTIONS[key], value)
    return value


def _known(cls: type) -> set[str]:
    return {f.name for f in fields(cls)}


def build_config(cls: type[T], raw: Mapping[str, Any]) -> T:
    """Build ``cls`` from a mapping, keeping known fields only."""
    known = _known(cls)
    unknown = sorted(k for k in raw if k not in known)
    if unknown:
        logger.warning("Ignoring unknown %s keys: %s", cls.__name__, ", ".join(unknown))
    return cls(**{k: _coerce(k, v) for k, v in raw.items() if k in known})


def load_autotrade_config(
    path: Path | None = None, execution_path: Path | None = None,
) -> AutoTradeConfig:
    """Load the session config from configs/autotrade.yml.

    The simulator section is read from configs/execution.yml (or
    ``execution_path``) unless the session file has its own ``execution:``.
    """
    raw = _read_yaml(path or _AUTOTRADE_YML)
    if "execution" not in raw:
        raw["execution"] = load_execution_config(execution_path)
    return build_config(AutoTradeConfig, raw)


def load_execution_config(path: Path | None = None) -> ExecutionConfig:
    """Load the simulator defaults from configs/execution.yml."""
    return build_config(ExecutionConfig, _read_yaml(path or _EXECUTION_YML))


def merge_overrides(base: T, overrides: Mapping[str, Any] | None) -> T:
    """Return a copy of ``base`` with known override keys applied.

    Nested sections merge into the base's nested config rather than
    replacing it. Unknown keys are logged and ignored.

    Returns ``base`` itself when there is nothing to apply.
    """
    if not overrides:
        return base

    known = _known(type(base))
    changes: dict[str, Any] = {}
    ignored: list[str] = []

    for key, val in overrides.items():
        if key not in known:
            ignored.append(key)
            continue
        current = getattr(base, key)
        if is_dataclass(current) and isinstance(val, Mapping):
            changes[key] = merge_overrides(current, val)
        else:
            changes[key] = _coerce(key, val)

    if changes:
        logger.info(
            "%s overrides applied: %s",
            type(base).__name__,
            ", ".join(f"{k}={overrides[k]}" for k in changes),
        )
    if ignored:
        logger.warning(
            "%s overrides ignored (unknown fields): %s",
            type(base).__name__, ", ".join(ignored),
        )
    if not changes:
        return base
    return replace(base, **changes)
