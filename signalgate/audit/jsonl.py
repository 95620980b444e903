"""Decision logging — one JSON line per Decision.

Used by shadow sessions and the CLI replay to keep a local, append-only
record of every gate decision.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

import numpy as np

from signalgate.decision.gates import Decision

logger = logging.getLogger(__name__)


class DecisionLogger:
    """Append-only JSONL writer for decisions.

    The file is opened in append mode on every write so restarted sessions
    continue the same log.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def log_decision(self, decision: Decision) -> None:
        self.log_entry(decision.to_dict())

    def log_entry(self, entry: dict[str, Any]) -> None:
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, default=_json_default) + "\n")

    def read(self) -> Iterator[dict[str, Any]]:
        if not self._path.exists():
            return
        with open(self._path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield json.loads(line)

    @property
    def path(self) -> Path:
        return self._path


def _json_default(obj: Any) -> Any:
    """JSON serialization fallback for enums and numpy scalars."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
