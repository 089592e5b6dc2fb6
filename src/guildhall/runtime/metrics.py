from __future__ import annotations

import os
import threading
import time
from typing import Dict, List

# Names the executor and routes emit. Unlisted names are still exported,
# just without a HELP line.
_HELP: Dict[str, str] = {
    "tx_committed": "Transactions applied and persisted.",
    "tx_rejected": "Transactions rejected by an applier; state unchanged.",
    "admission_rejected": "Submissions refused before reaching the executor.",
    "onboard_committed": "Successful ONBOARD and ONBOARD_ETH calls.",
    "members_joined": "Onboard calls that created a new membership.",
    "custody_registered": "NFTs registered into the custody registry.",
    "custody_withdrawn": "NFTs withdrawn out of custody.",
    "tx_count": "Committed transactions in the ledger.",
    "organizations": "Configured organizations.",
    "custody_collections": "Collections with at least one asset in custody.",
    "custody_assets": "Assets currently held in custody.",
}


def _now_ms() -> int:
    return int(time.time() * 1000)


class _Registry:
    """Process-wide integer counters and gauges."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, int] = {}
        self.started_ms = _now_ms()

    def add(self, name: str, value: int) -> None:
        with self._lock:
            self.counters[name] = self.counters.get(name, 0) + value

    def set(self, name: str, value: int) -> None:
        with self._lock:
            self.gauges[name] = value

    def clear(self) -> None:
        with self._lock:
            self.counters.clear()
            self.gauges.clear()

    def copy(self) -> dict:
        now = _now_ms()
        with self._lock:
            return {
                "ts_ms": now,
                "started_ms": self.started_ms,
                "uptime_ms": now - self.started_ms,
                "counters": dict(self.counters),
                "gauges": dict(self.gauges),
            }


_registry = _Registry()


def metrics_enabled() -> bool:
    v = (os.environ.get("GUILDHALL_METRICS_ENABLED") or "").strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def inc_counter(name: str, value: int = 1) -> None:
    n = str(name or "").strip()
    if n:
        _registry.add(n, int(value))


def set_gauge(name: str, value: int) -> None:
    n = str(name or "").strip()
    if n:
        _registry.set(n, int(value))


def reset() -> None:
    """Clear all counters and gauges (tests)."""
    _registry.clear()


def snapshot() -> dict:
    return _registry.copy()


def format_prometheus(prefix: str = "guildhall_") -> str:
    """Prometheus text exposition, version 0.0.4."""
    pre = str(prefix or "").strip() or "guildhall_"
    snap = snapshot()
    lines: List[str] = [
        f"# TYPE {pre}uptime_ms gauge",
        f"{pre}uptime_ms {snap['uptime_ms']}",
    ]
    for kind, values in (("counter", snap["counters"]), ("gauge", snap["gauges"])):
        for name in sorted(values):
            metric = pre + name
            if name in _HELP:
                lines.append(f"# HELP {metric} {_HELP[name]}")
            lines.append(f"# TYPE {metric} {kind}")
            lines.append(f"{metric} {values[name]}")
    return "\n".join(lines) + "\n"
