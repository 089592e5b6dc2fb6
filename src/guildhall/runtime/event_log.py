from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict


Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one JSONL line on `logger`.

    The executor logs commits and rejections through this; the HTTP layer logs
    requests. Fields that are not JSON-serializable degrade to key=repr pairs.
    """
    if not logger.isEnabledFor(level):
        return
    payload: Json = {"ts_ms": _now_ms(), "event": str(event)}
    payload.update(fields)
    try:
        line = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        line = " ".join([f"event={event}"] + [f"{k}={fields[k]!r}" for k in sorted(fields)])
    logger.log(level, line)
