from __future__ import annotations

import time
from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter()

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _health_payload(request: Request) -> Json:
    # health must never crash; best-effort telemetry only
    ex = getattr(request.app.state, "executor", None)
    out: Json = {"ok": True, "ts_ms": _now_ms(), "ready": ex is not None}
    if ex is None:
        return out

    out["node_id"] = str(getattr(ex, "node_id", "") or "")
    out["chain_id"] = int(getattr(ex, "chain_id", 0) or 0)
    try:
        view = ex.view()
        st = ex.read_state()
    except Exception as e:
        out["ready"] = False
        out["error"] = type(e).__name__
        return out

    out["tx_count"] = int(st.get("tx_count", 0) or 0)
    out["onboarding_address"] = view.onboarding_address
    out["custody_address"] = view.custody_address
    out["organizations"] = len(view.orgs)
    return out


@router.get("/health")
def health(request: Request) -> Json:
    return _health_payload(request)


# Liveness probe for load balancers; mounted without the /v1 prefix.
liveness_router = APIRouter()


@liveness_router.get("/healthz")
def healthz() -> Json:
    return {"ok": True}
