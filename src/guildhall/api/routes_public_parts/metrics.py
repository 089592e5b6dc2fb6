from __future__ import annotations

from fastapi import APIRouter, Request, Response

from guildhall.runtime.apply.custody import collection_count
from guildhall.runtime.metrics import format_prometheus, metrics_enabled, set_gauge

router = APIRouter()

_PROM_CONTENT_TYPE = "text/plain; version=0.0.4"


def _refresh_ledger_gauges(request: Request) -> None:
    """Point-in-time ledger sizes, sampled at scrape time."""
    ex = getattr(request.app.state, "executor", None)
    if ex is None:
        return
    st = ex.read_state()
    set_gauge("tx_count", int(st.get("tx_count", 0) or 0))
    set_gauge("organizations", len(st.get("orgs") or {}))
    set_gauge("custody_collections", collection_count(st))
    set_gauge("custody_assets", len((st.get("custody") or {}).get("owners") or {}))


@router.get("/metrics")
def metrics(request: Request) -> Response:
    """Prometheus text exposition; 404 unless GUILDHALL_METRICS_ENABLED=1."""
    if not metrics_enabled():
        return Response(status_code=404, content="not_found\n", media_type="text/plain")
    _refresh_ledger_gauges(request)
    return Response(content=format_prometheus(), media_type=_PROM_CONTENT_TYPE)
