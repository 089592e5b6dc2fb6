from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from guildhall.api.errors import ApiError, from_error_json
from guildhall.api.routes_public_parts.common import _executor
from guildhall.api.schemas import TxSubmit
from guildhall.ledger.constants import SYSTEM_SENDER

router = APIRouter()

Json = Dict[str, Any]


@router.post("/tx/submit")
def tx_submit(request: Request, body: TxSubmit) -> Json:
    """Submit a signed tx envelope and wait for its outcome.

    There is no mempool: the executor applies the envelope under its writer
    lock, so the response is final.

    Returns:
      { ok, tx_id, result }
    """
    ex = _executor(request)

    # Hard fail-closed: system txs are installed by the node itself.
    if body.system or body.sender.strip() == SYSTEM_SENDER:
        raise ApiError.forbidden(
            "forbidden",
            "system_tx_not_admissible",
            {"tx_type": body.tx_type, "sender": body.sender},
        )

    meta = ex.submit_tx(body.model_dump())
    if meta.get("tx_id"):
        request.state.tx_id = meta["tx_id"]
    if not meta.get("ok"):
        err = from_error_json(meta.get("error"))
        request.state.error_code = err.code
        if meta.get("tx_id"):
            err.details.setdefault("tx_id", meta["tx_id"])
        raise err

    return {"ok": True, "tx_id": str(meta.get("tx_id") or ""), "result": meta.get("result") or {}}


@router.get("/tx/log")
def tx_log(request: Request, limit: int = 50) -> Json:
    """Most recent committed and rejected transactions, newest first."""
    rows = _executor(request).tx_log(limit=max(1, min(int(limit), 500)))
    return {"ok": True, "items": rows}
