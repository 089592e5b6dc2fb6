from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from guildhall.api.errors import ApiError
from guildhall.util.address import normalize_address

Json = Dict[str, Any]


def _executor(request: Request):
    ex = getattr(request.app.state, "executor", None)
    if ex is None:
        raise ApiError.internal("not_ready", "executor_not_attached", {})
    return ex


def _snapshot(request: Request) -> Json:
    """Deep copy of the executor's current ledger state."""
    st = _executor(request).read_state()
    return st if isinstance(st, dict) else dict(st)


def _address_param(v: Any, what: str) -> str:
    try:
        return normalize_address(v)
    except ValueError:
        raise ApiError.bad_request("invalid_request", f"invalid_{what}", {what: str(v)}) from None
