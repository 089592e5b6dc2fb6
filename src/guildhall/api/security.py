from __future__ import annotations

import os
from typing import Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        return int(default)


def _tx_submit_cap() -> int:
    # Room for pretty-printed JSON around an envelope that admission would still accept.
    return 2 * _env_int("GUILDHALL_MAX_TX_ENVELOPE_BYTES", 32 * 1024)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject oversized request bodies with 413 before any route parses them.

    The cap is GUILDHALL_MAX_REQUEST_BYTES (default 64_000). `/v1/tx/submit` is
    additionally capped near the admission envelope limit. Both Content-Length
    and the buffered body of POST/PUT/PATCH are checked.
    GUILDHALL_SIZE_LIMIT_DISABLE=1 turns it off (when the edge proxy enforces it).
    """

    def __init__(self, app, *, max_bytes: Optional[int] = None) -> None:
        super().__init__(app)
        self._enabled = (os.environ.get("GUILDHALL_SIZE_LIMIT_DISABLE") or "").strip().lower() not in {
            "1",
            "true",
            "yes",
            "on",
        }
        self._max_bytes = int(max_bytes) if max_bytes is not None else _env_int("GUILDHALL_MAX_REQUEST_BYTES", 64_000)
        self._path_caps: Dict[str, int] = {"/v1/tx/submit": _tx_submit_cap()}

    def _limit_for(self, path: str) -> int:
        cap = self._path_caps.get(path)
        return self._max_bytes if cap is None else min(self._max_bytes, cap)

    @staticmethod
    def _too_large(size: int, limit: int) -> JSONResponse:
        return JSONResponse(
            status_code=413,
            content={
                "ok": False,
                "error": {
                    "code": "tx_too_large",
                    "reason": "request_body_too_large",
                    "details": {"bytes": int(size), "max_bytes": int(limit)},
                },
            },
        )

    async def dispatch(self, request: Request, call_next):
        if not self._enabled or (request.method or "").upper() not in {"POST", "PUT", "PATCH"}:
            return await call_next(request)

        limit = self._limit_for(str(request.url.path or ""))
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > limit:
            return self._too_large(int(declared), limit)

        body = await request.body()
        if len(body) > limit:
            return self._too_large(len(body), limit)
        return await call_next(request)
