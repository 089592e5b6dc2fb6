from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from guildhall.runtime.event_log import log_event

Json = Dict[str, Any]

# Probe endpoints polled by load balancers and scrapers.
_QUIET_PATHS = frozenset({"/healthz", "/v1/health", "/v1/metrics"})


def configure_structured_logging() -> None:
    """Route every logger to stdout as bare JSONL lines.

    GUILDHALL_LOG_LEVEL sets the level (default INFO). uvicorn's access log is
    silenced because RequestLogMiddleware already records each request.
    Calling it again only updates the level.
    """
    level_name = (os.environ.get("GUILDHALL_LOG_LEVEL") or "INFO").strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    if getattr(root, "_guildhall_configured", False):  # type: ignore[attr-defined]
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.handlers = [handler]
    logging.getLogger("uvicorn.access").disabled = True
    setattr(root, "_guildhall_configured", True)  # type: ignore[attr-defined]


class RequestLogMiddleware(BaseHTTPMiddleware):
    """One `http_request` event per request.

    Routes may set `request.state.tx_id` / `request.state.error_code`; both are
    copied into the event so a submit can be traced to its ledger log row.
    Probe paths are skipped unless GUILDHALL_LOG_PROBES=1. GUILDHALL_LOG_REQUESTS=0
    disables the middleware.
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        on = (os.environ.get("GUILDHALL_LOG_REQUESTS") or "1").strip().lower()
        probes = (os.environ.get("GUILDHALL_LOG_PROBES") or "").strip().lower()
        self._enabled = on not in {"0", "false", "no", "off"}
        self._log_probes = probes in {"1", "true", "yes", "on"}
        self._logger = logging.getLogger("guildhall.http")

    async def dispatch(self, request: Request, call_next):
        path = str(request.url.path or "")
        if not self._enabled or (path in _QUIET_PATHS and not self._log_probes):
            return await call_next(request)

        started = time.monotonic()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id

        status = 500
        err: Optional[str] = None
        try:
            response = await call_next(request)
            status = int(response.status_code)
            response.headers.setdefault("x-request-id", request_id)
            return response
        except Exception as e:
            err = type(e).__name__
            raise
        finally:
            fields: Json = {
                "request_id": request_id,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": int((time.monotonic() - started) * 1000),
            }
            tx_id = getattr(request.state, "tx_id", None)
            if tx_id:
                fields["tx_id"] = tx_id
            code = getattr(request.state, "error_code", None) or err
            if code:
                fields["error"] = code
            log_event(self._logger, "http_request", level=logging.WARNING if status >= 500 else logging.INFO, **fields)
