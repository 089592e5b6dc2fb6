from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from guildhall.api.errors import ApiError, from_guild_error
from guildhall.api.routes_public import public_router
from guildhall.api.security import RequestSizeLimitMiddleware
from guildhall.api.structured_logging import RequestLogMiddleware, configure_structured_logging
from guildhall.runtime.chain_config import apply_chain_config_to_env, load_chain_config
from guildhall.runtime.errors import GuildError
from guildhall.runtime.event_log import log_event
from guildhall.runtime.executor_boot import build_executor as _build_executor

_log = logging.getLogger("guildhall.http")


def build_executor():
    """Build a GuildExecutor for API runtime.

    This wrapper exists so tests can monkeypatch `guildhall.api.app.build_executor`
    without reaching into runtime modules.
    """
    return _build_executor()


def create_app(*, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): load chain config, export it to GUILDHALL_* env vars
        and attach an executor via build_executor()
      - False: keep lightweight; tests attach app.state.executor themselves
    """
    if boot_runtime:
        apply_chain_config_to_env(load_chain_config())
    configure_structured_logging()

    mode = os.environ.get("GUILDHALL_MODE", "prod").strip().lower()

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(title="Guildhall API", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="Guildhall API")

    app.state.executor = build_executor() if boot_runtime else None

    @app.exception_handler(ApiError)
    async def _api_error_handler(request: Request, exc: ApiError):
        return JSONResponse(status_code=int(exc.status_code), content=exc.body())

    @app.exception_handler(GuildError)
    async def _guild_error_handler(request: Request, exc: GuildError):
        err = from_guild_error(exc)
        log_event(_log, "request_rejected", path=str(request.url.path or ""), code=err.code, reason=err.reason)
        return JSONResponse(status_code=int(err.status_code), content=err.body())

    # --- Middleware ---
    # Size limiter first so oversized bodies fail before anything parses them.
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestLogMiddleware)

    # --- Routers ---
    app.include_router(public_router)

    return app
