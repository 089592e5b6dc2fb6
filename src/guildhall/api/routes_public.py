# src/guildhall/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from guildhall.api.routes_public_parts.custody import router as custody_router
from guildhall.api.routes_public_parts.health import liveness_router
from guildhall.api.routes_public_parts.health import router as health_router
from guildhall.api.routes_public_parts.metrics import router as metrics_router
from guildhall.api.routes_public_parts.onboarding import router as onboarding_router
from guildhall.api.routes_public_parts.tx import router as tx_router

public_router = APIRouter()

# Versioned API surface
public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(tx_router, prefix="/v1", tags=["tx"])
public_router.include_router(onboarding_router, prefix="/v1", tags=["onboarding"])
public_router.include_router(custody_router, prefix="/v1", tags=["custody"])

# Ops
public_router.include_router(metrics_router, prefix="/v1", tags=["metrics"])
public_router.include_router(liveness_router, tags=["health"])
