# src/xinete/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from xinete.api.routes_public_parts.content import router as content_router
from xinete.api.routes_public_parts.health import router as health_router
from xinete.api.routes_public_parts.media import router as media_router
from xinete.api.routes_public_parts.metrics import router as metrics_router
from xinete.api.routes_public_parts.registry import router as registry_router

public_router = APIRouter()

# Versioned API surface
public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(registry_router, prefix="/v1", tags=["registry"])
public_router.include_router(media_router, prefix="/v1", tags=["media"])
public_router.include_router(content_router, prefix="/v1", tags=["content"])

# Ops
public_router.include_router(metrics_router, prefix="/v1", tags=["metrics"])
