# src/brickwall/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from brickwall.api.routes_public_parts.bricks import router as bricks_router
from brickwall.api.routes_public_parts.health import router as health_router
from brickwall.api.routes_public_parts.metrics import router as metrics_router
from brickwall.api.routes_public_parts.wall import router as wall_router

public_router = APIRouter()

public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(wall_router, prefix="/v1", tags=["wall"])
public_router.include_router(bricks_router, prefix="/v1", tags=["bricks"])

# Ops
public_router.include_router(metrics_router, prefix="/v1", tags=["metrics"])
