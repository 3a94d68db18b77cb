from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from brickwall.api.routes_public_parts.common import _service

router = APIRouter()

Json = Dict[str, Any]


@router.get("/wall")
async def wall(request: Request) -> Json:
    view = await _service(request).get_wall()
    return {"ok": True, "wall": view}


@router.get("/bricks/{x}/{y}")
async def brick(request: Request, x: int, y: int) -> Json:
    b = await _service(request).get_brick(x, y)
    return {"ok": True, "brick": b.to_json()}
