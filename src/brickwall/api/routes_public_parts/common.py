from __future__ import annotations

from typing import Dict, List

from fastapi import Request

from brickwall.api.errors import ApiError
from brickwall.api.schemas import BrickImage
from brickwall.services.wall_service import WallService
from brickwall.storage.brick_store import Coordinate


def _service(request: Request) -> WallService:
    rt = getattr(request.app.state, "runtime", None)
    if rt is None:
        raise ApiError.internal("not_ready", "wall runtime not attached to app.state", {})
    return rt.service


def _image_map(bricks: List[BrickImage]) -> Dict[Coordinate, str]:
    out: Dict[Coordinate, str] = {}
    for b in bricks:
        c = b.coordinate()
        if c in out:
            raise ApiError.bad_request("duplicate_brick", "each brick may appear once", {"x": c.x, "y": c.y})
        out[c] = b.image
    return out
