from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Sequence

from brickwall.constants import BRICK_HEIGHT, BRICK_WIDTH, CANVAS_HEIGHT, CANVAS_WIDTH
from brickwall.runtime.metrics import inc_counter
from brickwall.storage.brick_store import Brick, BrickStore

Json = Dict[str, Any]


def render_wall_view(bricks: Sequence[Brick]) -> Json:
    return {
        "width": CANVAS_WIDTH,
        "height": CANVAS_HEIGHT,
        "brick_width": BRICK_WIDTH,
        "brick_height": BRICK_HEIGHT,
        "purchased": sum(1 for b in bricks if b.purchased),
        "bricks": [
            {
                "x": b.x,
                "y": b.y,
                "purchased": b.purchased,
                "image_location": b.image_location,
            }
            for b in bricks
        ],
    }


class WallViewCache:
    """Single cached rendering of the wall.

    Every writer of brick state must call invalidate(). A render that races
    with an invalidation is returned to its caller but not cached.
    """

    def __init__(self, store: BrickStore) -> None:
        self._store = store
        self._cached: Optional[Json] = None
        self._generation = 0
        self._lock = asyncio.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    def is_cached(self) -> bool:
        return self._cached is not None

    def invalidate(self) -> None:
        self._cached = None
        self._generation += 1
        inc_counter("wall_view_invalidations_total")

    async def get(self) -> Json:
        cached = self._cached
        if cached is not None:
            return cached

        async with self._lock:
            if self._cached is not None:
                return self._cached
            gen = self._generation
            view = render_wall_view(await self._store.list_bricks())
            inc_counter("wall_view_renders_total")
            if gen == self._generation:
                self._cached = view
            return view
