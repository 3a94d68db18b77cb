from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from brickwall.chain.event_log import log_event
from brickwall.errors import ConflictError
from brickwall.runtime.sqlite_db import SqliteDB
from brickwall.storage.catalog import CatalogEntry

log = logging.getLogger("brickwall.store")

# Keep well under SQLite's bound-parameter limit.
_MAX_PARAMS = 900


@dataclass(frozen=True, slots=True, order=True)
class Coordinate:
    x: int
    y: int


@dataclass(frozen=True, slots=True)
class Brick:
    x: int
    y: int
    asset_id: str
    purchased: bool
    image_location: Optional[str]

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.x, self.y)

    def to_json(self) -> dict:
        return {
            "x": self.x,
            "y": self.y,
            "asset_id": self.asset_id,
            "purchased": self.purchased,
            "image_location": self.image_location,
        }


def _row_to_brick(row: sqlite3.Row) -> Brick:
    loc = row["image_location"]
    return Brick(
        x=int(row["x"]),
        y=int(row["y"]),
        asset_id=str(row["asset_id"]),
        purchased=bool(row["purchased"]),
        image_location=str(loc) if loc else None,
    )


def _chunks(items: Sequence, size: int) -> Iterable[Sequence]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class BrickStore:
    """wall_bricks / edit_bricks access.

    Public coroutine methods run the blocking SQLite work in a worker thread so
    the event loop suspends on every query. The `_..._sync` methods hold the
    actual SQL and are safe to call from any thread.
    """

    def __init__(self, db: SqliteDB) -> None:
        self.db = db

    def init(self) -> None:
        self.db.init_schema()

    # ----------------------------
    # Catalog bootstrap
    # ----------------------------

    def load_catalog(self, entries: Sequence[CatalogEntry]) -> int:
        """Insert the catalog if wall_bricks is empty. Returns rows inserted."""
        with self.db.write_tx() as con:
            row = con.execute("SELECT COUNT(*) AS n FROM wall_bricks;").fetchone()
            if int(row["n"]) > 0:
                log_event(log, "catalog_skip", existing=int(row["n"]))
                return 0
            con.executemany(
                "INSERT INTO wall_bricks(x, y, asset_id, purchased, image_location) VALUES(?, ?, ?, 0, NULL);",
                [(e.x, e.y, e.asset_id) for e in entries],
            )
        log_event(log, "catalog_loaded", bricks=len(entries))
        return len(entries)

    # ----------------------------
    # Reads
    # ----------------------------

    def _get_bricks_sync(self, coords: Sequence[Coordinate]) -> List[Brick]:
        found: Dict[Coordinate, Brick] = {}
        with self.db.connection() as con:
            for part in _chunks(list(coords), _MAX_PARAMS // 2):
                values = ", ".join("(?, ?)" for _ in part)
                params: List[int] = []
                for c in part:
                    params.extend((int(c.x), int(c.y)))
                rows = con.execute(
                    f"""
                    SELECT x, y, asset_id, purchased, image_location
                    FROM wall_bricks
                    WHERE (x, y) IN (VALUES {values});
                    """,
                    params,
                ).fetchall()
                for r in rows:
                    b = _row_to_brick(r)
                    found[b.coordinate] = b
        # Preserve request order.
        return [found[c] for c in coords if c in found]

    async def get_bricks(self, coords: Sequence[Coordinate]) -> List[Brick]:
        return await asyncio.to_thread(self._get_bricks_sync, coords)

    async def get_brick(self, x: int, y: int) -> Optional[Brick]:
        rows = await self.get_bricks([Coordinate(x, y)])
        return rows[0] if rows else None

    def _list_bricks_sync(self) -> List[Brick]:
        with self.db.connection() as con:
            rows = con.execute(
                "SELECT x, y, asset_id, purchased, image_location FROM wall_bricks ORDER BY y ASC, x ASC;"
            ).fetchall()
        return [_row_to_brick(r) for r in rows]

    async def list_bricks(self) -> List[Brick]:
        return await asyncio.to_thread(self._list_bricks_sync)

    def _unpurchased_asset_ids_sync(self) -> List[str]:
        with self.db.connection() as con:
            rows = con.execute("SELECT asset_id FROM wall_bricks WHERE purchased=0;").fetchall()
        return [str(r["asset_id"]) for r in rows]

    async def unpurchased_asset_ids(self) -> List[str]:
        return await asyncio.to_thread(self._unpurchased_asset_ids_sync)

    # ----------------------------
    # Writes (all idempotent and keyed by unique columns)
    # ----------------------------

    def _mark_purchased_by_asset_ids_sync(self, asset_ids: Sequence[str]) -> int:
        changed = 0
        with self.db.write_tx() as con:
            for part in _chunks(list(asset_ids), _MAX_PARAMS):
                marks = ", ".join("?" for _ in part)
                cur = con.execute(
                    f"UPDATE wall_bricks SET purchased=1 WHERE purchased=0 AND asset_id IN ({marks});",
                    list(part),
                )
                changed += int(cur.rowcount or 0)
        return changed

    async def mark_purchased_by_asset_ids(self, asset_ids: Sequence[str]) -> int:
        if not asset_ids:
            return 0
        return await asyncio.to_thread(self._mark_purchased_by_asset_ids_sync, asset_ids)

    def _mark_purchased_sync(self, coords: Sequence[Coordinate]) -> int:
        changed = 0
        with self.db.write_tx() as con:
            for c in coords:
                cur = con.execute(
                    "UPDATE wall_bricks SET purchased=1 WHERE x=? AND y=? AND purchased=0;",
                    (int(c.x), int(c.y)),
                )
                changed += int(cur.rowcount or 0)
        return changed

    async def mark_purchased(self, coords: Sequence[Coordinate]) -> int:
        return await asyncio.to_thread(self._mark_purchased_sync, coords)

    def _set_image_locations_sync(self, locations: Dict[Coordinate, str]) -> int:
        changed = 0
        with self.db.write_tx() as con:
            for c, loc in locations.items():
                cur = con.execute(
                    "UPDATE wall_bricks SET image_location=? WHERE x=? AND y=?;",
                    (str(loc), int(c.x), int(c.y)),
                )
                changed += int(cur.rowcount or 0)
        return changed

    async def set_image_locations(self, locations: Dict[Coordinate, str]) -> int:
        return await asyncio.to_thread(self._set_image_locations_sync, locations)

    # ----------------------------
    # Consumed transactions (replay prevention)
    # ----------------------------

    def _is_transaction_consumed_sync(self, tx_hash: str) -> bool:
        with self.db.connection() as con:
            row = con.execute("SELECT 1 FROM edit_bricks WHERE transaction_hash=? LIMIT 1;", (tx_hash,)).fetchone()
        return row is not None

    async def is_transaction_consumed(self, tx_hash: str) -> bool:
        return await asyncio.to_thread(self._is_transaction_consumed_sync, str(tx_hash))

    def _record_edit_sync(self, username: str, tx_hash: str) -> None:
        try:
            with self.db.write_tx() as con:
                con.execute(
                    "INSERT INTO edit_bricks(username, transaction_hash, created_ts_ms) VALUES(?, ?, ?);",
                    (username, tx_hash, int(time.time() * 1000)),
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                "transaction_consumed",
                "transaction has already been used",
                {"transaction_hash": tx_hash},
            ) from e

    async def record_edit(self, username: str, tx_hash: str) -> None:
        """Consume a transaction hash. Raises ConflictError if it was already consumed."""
        await asyncio.to_thread(self._record_edit_sync, str(username), str(tx_hash))

    # ----------------------------
    # Consumed challenge nonces (replay prevention for signed challenges)
    # ----------------------------

    def _consume_challenge_sync(self, address: str, nonce: str, retain_ms: int) -> None:
        now = int(time.time() * 1000)
        try:
            with self.db.write_tx() as con:
                # Past the retention window the challenge itself has expired.
                con.execute("DELETE FROM auth_challenges WHERE created_ts_ms < ?;", (now - int(retain_ms),))
                con.execute(
                    "INSERT INTO auth_challenges(address, nonce, created_ts_ms) VALUES(?, ?, ?);",
                    (address, nonce, now),
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                "challenge_consumed",
                "signed challenge has already been used",
                {"address": address},
            ) from e

    async def consume_challenge(self, address: str, nonce: str, *, retain_ms: int) -> None:
        """Consume a challenge nonce for address. Raises ConflictError if it was already used."""
        await asyncio.to_thread(self._consume_challenge_sync, str(address), str(nonce), int(retain_ms))
