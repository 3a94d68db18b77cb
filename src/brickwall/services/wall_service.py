from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from brickwall.chain.assets import AssetOwnershipOracle
from brickwall.chain.event_log import log_event
from brickwall.chain.keys import parse_address
from brickwall.constants import PRICE_PER_BRICK, PRICE_PER_BRICK_EDIT
from brickwall.crypto.challenge import MAX_FUTURE_SKEW_S, verify_challenge
from brickwall.errors import ConflictError, NotFoundError, ValidationError
from brickwall.runtime.metrics import inc_counter
from brickwall.services.assembler import (
    EditPayment,
    PurchaseBatch,
    TransactionAssembler,
    dedupe_coordinates,
    edit_blockers,
    load_bricks,
)
from brickwall.services.confirmation import ConfirmedPayment, TransactionConfirmer
from brickwall.services.wall_view import WallViewCache
from brickwall.storage.brick_store import Brick, BrickStore, Coordinate
from brickwall.storage.images import DecodedImage, ImageStore

Json = Dict[str, Any]

log = logging.getLogger("brickwall.wall")


@dataclass(frozen=True)
class ImageUpdate:
    bricks: List[Brick]
    payment: Optional[ConfirmedPayment]


class WallService:
    """Operations exposed to the HTTP layer.

    Every path that writes brick state clears the wall view cache before
    returning.
    """

    def __init__(
        self,
        *,
        store: BrickStore,
        oracle: AssetOwnershipOracle,
        assembler: TransactionAssembler,
        confirmer: TransactionConfirmer,
        cache: WallViewCache,
        images: ImageStore,
        challenge_ttl_s: int = 600,
    ) -> None:
        self.store = store
        self.oracle = oracle
        self.assembler = assembler
        self.confirmer = confirmer
        self.cache = cache
        self.images = images
        self.challenge_ttl_s = int(challenge_ttl_s)

    # ----------------------------
    # Reads
    # ----------------------------

    async def get_wall(self) -> Json:
        return await self.cache.get()

    async def get_brick(self, x: int, y: int) -> Brick:
        brick = await self.store.get_brick(int(x), int(y))
        if brick is None:
            raise NotFoundError("unknown_brick", "brick does not exist", {"x": int(x), "y": int(y)})
        return brick

    # ----------------------------
    # Purchase
    # ----------------------------

    async def purchase_bricks(self, coordinates: Iterable[Coordinate], purchaser: str) -> PurchaseBatch:
        return await self.assembler.assemble_purchase(coordinates, purchaser)

    async def confirm_purchase(self, *, signature: str, address: str, coordinate: Coordinate) -> Brick:
        """Flag one brick purchased once its payment is final and the asset has moved."""
        owner = str(parse_address(address))
        (brick,) = await load_bricks(self.store, [coordinate])

        await self._require_unconsumed(signature)
        payment = await self.confirmer.confirm_payment(signature, owner, PRICE_PER_BRICK)
        await self._require_ownership(owner, [brick])

        await self.store.record_edit(owner, payment.signature)
        await self.store.mark_purchased([brick.coordinate])
        self.cache.invalidate()

        inc_counter("purchase_confirmed_total")
        log_event(log, "purchase_confirmed", address=owner, signature=payment.signature, x=brick.x, y=brick.y)
        return await self.get_brick(brick.x, brick.y)

    # ----------------------------
    # Images
    # ----------------------------

    async def request_edit_payment(self, coordinates: Iterable[Coordinate], payer: str) -> EditPayment:
        return await self.assembler.assemble_edit_payment(coordinates, payer)

    async def edit_images_paid(self, *, signature: str, address: str, images: Mapping[Coordinate, str]) -> ImageUpdate:
        """Replace images on purchased bricks, paid by a confirmed edit transaction."""
        owner = str(parse_address(address))
        decoded = self._decode_images(images)
        bricks = await load_bricks(self.store, list(decoded.keys()))

        blockers = edit_blockers(bricks)
        if blockers:
            raise ConflictError(
                "bricks_not_editable",
                "Every brick must be purchased and already have an image.",
                {"bricks": blockers},
            )

        await self._require_unconsumed(signature)
        await self._require_ownership(owner, bricks)
        payment = await self.confirmer.confirm_payment(signature, owner, PRICE_PER_BRICK_EDIT * len(bricks))

        # Files first: the payment is consumed only once the new images exist.
        locations = await self._save_images(decoded)
        try:
            await self.store.record_edit(owner, payment.signature)
        except ConflictError:
            await self._discard_images(locations.values())
            raise

        updated = await self._apply_images(locations, previous=bricks)
        inc_counter("images_edited_total", len(updated))
        log_event(log, "images_edited", address=owner, signature=payment.signature, bricks=len(updated))
        return ImageUpdate(bricks=updated, payment=payment)

    async def set_initial_images(
        self,
        *,
        address: str,
        message: str,
        signature: str,
        images: Mapping[Coordinate, str],
    ) -> ImageUpdate:
        """First image for freshly bought bricks, authorized by a signed challenge."""
        owner = str(parse_address(address))
        challenge = verify_challenge(message, signature, address=owner, ttl_s=self.challenge_ttl_s)

        decoded = self._decode_images(images)
        bricks = await load_bricks(self.store, list(decoded.keys()))

        already = [{"x": b.x, "y": b.y} for b in bricks if b.image_location]
        if already:
            raise ConflictError(
                "image_already_set",
                "Some bricks already have an image; use the paid edit path.",
                {"bricks": already},
            )

        await self._require_ownership(owner, bricks)
        await self.store.consume_challenge(
            owner,
            challenge.nonce,
            retain_ms=(self.challenge_ttl_s + MAX_FUTURE_SKEW_S) * 1000,
        )
        await self.store.mark_purchased([b.coordinate for b in bricks])

        locations = await self._save_images(decoded)
        updated = await self._apply_images(locations, previous=bricks)
        inc_counter("images_set_total", len(updated))
        log_event(log, "images_set", address=owner, bricks=len(updated))
        return ImageUpdate(bricks=updated, payment=None)

    # ----------------------------
    # Helpers
    # ----------------------------

    def _decode_images(self, images: Mapping[Coordinate, str]) -> Dict[Coordinate, DecodedImage]:
        if not images:
            raise ValidationError("no_bricks", "at least one brick image is required", {})
        out: Dict[Coordinate, DecodedImage] = {}
        for c in dedupe_coordinates(images.keys()):
            try:
                out[c] = self.images.decode(images[c])
            except ValidationError as e:
                raise ValidationError(e.code, e.reason, {"x": c.x, "y": c.y, **(e.details or {})}) from e
        return out

    async def _save_images(self, decoded: Dict[Coordinate, DecodedImage]) -> Dict[Coordinate, str]:
        locations: Dict[Coordinate, str] = {}
        try:
            for c, img in decoded.items():
                locations[c] = await self.images.save(img)
        except Exception:
            await self._discard_images(locations.values())
            raise
        return locations

    async def _discard_images(self, locations: Iterable[str]) -> None:
        for loc in locations:
            await self.images.remove(loc)

    async def _apply_images(self, locations: Dict[Coordinate, str], *, previous: Sequence[Brick]) -> List[Brick]:
        """Point bricks at their new files, then drop the files they replaced."""
        await self.store.set_image_locations(locations)
        self.cache.invalidate()
        await self._discard_images(
            b.image_location for b in previous if b.image_location and b.image_location != locations.get(b.coordinate)
        )
        return await self.store.get_bricks(list(locations.keys()))

    async def _require_unconsumed(self, signature: str) -> None:
        if await self.store.is_transaction_consumed(str(signature)):
            raise ConflictError(
                "transaction_consumed",
                "transaction has already been used",
                {"transaction_hash": str(signature)},
            )

    async def _require_ownership(self, owner: str, bricks: Sequence[Brick]) -> None:
        held = await self.oracle.owns_assets(owner, [b.asset_id for b in bricks])
        missing = [{"x": b.x, "y": b.y, "asset_id": b.asset_id} for b in bricks if b.asset_id not in held]
        if missing:
            raise ConflictError(
                "ownership_unproven",
                "The address does not hold every brick's asset.",
                {"bricks": missing},
            )
