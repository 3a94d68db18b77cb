from __future__ import annotations

import asyncio
import base64
import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from brickwall.chain.event_log import log_event
from brickwall.chain.instructions import compute_unit_limit_ix, compute_unit_price_ix, tip_ix, transfer_ix
from brickwall.chain.keys import parse_address
from brickwall.chain.proofs import MerkleProofResolver, NoTransferNeeded, OwnershipConflict
from brickwall.chain.rpc import LedgerClient
from brickwall.constants import (
    JITO_TIP_LAMPORTS,
    PRICE_PER_BRICK,
    PRICE_PER_BRICK_EDIT,
    PURCHASE_CHUNK_SIZE,
    SERVICE_SIGNAL_LAMPORTS,
)
from brickwall.errors import ConflictError, UnknownBrick, ValidationError
from brickwall.runtime.metrics import inc_counter
from brickwall.storage.brick_store import Brick, BrickStore, Coordinate

Json = Dict[str, Any]

log = logging.getLogger("brickwall.assembler")


@dataclass(frozen=True, slots=True)
class SkippedBrick:
    x: int
    y: int
    asset_id: str
    reason: str  # "already_owned" | "owned_by_other"
    owner: str

    def to_json(self) -> Json:
        return {"x": self.x, "y": self.y, "asset_id": self.asset_id, "reason": self.reason, "owner": self.owner}


@dataclass(frozen=True)
class PurchaseBatch:
    transactions: List[str]
    skipped: List[SkippedBrick]
    blockhash: str


@dataclass(frozen=True)
class EditPayment:
    transaction: str
    amount_lamports: int
    bricks: int
    blockhash: str


def dedupe_coordinates(coordinates: Iterable[Coordinate]) -> List[Coordinate]:
    out: List[Coordinate] = []
    seen: set[Coordinate] = set()
    for c in coordinates:
        if c in seen:
            continue
        seen.add(c)
        out.append(c)
    return out


def serialize_transaction(tx: Transaction) -> str:
    """Wire bytes as base64; missing signatures stay as zeroed placeholders."""
    return base64.b64encode(bytes(tx)).decode("ascii")


def edit_blockers(bricks: Sequence[Brick]) -> List[Json]:
    """Bricks that may not go through the paid edit path, with the reasons why."""
    out: List[Json] = []
    for b in bricks:
        reasons: List[str] = []
        if not b.purchased:
            reasons.append("not_purchased")
        if not b.image_location:
            reasons.append("no_image")
        if reasons:
            out.append({"x": b.x, "y": b.y, "reasons": reasons})
    return out


async def load_bricks(store: BrickStore, coords: Sequence[Coordinate]) -> List[Brick]:
    """Fetch rows for coords, failing the whole request if any brick is unknown."""
    if not coords:
        raise ValidationError("no_bricks", "at least one brick is required", {})
    bricks = await store.get_bricks(coords)
    if len(bricks) != len(coords):
        found = {b.coordinate for b in bricks}
        missing = [{"x": c.x, "y": c.y} for c in coords if c not in found]
        raise UnknownBrick("unknown_brick", "One or more bricks do not exist.", {"missing": missing})
    return bricks


def _chunks(items: Sequence[Brick], size: int) -> Iterable[Sequence[Brick]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class TransactionAssembler:
    """Builds purchase and edit-payment transactions for the caller to co-sign.

    Purchase transactions are fee-paid by the purchaser and partially signed
    by the service identity, which is the current leaf owner of every unsold
    brick asset.
    """

    def __init__(
        self,
        *,
        store: BrickStore,
        ledger: LedgerClient,
        resolver: MerkleProofResolver,
        service_keypair: Keypair,
        funds_destination: Union[Pubkey, str],
        chunk_size: int = PURCHASE_CHUNK_SIZE,
        price_per_brick: int = PRICE_PER_BRICK,
        price_per_edit: int = PRICE_PER_BRICK_EDIT,
        tip_lamports: int = JITO_TIP_LAMPORTS,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.resolver = resolver
        self.service = service_keypair
        self.funds_destination = parse_address(funds_destination, field="funds_destination")
        self.chunk_size = max(1, int(chunk_size))
        self.price_per_brick = int(price_per_brick)
        self.price_per_edit = int(price_per_edit)
        self.tip_lamports = int(tip_lamports)
        self._rng = rng

    # ----------------------------
    # Purchase flow
    # ----------------------------

    async def assemble_purchase(self, coordinates: Iterable[Coordinate], purchaser: Any) -> PurchaseBatch:
        purchaser_pk = parse_address(purchaser, field="purchaser")
        coords = dedupe_coordinates(coordinates)
        bricks = await load_bricks(self.store, coords)

        # One checkpoint for the whole batch.
        blockhash = await self.ledger.latest_blockhash()

        built: List[Union[str, SkippedBrick]] = []
        for chunk in _chunks(bricks, self.chunk_size):
            built.extend(await self._build_chunk(chunk, purchaser_pk, blockhash))

        transactions = [r for r in built if isinstance(r, str)]
        skipped = [r for r in built if isinstance(r, SkippedBrick)]

        inc_counter("purchase_tx_built_total", len(transactions))
        inc_counter("purchase_tx_skipped_total", len(skipped))
        log_event(
            log,
            "purchase_assembled",
            purchaser=str(purchaser_pk),
            requested=len(bricks),
            transactions=len(transactions),
            skipped=len(skipped),
        )
        return PurchaseBatch(transactions=transactions, skipped=skipped, blockhash=str(blockhash))

    async def _build_chunk(self, chunk: Sequence[Brick], purchaser: Pubkey, blockhash: Hash) -> List[Union[str, SkippedBrick]]:
        """Build a chunk concurrently. The first hard error aborts the chunk and cancels its siblings."""
        tasks = [asyncio.create_task(self._build_purchase_tx(b, purchaser, blockhash)) for b in chunk]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _build_purchase_tx(self, brick: Brick, purchaser: Pubkey, blockhash: Hash) -> Union[str, SkippedBrick]:
        service_pk = self.service.pubkey()
        resolution = await self.resolver.resolve_transfer_proof(brick.asset_id, purchaser, service_pk)

        if isinstance(resolution, NoTransferNeeded):
            return SkippedBrick(brick.x, brick.y, brick.asset_id, "already_owned", resolution.owner)
        if isinstance(resolution, OwnershipConflict):
            return SkippedBrick(brick.x, brick.y, brick.asset_id, "owned_by_other", resolution.owner)

        instructions = [
            compute_unit_limit_ix(),
            compute_unit_price_ix(),
            transfer_ix(purchaser, self.funds_destination, self.price_per_brick),
            transfer_ix(service_pk, self.funds_destination, SERVICE_SIGNAL_LAMPORTS),
            resolution.instruction(purchaser),
            tip_ix(purchaser, self.tip_lamports, rng=self._rng),
        ]
        tx = Transaction.new_unsigned(Message.new_with_blockhash(instructions, purchaser, blockhash))
        tx.partial_sign([self.service], blockhash)
        return serialize_transaction(tx)

    # ----------------------------
    # Edit-payment flow
    # ----------------------------

    async def assemble_edit_payment(self, coordinates: Iterable[Coordinate], payer: Any) -> EditPayment:
        payer_pk = parse_address(payer, field="payer")
        coords = dedupe_coordinates(coordinates)
        bricks = await load_bricks(self.store, coords)

        blockers = edit_blockers(bricks)
        if blockers:
            raise ConflictError(
                "bricks_not_editable",
                "Every brick must be purchased and already have an image.",
                {"bricks": blockers},
            )

        amount = self.price_per_edit * len(bricks)
        blockhash = await self.ledger.latest_blockhash()

        instructions = [
            compute_unit_limit_ix(),
            compute_unit_price_ix(),
            transfer_ix(payer_pk, self.funds_destination, amount),
            tip_ix(payer_pk, self.tip_lamports, rng=self._rng),
        ]
        tx = Transaction.new_unsigned(Message.new_with_blockhash(instructions, payer_pk, blockhash))

        log_event(log, "edit_payment_assembled", payer=str(payer_pk), bricks=len(bricks), amount=amount)
        return EditPayment(
            transaction=serialize_transaction(tx),
            amount_lamports=amount,
            bricks=len(bricks),
            blockhash=str(blockhash),
        )
