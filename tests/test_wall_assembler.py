from __future__ import annotations

import asyncio
import base64
import random
import struct

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from brickwall.chain.instructions import BUBBLEGUM_PROGRAM, SYSTEM_PROGRAM
from brickwall.chain.proofs import MerkleProofResolver
from brickwall.constants import (
    COMPUTE_BUDGET_PROGRAM_ID,
    JITO_TIP_ACCOUNTS,
    PRICE_PER_BRICK,
    PRICE_PER_BRICK_EDIT,
    SERVICE_SIGNAL_LAMPORTS,
)
from brickwall.errors import ConflictError, ProofUnavailable, TreeUnavailable, UnknownBrick, ValidationError
from brickwall.services.assembler import TransactionAssembler
from brickwall.storage.brick_store import Coordinate
from wall_fakes import seed_store, tree_account

COMPUTE_BUDGET_PROGRAM = Pubkey.from_string(COMPUTE_BUDGET_PROGRAM_ID)


def _assembler(store, index, ledger, service: Keypair, funds: Pubkey, *, chunk_size: int = 100) -> TransactionAssembler:
    return TransactionAssembler(
        store=store,
        ledger=ledger,
        resolver=MerkleProofResolver(index, ledger),
        service_keypair=service,
        funds_destination=funds,
        chunk_size=chunk_size,
        rng=random.Random(0),
    )


def _decode(b64: str) -> Transaction:
    return Transaction.from_bytes(base64.b64decode(b64))


def _transfers(tx: Transaction) -> list[tuple[Pubkey, Pubkey, int]]:
    keys = tx.message.account_keys
    out = []
    for ix in tx.message.instructions:
        if keys[ix.program_id_index] != SYSTEM_PROGRAM:
            continue
        tag, lamports = struct.unpack("<IQ", bytes(ix.data))
        assert tag == 2
        acc = list(bytes(ix.accounts))
        out.append((keys[acc[0]], keys[acc[1]], lamports))
    return out


def _add_asset(index, ledger, owner: Pubkey, *, canopy: int = 0) -> str:
    tree = Pubkey.new_unique()
    asset_id = str(Pubkey.new_unique())
    index.add(asset_id, str(owner), tree=str(tree))
    ledger.accounts[str(tree)] = tree_account(canopy_depth=canopy)
    return asset_id


@pytest.mark.asyncio
async def test_purchase_batch_issues_one_tx_per_transferable_brick(store, index, ledger) -> None:
    service = Keypair()
    buyer = Pubkey.new_unique()
    other = Pubkey.new_unique()
    funds = Pubkey.new_unique()

    a = _add_asset(index, ledger, service.pubkey())
    b = _add_asset(index, ledger, buyer)
    c = _add_asset(index, ledger, other)
    d = _add_asset(index, ledger, service.pubkey(), canopy=2)
    seed_store(store, [(0, 0, a), (1, 0, b), (2, 0, c), (3, 0, d)])

    batch = await _assembler(store, index, ledger, service, funds, chunk_size=2).assemble_purchase(
        [Coordinate(0, 0), Coordinate(1, 0), Coordinate(2, 0), Coordinate(3, 0)],
        str(buyer),
    )

    assert len(batch.transactions) == 2
    assert batch.blockhash == str(ledger.blockhash)
    assert [(s.x, s.y, s.reason) for s in batch.skipped] == [(1, 0, "already_owned"), (2, 0, "owned_by_other")]
    assert batch.skipped[1].owner == str(other)
    # One checkpoint for the whole batch.
    assert ledger.calls.count(("blockhash",)) == 1

    for raw in batch.transactions:
        tx = _decode(raw)
        keys = tx.message.account_keys
        assert keys[0] == buyer
        assert tx.message.recent_blockhash == ledger.blockhash

        programs = [keys[ix.program_id_index] for ix in tx.message.instructions]
        assert programs == [
            COMPUTE_BUDGET_PROGRAM,
            COMPUTE_BUDGET_PROGRAM,
            SYSTEM_PROGRAM,
            SYSTEM_PROGRAM,
            BUBBLEGUM_PROGRAM,
            SYSTEM_PROGRAM,
        ]

        transfers = _transfers(tx)
        assert transfers[0] == (buyer, funds, PRICE_PER_BRICK)
        assert transfers[1] == (service.pubkey(), funds, SERVICE_SIGNAL_LAMPORTS)
        assert transfers[2][0] == buyer and str(transfers[2][1]) in JITO_TIP_ACCOUNTS

        # Purchaser signs later; the service signature is already present and valid.
        signers = keys[: tx.message.header.num_required_signatures]
        assert list(signers) == [buyer, service.pubkey()]
        assert tx.signatures[0] == Signature.default()
        assert tx.signatures[1] != Signature.default()
        assert tx.signatures[1].verify(service.pubkey(), bytes(tx.message_data()))


@pytest.mark.asyncio
async def test_purchase_output_keeps_request_order_and_dedupes(store, index, ledger) -> None:
    service = Keypair()
    buyer = Pubkey.new_unique()
    ids = [_add_asset(index, ledger, service.pubkey()) for _ in range(3)]
    seed_store(store, [(i, 5, a) for i, a in enumerate(ids)])

    asm = _assembler(store, index, ledger, service, Pubkey.new_unique(), chunk_size=1)
    batch = await asm.assemble_purchase(
        [Coordinate(2, 5), Coordinate(0, 5), Coordinate(2, 5), Coordinate(1, 5)],
        str(buyer),
    )

    assert len(batch.transactions) == 3
    proof_order = [c[1] for c in index.calls if c[0] == "proof"]
    assert proof_order == [ids[2], ids[0], ids[1]]


@pytest.mark.asyncio
async def test_purchase_unknown_brick_fails_before_any_network_call(store, index, ledger) -> None:
    service = Keypair()
    a = _add_asset(index, ledger, service.pubkey())
    seed_store(store, [(0, 0, a)])
    index.calls.clear()
    ledger.calls.clear()

    with pytest.raises(UnknownBrick) as ei:
        await _assembler(store, index, ledger, service, Pubkey.new_unique()).assemble_purchase(
            [Coordinate(0, 0), Coordinate(99, 99)],
            str(Pubkey.new_unique()),
        )

    assert isinstance(ei.value, ValidationError)
    assert ei.value.details == {"missing": [{"x": 99, "y": 99}]}
    assert index.calls == []
    assert ledger.calls == []


@pytest.mark.asyncio
async def test_purchase_rejects_malformed_purchaser(store, index, ledger) -> None:
    service = Keypair()
    seed_store(store, [(0, 0, "asset")])

    with pytest.raises(ValidationError) as ei:
        await _assembler(store, index, ledger, service, Pubkey.new_unique()).assemble_purchase(
            [Coordinate(0, 0)], "not-an-address"
        )

    assert ei.value.code == "bad_address"
    assert ledger.calls == []


@pytest.mark.asyncio
async def test_edit_payment_requires_purchased_bricks_with_images(store, index, ledger) -> None:
    service = Keypair()
    seed_store(store, [(0, 0, "a"), (1, 0, "b"), (2, 0, "c")])
    await store.mark_purchased([Coordinate(0, 0), Coordinate(1, 0)])
    await store.set_image_locations({Coordinate(0, 0): "x.png"})

    with pytest.raises(ConflictError) as ei:
        await _assembler(store, index, ledger, service, Pubkey.new_unique()).assemble_edit_payment(
            [Coordinate(0, 0), Coordinate(1, 0), Coordinate(2, 0)],
            str(Pubkey.new_unique()),
        )

    assert ei.value.details == {
        "bricks": [
            {"x": 1, "y": 0, "reasons": ["no_image"]},
            {"x": 2, "y": 0, "reasons": ["not_purchased", "no_image"]},
        ]
    }
    assert ledger.calls == []


@pytest.mark.asyncio
async def test_edit_payment_is_one_unsigned_tx_for_the_total(store, index, ledger) -> None:
    service = Keypair()
    payer = Pubkey.new_unique()
    funds = Pubkey.new_unique()
    seed_store(store, [(0, 0, "a"), (1, 0, "b")])
    coords = [Coordinate(0, 0), Coordinate(1, 0)]
    await store.mark_purchased(coords)
    await store.set_image_locations({c: f"{c.x}.png" for c in coords})

    pay = await _assembler(store, index, ledger, service, funds).assemble_edit_payment(coords, str(payer))

    assert pay.amount_lamports == 2 * PRICE_PER_BRICK_EDIT
    assert pay.bricks == 2
    tx = _decode(pay.transaction)
    assert tx.message.account_keys[0] == payer
    assert all(s == Signature.default() for s in tx.signatures)
    transfers = _transfers(tx)
    assert transfers[0] == (payer, funds, 2 * PRICE_PER_BRICK_EDIT)
    assert len(transfers) == 2
    assert service.pubkey() not in tx.message.account_keys


@pytest.mark.asyncio
async def test_purchase_aborts_whole_batch_when_a_later_proof_is_missing(store, index, ledger) -> None:
    service = Keypair()
    ids = [_add_asset(index, ledger, service.pubkey()) for _ in range(3)]
    seed_store(store, [(i, 0, a) for i, a in enumerate(ids)])
    index.proofs.pop(ids[2])

    asm = _assembler(store, index, ledger, service, Pubkey.new_unique(), chunk_size=1)
    with pytest.raises(ProofUnavailable) as ei:
        await asm.assemble_purchase([Coordinate(i, 0) for i in range(3)], str(Pubkey.new_unique()))

    assert ei.value.code == "proof_unavailable"
    assert ei.value.details == {"asset_id": ids[2]}


@pytest.mark.asyncio
async def test_purchase_aborts_when_tree_account_is_gone(store, index, ledger) -> None:
    service = Keypair()
    a = _add_asset(index, ledger, service.pubkey())
    b = _add_asset(index, ledger, service.pubkey())
    seed_store(store, [(0, 0, a), (1, 0, b)])
    ledger.accounts.pop(index.assets[b]["compression"]["tree"])

    asm = _assembler(store, index, ledger, service, Pubkey.new_unique(), chunk_size=2)
    with pytest.raises(TreeUnavailable) as ei:
        await asm.assemble_purchase([Coordinate(0, 0), Coordinate(1, 0)], str(Pubkey.new_unique()))

    assert ei.value.code == "tree_unavailable"


class _StallingResolver:
    """Fails one asset at once and blocks on every other until cancelled."""

    def __init__(self, failing: str) -> None:
        self.failing = failing
        self.cancelled: list[str] = []

    async def resolve_transfer_proof(self, asset_id, new_owner, expected_owner):
        if asset_id == self.failing:
            raise ProofUnavailable("proof_unavailable", "asset proof is empty or missing", {"asset_id": asset_id})
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled.append(asset_id)
            raise


@pytest.mark.asyncio
async def test_purchase_failure_cancels_in_flight_siblings(store, index, ledger) -> None:
    service = Keypair()
    seed_store(store, [(0, 0, "slow-1"), (1, 0, "bad"), (2, 0, "slow-2")])
    resolver = _StallingResolver("bad")
    asm = TransactionAssembler(
        store=store,
        ledger=ledger,
        resolver=resolver,
        service_keypair=service,
        funds_destination=Pubkey.new_unique(),
        chunk_size=10,
        rng=random.Random(0),
    )

    with pytest.raises(ProofUnavailable):
        await asyncio.wait_for(
            asm.assemble_purchase([Coordinate(i, 0) for i in range(3)], str(Pubkey.new_unique())),
            timeout=5,
        )

    assert sorted(resolver.cancelled) == ["slow-1", "slow-2"]
