from __future__ import annotations

import base64
from typing import Any, Dict, List, Optional, Sequence

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from brickwall.chain.instructions import transfer_ix
from brickwall.chain.proofs import TREE_HEADER_SIZE, TreeHeaderLayout
from brickwall.errors import RpcError
from brickwall.storage.brick_store import BrickStore
from brickwall.storage.catalog import CatalogEntry

Json = Dict[str, Any]

# Smallest well-formed PNG signature plus filler; enough for magic-byte sniffing.
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24
PNG_B64 = base64.b64encode(PNG_BYTES).decode("ascii")


def tree_account(*, max_depth: int = 14, max_buffer_size: int = 64, canopy_depth: int = 0) -> bytes:
    """Zero-filled concurrent Merkle tree account of the exact on-chain size."""
    header = TreeHeaderLayout.build(
        {
            "account_type": 1,
            "version": 0,
            "max_buffer_size": max_buffer_size,
            "max_depth": max_depth,
            "authority": [0] * 32,
            "creation_slot": 0,
            "padding": [0] * 6,
        }
    )
    assert len(header) == TREE_HEADER_SIZE
    body = 24 + max_buffer_size * (40 + 32 * max_depth) + (40 + 32 * max_depth)
    canopy = 32 * (2 ** (canopy_depth + 1) - 2)
    return header + b"\x00" * (body + canopy)


def das_asset(
    asset_id: str,
    owner: str,
    *,
    tree: Optional[str] = None,
    leaf_id: int = 0,
    delegate: Optional[str] = None,
    burnt: bool = False,
    compressed: bool = True,
) -> Json:
    return {
        "id": asset_id,
        "burnt": burnt,
        "ownership": {"owner": owner, "delegate": delegate},
        "compression": {
            "compressed": compressed,
            "tree": tree or str(Pubkey.new_unique()),
            "leaf_id": leaf_id,
            "data_hash": str(Hash.new_unique()),
            "creator_hash": str(Hash.new_unique()),
        },
    }


def das_proof(tree: str, *, nodes: int = 14) -> Json:
    return {
        "root": str(Hash.new_unique()),
        "proof": [str(Pubkey.new_unique()) for _ in range(nodes)],
        "tree_id": tree,
    }


class FakeIndex:
    """In-memory AssetIndex. Owned-asset pages are derived from `assets`."""

    def __init__(self) -> None:
        self.assets: Dict[str, Json] = {}
        self.proofs: Dict[str, Json] = {}
        self.fail_pages: set[tuple[str, int]] = set()
        self.calls: List[tuple] = []

    def add(self, asset_id: str, owner: str, *, tree: str, nodes: int = 14, **kw: Any) -> Json:
        self.assets[asset_id] = das_asset(asset_id, owner, tree=tree, **kw)
        self.proofs[asset_id] = das_proof(tree, nodes=nodes)
        return self.assets[asset_id]

    def set_owner(self, asset_id: str, owner: str) -> None:
        self.assets[asset_id]["ownership"]["owner"] = owner

    async def fetch_owned_assets(self, owner: str, *, page: int, limit: int) -> Json:
        self.calls.append(("owned", owner, page, limit))
        if (owner, page) in self.fail_pages:
            raise RpcError("rpc_error", "getAssetsByOwner returned an error", {"page": page})
        items = [a for a in self.assets.values() if a["ownership"]["owner"] == owner]
        chunk = items[(page - 1) * limit : page * limit]
        return {"total": len(chunk), "limit": limit, "page": page, "items": chunk}

    async def fetch_proof(self, asset_id: str) -> Optional[Json]:
        self.calls.append(("proof", asset_id))
        return self.proofs.get(asset_id)

    async def fetch_asset(self, asset_id: str) -> Optional[Json]:
        self.calls.append(("asset", asset_id))
        return self.assets.get(asset_id)


class FakeLedger:
    """In-memory LedgerClient.

    `pending[sig] = n` makes fetch_transaction return None n times first;
    `failing[sig] = n` makes it raise RpcError n times first.
    """

    def __init__(self) -> None:
        self.blockhash = Hash.new_unique()
        self.accounts: Dict[str, bytes] = {}
        self.transactions: Dict[str, Json] = {}
        self.pending: Dict[str, int] = {}
        self.failing: Dict[str, int] = {}
        self.calls: List[tuple] = []

    async def latest_blockhash(self) -> Hash:
        self.calls.append(("blockhash",))
        return self.blockhash

    async def fetch_account(self, address: str) -> Optional[bytes]:
        self.calls.append(("account", address))
        return self.accounts.get(address)

    async def fetch_transaction(self, signature: str) -> Optional[Json]:
        self.calls.append(("transaction", signature))
        if self.failing.get(signature, 0) > 0:
            self.failing[signature] -= 1
            raise RpcError("rpc_transport", "getTransaction request failed", {"method": "getTransaction"})
        left = self.pending.get(signature, 0)
        if left > 0:
            self.pending[signature] = left - 1
            return None
        return self.transactions.get(signature)

    def add_payment(
        self,
        payer: Keypair,
        to: Pubkey,
        lamports: int,
        *,
        err: Any = None,
        extra_ixs: Sequence = (),
    ) -> str:
        """Record a finalized, signed System transfer and return its signature."""
        blockhash = Hash.new_unique()
        msg = Message.new_with_blockhash([transfer_ix(payer.pubkey(), to, lamports), *extra_ixs], payer.pubkey(), blockhash)
        tx = Transaction([payer], msg, blockhash)
        sig = str(tx.signatures[0])
        self.transactions[sig] = {
            "slot": 123,
            "meta": {"err": err},
            "transaction": [base64.b64encode(bytes(tx)).decode("ascii"), "base64"],
        }
        return sig


def seed_store(store: BrickStore, rows: Sequence[tuple[int, int, str]]) -> None:
    store.load_catalog([CatalogEntry(x=x, y=y, asset_id=a) for x, y, a in rows])
