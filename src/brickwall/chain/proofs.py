"""Merkle proof resolution for compressed asset transfers.

The resolver answers one question per asset: what must a transfer to
`new_owner` carry? The answer is one of three explicit results:

  NoTransferNeeded   new_owner already holds the leaf
  OwnershipConflict  someone other than the expected owner holds it
  TransferPlan       everything needed to build the Bubblegum transfer
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple, Union

from borsh_construct import CStruct, U8, U32, U64
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from brickwall.chain.assets import asset_from_das
from brickwall.chain.event_log import log_event
from brickwall.chain.instructions import bubblegum_transfer_ix, bubblegum_tree_authority
from brickwall.chain.keys import decode_hash32
from brickwall.chain.rpc import AssetIndex, LedgerClient
from brickwall.errors import DecodeError, ExternalUnavailable, ProofUnavailable, TreeUnavailable

Json = Dict[str, Any]

log = logging.getLogger("brickwall.proofs")

# spl-account-compression account header (ConcurrentMerkleTreeHeader V1).
TreeHeaderLayout = CStruct(
    "account_type" / U8,
    "version" / U8,
    "max_buffer_size" / U32,
    "max_depth" / U32,
    "authority" / U8[32],
    "creation_slot" / U64,
    "padding" / U8[6],
)
TREE_HEADER_SIZE = 56
_ACCOUNT_TYPE_CONCURRENT_MERKLE_TREE = 1
_NODE_SIZE = 32


@dataclass(frozen=True, slots=True)
class NoTransferNeeded:
    asset_id: str
    owner: str


@dataclass(frozen=True, slots=True)
class OwnershipConflict:
    asset_id: str
    owner: str
    expected_owner: str


@dataclass(frozen=True, slots=True)
class TransferPlan:
    asset_id: str
    tree: Pubkey
    tree_authority: Pubkey
    leaf_owner: Pubkey
    leaf_delegate: Pubkey
    root: bytes
    data_hash: bytes
    creator_hash: bytes
    leaf_index: int
    proof: Tuple[AccountMeta, ...]
    canopy_depth: int

    def instruction(self, new_owner: Pubkey) -> Instruction:
        return bubblegum_transfer_ix(
            tree=self.tree,
            tree_authority=self.tree_authority,
            leaf_owner=self.leaf_owner,
            leaf_delegate=self.leaf_delegate,
            new_leaf_owner=new_owner,
            root=self.root,
            data_hash=self.data_hash,
            creator_hash=self.creator_hash,
            leaf_index=self.leaf_index,
            proof=self.proof,
        )


TransferResolution = Union[NoTransferNeeded, TransferPlan, OwnershipConflict]


def _tree_body_size(max_depth: int, max_buffer_size: int) -> int:
    # sequence_number, active_index, buffer_size
    fixed = 3 * 8
    # ChangeLog: root, path[depth], index u32, padding u32
    change_log = _NODE_SIZE + _NODE_SIZE * max_depth + 8
    # rightmost Path: proof[depth], leaf, index u32, padding u32
    rightmost = _NODE_SIZE * max_depth + _NODE_SIZE + 8
    return fixed + max_buffer_size * change_log + rightmost


def canopy_depth_from_account(data: bytes) -> int:
    """Number of proof levels cached on-chain in a concurrent Merkle tree account."""
    if len(data) < TREE_HEADER_SIZE:
        raise DecodeError("bad_tree_account", "tree account is shorter than its header", {"len": len(data)})

    hdr = TreeHeaderLayout.parse(bytes(data[:TREE_HEADER_SIZE]))
    if int(hdr.account_type) != _ACCOUNT_TYPE_CONCURRENT_MERKLE_TREE:
        raise DecodeError("bad_tree_account", "account is not a concurrent merkle tree", {"type": int(hdr.account_type)})

    body = _tree_body_size(int(hdr.max_depth), int(hdr.max_buffer_size))
    canopy_bytes = len(data) - TREE_HEADER_SIZE - body
    if canopy_bytes < 0 or canopy_bytes % _NODE_SIZE:
        raise DecodeError(
            "bad_tree_account",
            "tree account size does not match its header",
            {"len": len(data), "max_depth": int(hdr.max_depth), "max_buffer_size": int(hdr.max_buffer_size)},
        )

    # A canopy of depth d stores 2^(d+1) - 2 nodes.
    slots = canopy_bytes // _NODE_SIZE + 2
    if slots & (slots - 1):
        raise DecodeError("bad_tree_account", "canopy size is not a full tree level", {"canopy_bytes": canopy_bytes})
    return slots.bit_length() - 2


def trim_proof(proof: Sequence[str], canopy_depth: int) -> List[str]:
    """Drop the top `canopy_depth` levels (the end of the path), which the chain already caches."""
    keep = len(proof) - max(0, int(canopy_depth))
    return list(proof[:keep]) if keep > 0 else []


def _pubkey(value: Any, *, field: str) -> Pubkey:
    try:
        return Pubkey.from_string(str(value or "").strip())
    except ValueError as e:
        raise DecodeError("bad_pubkey", f"could not decode {field}", {"field": field}) from e


def _as_pubkey(value: Union[Pubkey, str], *, field: str) -> Pubkey:
    return value if isinstance(value, Pubkey) else _pubkey(value, field=field)


class MerkleProofResolver:
    def __init__(self, index: AssetIndex, ledger: LedgerClient) -> None:
        self.index = index
        self.ledger = ledger

    async def resolve_transfer_proof(
        self,
        asset_id: str,
        new_owner: Union[Pubkey, str],
        expected_owner: Union[Pubkey, str],
    ) -> TransferResolution:
        new_owner_pk = _as_pubkey(new_owner, field="new_owner")
        expected_pk = _as_pubkey(expected_owner, field="expected_owner")

        proof = await self.index.fetch_proof(asset_id)
        path = proof.get("proof") if isinstance(proof, dict) else None
        if not isinstance(path, list) or not path:
            raise ProofUnavailable("proof_unavailable", "asset proof is empty or missing", {"asset_id": asset_id})

        tree = _pubkey(proof.get("tree_id"), field="tree_id")
        account = await self.ledger.fetch_account(str(tree))
        if account is None:
            raise TreeUnavailable("tree_unavailable", "merkle tree account not found", {"asset_id": asset_id, "tree": str(tree)})

        depth = canopy_depth_from_account(account)
        trimmed = trim_proof([str(p) for p in path], depth)

        asset = asset_from_das(await self.index.fetch_asset(asset_id))
        if asset is None:
            raise ExternalUnavailable("asset_unavailable", "asset record not found", {"asset_id": asset_id})

        if asset.owner == str(new_owner_pk):
            return NoTransferNeeded(asset_id=asset_id, owner=asset.owner)

        if asset.owner != str(expected_pk):
            log_event(
                log,
                "transfer_owner_conflict",
                asset_id=asset_id,
                owner=asset.owner,
                expected_owner=str(expected_pk),
            )
            return OwnershipConflict(asset_id=asset_id, owner=asset.owner, expected_owner=str(expected_pk))

        leaf_owner = _pubkey(asset.owner, field="owner")
        leaf_delegate = _pubkey(asset.delegate, field="delegate") if asset.delegate else leaf_owner

        return TransferPlan(
            asset_id=asset_id,
            tree=tree,
            tree_authority=bubblegum_tree_authority(tree),
            leaf_owner=leaf_owner,
            leaf_delegate=leaf_delegate,
            root=decode_hash32(proof.get("root"), field="root"),
            data_hash=decode_hash32(asset.data_hash, field="data_hash"),
            creator_hash=decode_hash32(asset.creator_hash, field="creator_hash"),
            leaf_index=asset.leaf_index,
            proof=tuple(AccountMeta(_pubkey(p, field="proof"), False, False) for p in trimmed),
            canopy_depth=depth,
        )
