from __future__ import annotations

import hashlib
import random
from typing import Optional, Sequence

from borsh_construct import CStruct, U8, U32, U64
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer

from brickwall.constants import (
    BUBBLEGUM_PROGRAM_ID,
    COMPUTE_UNIT_LIMIT,
    COMPUTE_UNIT_PRICE_MICRO_LAMPORTS,
    JITO_TIP_ACCOUNTS,
    SPL_ACCOUNT_COMPRESSION_PROGRAM_ID,
    SPL_NOOP_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
)

BUBBLEGUM_PROGRAM = Pubkey.from_string(BUBBLEGUM_PROGRAM_ID)
COMPRESSION_PROGRAM = Pubkey.from_string(SPL_ACCOUNT_COMPRESSION_PROGRAM_ID)
NOOP_PROGRAM = Pubkey.from_string(SPL_NOOP_PROGRAM_ID)
SYSTEM_PROGRAM = Pubkey.from_string(SYSTEM_PROGRAM_ID)

TransferArgsLayout = CStruct(
    "root" / U8[32],
    "data_hash" / U8[32],
    "creator_hash" / U8[32],
    "nonce" / U64,
    "index" / U32,
)


def sighash(name: str) -> bytes:
    """Anchor instruction discriminator."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def compute_unit_limit_ix(units: int = COMPUTE_UNIT_LIMIT) -> Instruction:
    return set_compute_unit_limit(int(units))


def compute_unit_price_ix(micro_lamports: int = COMPUTE_UNIT_PRICE_MICRO_LAMPORTS) -> Instruction:
    return set_compute_unit_price(int(micro_lamports))


def transfer_ix(from_pubkey: Pubkey, to_pubkey: Pubkey, lamports: int) -> Instruction:
    return transfer(TransferParams(from_pubkey=from_pubkey, to_pubkey=to_pubkey, lamports=int(lamports)))


def pick_tip_account(rng: Optional[random.Random] = None) -> Pubkey:
    chooser = rng or random
    return Pubkey.from_string(chooser.choice(JITO_TIP_ACCOUNTS))


def tip_ix(from_pubkey: Pubkey, lamports: int, *, rng: Optional[random.Random] = None) -> Instruction:
    """Relay tip to one account from the fixed tip pool."""
    return transfer_ix(from_pubkey, pick_tip_account(rng), lamports)


def bubblegum_tree_authority(tree: Pubkey) -> Pubkey:
    return Pubkey.find_program_address([bytes(tree)], BUBBLEGUM_PROGRAM)[0]


def encode_bubblegum_transfer(*, root: bytes, data_hash: bytes, creator_hash: bytes, leaf_index: int) -> bytes:
    data = TransferArgsLayout.build(
        {
            "root": list(root),
            "data_hash": list(data_hash),
            "creator_hash": list(creator_hash),
            "nonce": int(leaf_index),
            "index": int(leaf_index),
        }
    )
    return sighash("transfer") + data


def bubblegum_transfer_ix(
    *,
    tree: Pubkey,
    tree_authority: Pubkey,
    leaf_owner: Pubkey,
    leaf_delegate: Pubkey,
    new_leaf_owner: Pubkey,
    root: bytes,
    data_hash: bytes,
    creator_hash: bytes,
    leaf_index: int,
    proof: Sequence[AccountMeta],
) -> Instruction:
    """Compressed NFT transfer. The leaf owner signs; proof nodes follow as remaining accounts."""
    accounts = [
        AccountMeta(tree_authority, False, False),
        AccountMeta(leaf_owner, True, False),
        AccountMeta(leaf_delegate, False, False),
        AccountMeta(new_leaf_owner, False, False),
        AccountMeta(tree, False, True),
        AccountMeta(NOOP_PROGRAM, False, False),
        AccountMeta(COMPRESSION_PROGRAM, False, False),
        AccountMeta(SYSTEM_PROGRAM, False, False),
    ]
    accounts.extend(proof)
    data = encode_bubblegum_transfer(
        root=root,
        data_hash=data_hash,
        creator_hash=creator_hash,
        leaf_index=leaf_index,
    )
    return Instruction(BUBBLEGUM_PROGRAM, data, accounts)
