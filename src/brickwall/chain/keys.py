from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from solders.hash import Hash, ParseHashError
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from brickwall.errors import DecodeError, ValidationError


def parse_address(value: Any, *, field: str = "address") -> Pubkey:
    """Parse a base-58 account address supplied by a caller."""
    s = str(value or "").strip()
    if not s:
        raise ValidationError("bad_address", f"{field} is required", {"field": field})
    try:
        return Pubkey.from_string(s)
    except ValueError as e:
        raise ValidationError("bad_address", f"invalid {field}", {"field": field, "value": s[:64]}) from e


def decode_hash32(value: Any, *, field: str) -> bytes:
    """Decode a base-58 32-byte value (Merkle root, data hash, creator hash)."""
    s = str(value or "").strip()
    try:
        return bytes(Hash.from_string(s))
    except (ParseHashError, ValueError) as e:
        raise DecodeError("bad_hash", f"could not decode {field}", {"field": field, "value": s[:64]}) from e


def load_keypair(*, secret: Optional[str] = None, path: Optional[str] = None) -> Keypair:
    """Load the service identity.

    Accepts either a base-58 secret key string or a path to a solana-keygen
    JSON file (an array of 64 integers). The inline secret wins when both are set.
    """
    s = (secret or "").strip()
    if s:
        return Keypair.from_base58_string(s)

    p = (path or "").strip()
    if not p:
        raise RuntimeError("service keypair not configured: set BRICKWALL_KEYPAIR or BRICKWALL_KEYPAIR_PATH")

    raw = json.loads(Path(p).expanduser().read_text(encoding="utf-8"))
    if not isinstance(raw, list) or len(raw) != 64:
        raise RuntimeError(f"keypair file {p} must contain a JSON array of 64 integers")
    return Keypair.from_bytes(bytes(int(b) for b in raw))
