# src/brickwall/crypto/challenge.py
from __future__ import annotations

"""Signed ownership challenges.

A wallet proves control of an address by signing a short, versioned text
message:

    brickwall-auth
    version: 1
    address: <base58 address>
    issued_at: <unix seconds>
    nonce: <free text>

Fields are parsed by key, never by position.
"""

import base64
import binascii
import re
import secrets
import time
from dataclasses import dataclass
from typing import Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from solders.signature import Signature

from brickwall.chain.keys import parse_address
from brickwall.errors import ValidationError

CHALLENGE_HEADER = "brickwall-auth"
CHALLENGE_VERSION = 1

# Allowed clock skew for issued_at in the future.
MAX_FUTURE_SKEW_S = 60

_BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")


@dataclass(frozen=True, slots=True)
class Challenge:
    version: int
    address: str
    issued_at: int
    nonce: str


def build_challenge(address: str, *, issued_at: Optional[int] = None, nonce: Optional[str] = None) -> str:
    ts = int(time.time()) if issued_at is None else int(issued_at)
    n = nonce if nonce is not None else secrets.token_hex(16)
    return "\n".join(
        [
            CHALLENGE_HEADER,
            f"version: {CHALLENGE_VERSION}",
            f"address: {address}",
            f"issued_at: {ts}",
            f"nonce: {n}",
        ]
    )


def parse_challenge(message: str) -> Challenge:
    lines = [ln.strip() for ln in str(message or "").strip().splitlines()]
    if not lines or lines[0] != CHALLENGE_HEADER:
        raise ValidationError("bad_challenge", "challenge header is missing", {})

    fields: Dict[str, str] = {}
    for ln in lines[1:]:
        if not ln:
            continue
        key, sep, value = ln.partition(":")
        if not sep:
            raise ValidationError("bad_challenge", "challenge line is not key: value", {"line": ln})
        key = key.strip().lower()
        if key in fields:
            raise ValidationError("bad_challenge", "duplicate challenge field", {"field": key})
        fields[key] = value.strip()

    missing = [k for k in ("version", "address", "issued_at", "nonce") if not fields.get(k)]
    if missing:
        raise ValidationError("bad_challenge", "challenge fields are missing", {"missing": missing})

    try:
        version = int(fields["version"])
        issued_at = int(fields["issued_at"])
    except ValueError as e:
        raise ValidationError("bad_challenge", "challenge version/issued_at must be integers", {}) from e

    return Challenge(version=version, address=fields["address"], issued_at=issued_at, nonce=fields["nonce"])


def decode_signature(sig: str) -> bytes:
    """64-byte Ed25519 signature from base58 (wallet default) or base64."""
    s = str(sig or "").strip()
    if not s:
        raise ValidationError("bad_signature", "signature is required", {})

    if _BASE58_RE.match(s):
        try:
            return bytes(Signature.from_string(s))
        except ValueError:
            pass

    try:
        raw = base64.b64decode(s, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("bad_signature", "signature is not base58 or base64", {}) from e
    if len(raw) != 64:
        raise ValidationError("bad_signature", "signature must be 64 bytes", {"len": len(raw)})
    return raw


def verify_challenge(
    message: str,
    signature: str,
    *,
    address: str,
    ttl_s: int,
    now: Optional[int] = None,
) -> Challenge:
    """Check a signed challenge for `address`. Raises ValidationError on any mismatch."""
    pk = parse_address(address)
    ch = parse_challenge(message)

    if ch.version != CHALLENGE_VERSION:
        raise ValidationError("bad_challenge", "unsupported challenge version", {"version": ch.version})
    if ch.address != str(pk):
        raise ValidationError("challenge_address_mismatch", "challenge was issued for another address", {})

    ts = int(time.time()) if now is None else int(now)
    if ch.issued_at > ts + MAX_FUTURE_SKEW_S:
        raise ValidationError("challenge_expired", "challenge is issued in the future", {"issued_at": ch.issued_at})
    if ts - ch.issued_at > int(ttl_s):
        raise ValidationError("challenge_expired", "challenge has expired", {"issued_at": ch.issued_at, "ttl_s": int(ttl_s)})

    sig = decode_signature(signature)
    try:
        Ed25519PublicKey.from_public_bytes(bytes(pk)).verify(sig, str(message).encode("utf-8"))
    except InvalidSignature as e:
        raise ValidationError("bad_signature", "challenge signature does not verify", {}) from e

    return ch
