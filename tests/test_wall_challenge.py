from __future__ import annotations

import base64

import pytest
from solders.keypair import Keypair

from brickwall.crypto.challenge import build_challenge, decode_signature, parse_challenge, verify_challenge
from brickwall.errors import ValidationError

NOW = 1_700_000_000


def _signed(kp: Keypair, *, issued_at: int = NOW, address: str | None = None) -> tuple[str, str]:
    msg = build_challenge(address or str(kp.pubkey()), issued_at=issued_at, nonce="n-1")
    return msg, str(kp.sign_message(msg.encode("utf-8")))


def test_challenge_fields_are_parsed_by_key() -> None:
    msg = "brickwall-auth\nnonce: abc: def\naddress: Addr\nversion: 1\nissued_at: 42\n"
    ch = parse_challenge(msg)
    assert (ch.version, ch.address, ch.issued_at, ch.nonce) == (1, "Addr", 42, "abc: def")


@pytest.mark.parametrize(
    "msg",
    [
        "",
        "hello\nversion: 1",
        "brickwall-auth\nversion: 1\naddress: A\nissued_at: 1",
        "brickwall-auth\nversion: x\naddress: A\nissued_at: 1\nnonce: n",
        "brickwall-auth\nversion: 1\nversion: 1\naddress: A\nissued_at: 1\nnonce: n",
        "brickwall-auth\njunk line\n",
    ],
)
def test_malformed_challenges_are_rejected(msg: str) -> None:
    with pytest.raises(ValidationError):
        parse_challenge(msg)


def test_valid_signature_base58_and_base64() -> None:
    kp = Keypair()
    msg, sig58 = _signed(kp)
    sig64 = base64.b64encode(bytes(kp.sign_message(msg.encode("utf-8")))).decode("ascii")

    for sig in (sig58, sig64):
        ch = verify_challenge(msg, sig, address=str(kp.pubkey()), ttl_s=600, now=NOW + 10)
        assert ch.address == str(kp.pubkey())

    assert decode_signature(sig58) == decode_signature(sig64)


def test_challenge_for_another_address_is_rejected() -> None:
    kp, other = Keypair(), Keypair()
    msg, sig = _signed(kp, address=str(other.pubkey()))

    with pytest.raises(ValidationError) as ei:
        verify_challenge(msg, sig, address=str(kp.pubkey()), ttl_s=600, now=NOW)
    assert ei.value.code == "challenge_address_mismatch"


def test_expired_and_future_challenges_are_rejected() -> None:
    kp = Keypair()
    msg, sig = _signed(kp)

    with pytest.raises(ValidationError) as ei:
        verify_challenge(msg, sig, address=str(kp.pubkey()), ttl_s=600, now=NOW + 601)
    assert ei.value.code == "challenge_expired"

    with pytest.raises(ValidationError):
        verify_challenge(msg, sig, address=str(kp.pubkey()), ttl_s=600, now=NOW - 3600)


def test_tampered_message_fails_signature_check() -> None:
    kp = Keypair()
    msg, sig = _signed(kp)

    with pytest.raises(ValidationError) as ei:
        verify_challenge(msg.replace("n-1", "n-2"), sig, address=str(kp.pubkey()), ttl_s=600, now=NOW)
    assert ei.value.code == "bad_signature"
