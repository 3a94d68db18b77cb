from __future__ import annotations

"""Payment confirmation against finalized ledger transactions.

A claimed signature is accepted only when the transaction succeeded, its fee
payer is the claimed address, and at least one System transfer moves exactly
the expected lamports from the claimed address to the funds destination.
"""

import asyncio
import base64
import binascii
import logging
import struct
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import decode_transfer
from solders.transaction import VersionedTransaction

from brickwall.chain.event_log import log_event
from brickwall.chain.instructions import SYSTEM_PROGRAM
from brickwall.chain.keys import parse_address
from brickwall.chain.rpc import LedgerClient
from brickwall.errors import ExternalUnavailable, NotFoundError, ValidationError
from brickwall.runtime.metrics import inc_counter

Json = Dict[str, Any]

log = logging.getLogger("brickwall.confirmation")

# System program instruction tag for Transfer (u32 LE) followed by lamports (u64 LE).
_TRANSFER_TAG = struct.pack("<I", 2)
_TRANSFER_DATA_LEN = 12


@dataclass(frozen=True, slots=True)
class ConfirmedPayment:
    signature: str
    payer: str
    lamports: int
    slot: Optional[int]


def _account_keys(tx: VersionedTransaction, meta: Json) -> List[Pubkey]:
    """Static keys followed by keys loaded from lookup tables (writable, then readonly)."""
    keys = list(tx.message.account_keys)
    loaded = meta.get("loadedAddresses") if isinstance(meta.get("loadedAddresses"), dict) else {}
    for group in ("writable", "readonly"):
        for addr in loaded.get(group) or []:
            keys.append(Pubkey.from_string(str(addr)))
    return keys


def system_transfers(tx: VersionedTransaction, meta: Optional[Json] = None) -> List[tuple[Pubkey, Pubkey, int]]:
    """Every top-level System transfer in tx as (from, to, lamports)."""
    keys = _account_keys(tx, meta or {})
    out: List[tuple[Pubkey, Pubkey, int]] = []
    for cix in tx.message.instructions:
        if cix.program_id_index >= len(keys) or keys[cix.program_id_index] != SYSTEM_PROGRAM:
            continue
        data = bytes(cix.data)
        if len(data) != _TRANSFER_DATA_LEN or data[:4] != _TRANSFER_TAG:
            continue
        idx = list(bytes(cix.accounts))
        if len(idx) < 2 or max(idx) >= len(keys):
            continue
        ix = Instruction(SYSTEM_PROGRAM, data, [AccountMeta(keys[i], False, False) for i in idx])
        params = decode_transfer(ix)
        out.append((params["from_pubkey"], params["to_pubkey"], int(params["lamports"])))
    return out


def decode_fetched_transaction(result: Json) -> VersionedTransaction:
    raw = result.get("transaction")
    if not isinstance(raw, list) or not raw:
        raise ValidationError("bad_transaction", "transaction payload is missing", {})
    try:
        return VersionedTransaction.from_bytes(base64.b64decode(str(raw[0])))
    except (binascii.Error, ValueError) as e:
        raise ValidationError("bad_transaction", "transaction could not be decoded", {}) from e


class TransactionConfirmer:
    def __init__(
        self,
        ledger: LedgerClient,
        funds_destination: Union[Pubkey, str],
        *,
        attempts: int = 10,
        delay_ms: int = 2_000,
    ) -> None:
        self.ledger = ledger
        self.funds_destination = parse_address(funds_destination, field="funds_destination")
        self.attempts = max(1, int(attempts))
        self.delay_s = max(0.0, float(delay_ms) / 1000.0)

    async def _fetch_with_retries(self, signature: str) -> Json:
        """Poll until the transaction is final. Transient ledger errors count as misses."""
        for attempt in range(1, self.attempts + 1):
            try:
                result = await self.ledger.fetch_transaction(signature)
            except ExternalUnavailable as e:
                inc_counter("confirm_fetch_errors_total")
                log_event(
                    log,
                    "confirm_fetch_failed",
                    level=logging.WARNING,
                    signature=signature,
                    attempt=attempt,
                    code=e.code,
                    error=e.reason,
                )
                result = None
            if result is not None:
                return result
            if attempt < self.attempts:
                await asyncio.sleep(self.delay_s)

        inc_counter("confirm_not_found_total")
        log_event(log, "confirm_not_found", level=logging.WARNING, signature=signature, attempts=self.attempts)
        raise NotFoundError(
            "transaction_not_found",
            "transaction was not found on the ledger",
            {"signature": signature, "attempts": self.attempts},
        )

    async def confirm_payment(self, signature: str, claimed_address: Any, expected_lamports: int) -> ConfirmedPayment:
        sig = str(signature or "").strip()
        if not sig:
            raise ValidationError("bad_signature", "transaction signature is required", {})
        claimed = parse_address(claimed_address, field="address")
        expected = int(expected_lamports)

        result = await self._fetch_with_retries(sig)

        meta = result.get("meta") if isinstance(result.get("meta"), dict) else {}
        if meta.get("err") is not None:
            raise ValidationError("transaction_failed", "transaction did not succeed", {"signature": sig, "err": meta.get("err")})

        tx = decode_fetched_transaction(result)
        keys = list(tx.message.account_keys)
        if not keys or keys[0] != claimed:
            raise ValidationError(
                "payer_mismatch",
                "transaction fee payer does not match the claimed address",
                {"signature": sig, "address": str(claimed)},
            )

        transfers = system_transfers(tx, meta)
        if not any(src == claimed and dst == self.funds_destination and amt == expected for src, dst, amt in transfers):
            log_event(
                log,
                "confirm_payment_mismatch",
                level=logging.WARNING,
                signature=sig,
                address=str(claimed),
                expected=expected,
                transfers=[[str(s), str(d), a] for s, d, a in transfers],
            )
            raise ValidationError(
                "payment_mismatch",
                "transaction does not pay the expected amount to the funds destination",
                {"signature": sig, "expected_lamports": expected},
            )

        slot = result.get("slot")
        inc_counter("confirm_ok_total")
        log_event(log, "confirm_ok", signature=sig, address=str(claimed), lamports=expected)
        return ConfirmedPayment(
            signature=sig,
            payer=str(claimed),
            lamports=expected,
            slot=int(slot) if isinstance(slot, int) else None,
        )
