"""
Ledger and indexer access.

  - rpc: JSON-RPC transport plus the narrow AssetIndex / LedgerClient interfaces
  - assets: owned-asset scans (ownership oracle)
  - proofs: Merkle proof resolution for compressed asset transfers
  - instructions: instruction builders (compute budget, transfers, Bubblegum)
  - keys: service keypair loading and address parsing
  - event_log: JSONL log events shared by chain/runtime code
"""

from __future__ import annotations

__all__ = [
    "rpc",
    "assets",
    "proofs",
    "instructions",
    "keys",
    "event_log",
]
