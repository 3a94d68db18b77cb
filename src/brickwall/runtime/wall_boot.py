# src/brickwall/runtime/wall_boot.py

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from solders.keypair import Keypair

from brickwall.chain.assets import AssetOwnershipOracle
from brickwall.chain.event_log import log_event
from brickwall.chain.keys import load_keypair
from brickwall.chain.proofs import MerkleProofResolver
from brickwall.chain.rpc import AssetIndex, JsonRpcClient, LedgerClient, rpc_clients
from brickwall.runtime.reconcile_loop import ReconciliationLoop
from brickwall.runtime.sqlite_db import SqliteDB
from brickwall.runtime.wall_config import WallConfig, load_wall_config
from brickwall.services.assembler import TransactionAssembler
from brickwall.services.confirmation import TransactionConfirmer
from brickwall.services.wall_service import WallService
from brickwall.services.wall_view import WallViewCache
from brickwall.storage.brick_store import BrickStore
from brickwall.storage.catalog import read_catalog_file
from brickwall.storage.images import ImageStore

log = logging.getLogger("brickwall.boot")


@dataclass
class WallRuntime:
    cfg: WallConfig
    service: WallService
    loop: ReconciliationLoop
    store: BrickStore
    service_keypair: Keypair
    rpc: List[JsonRpcClient]

    async def aclose(self) -> None:
        for c in self.rpc:
            await c.aclose()


def open_store(cfg: WallConfig) -> BrickStore:
    """Open the database, create the schema and load the catalog into an empty wall."""
    os.makedirs(os.path.dirname(cfg.db_path) or ".", exist_ok=True)
    store = BrickStore(SqliteDB(path=cfg.db_path))
    store.init()
    if os.path.exists(cfg.catalog_path):
        store.load_catalog(read_catalog_file(cfg.catalog_path))
    else:
        log_event(log, "catalog_missing", level=logging.WARNING, path=cfg.catalog_path)
    return store


def build_runtime(
    cfg: Optional[WallConfig] = None,
    *,
    ledger: Optional[LedgerClient] = None,
    index: Optional[AssetIndex] = None,
    service_keypair: Optional[Keypair] = None,
) -> WallRuntime:
    """Wire every collaborator from config.

    ledger/index/service_keypair override the network clients and the
    configured identity (tests).
    """
    c = cfg or load_wall_config()
    kp = service_keypair or load_keypair(secret=c.keypair_secret, path=c.keypair_path)

    owned: List[JsonRpcClient] = []
    if ledger is None or index is None:
        rpc_ledger, rpc_index, owned = rpc_clients(
            rpc_url=c.rpc_url,
            das_url=c.das_url,
            timeout_s=float(c.rpc_timeout_ms) / 1000.0,
        )
        ledger = ledger or rpc_ledger
        index = index or rpc_index

    store = open_store(c)
    oracle = AssetOwnershipOracle(index)
    cache = WallViewCache(store)

    assembler = TransactionAssembler(
        store=store,
        ledger=ledger,
        resolver=MerkleProofResolver(index, ledger),
        service_keypair=kp,
        funds_destination=c.funds_destination,
        chunk_size=c.purchase_chunk_size,
    )
    confirmer = TransactionConfirmer(
        ledger,
        c.funds_destination,
        attempts=c.confirm_attempts,
        delay_ms=c.confirm_delay_ms,
    )
    service = WallService(
        store=store,
        oracle=oracle,
        assembler=assembler,
        confirmer=confirmer,
        cache=cache,
        images=ImageStore(c.image_dir, max_bytes=c.max_image_bytes),
        challenge_ttl_s=c.challenge_ttl_s,
    )
    loop = ReconciliationLoop(
        oracle=oracle,
        store=store,
        service_address=str(kp.pubkey()),
        interval_ms=c.reconcile_interval_ms,
        on_change=cache.invalidate,
    )

    log_event(log, "runtime_built", mode=c.mode, service=str(kp.pubkey()), db_path=c.db_path)
    return WallRuntime(cfg=c, service=service, loop=loop, store=store, service_keypair=kp, rpc=owned)
