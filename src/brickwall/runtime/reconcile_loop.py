from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from brickwall.chain.assets import AssetOwnershipOracle
from brickwall.chain.event_log import log_event
from brickwall.runtime.metrics import inc_counter, set_gauge
from brickwall.storage.brick_store import BrickStore


log = logging.getLogger("brickwall.reconcile")


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    scanned: int
    sold: int
    skipped: bool


class ReconciliationLoop:
    """Polls the service identity's holdings and flags sold bricks.

    Any unpurchased brick whose asset the service no longer holds has been
    transferred away, so it is marked purchased. A scan that ended early on an
    indexer error is not trusted and the cycle is skipped.

    start() schedules the loop on the running event loop; stop() wakes it and
    waits for the current cycle to finish. run_once() runs a single cycle.
    """

    def __init__(
        self,
        *,
        oracle: AssetOwnershipOracle,
        store: BrickStore,
        service_address: str,
        interval_ms: int = 5 * 60 * 1000,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self._oracle = oracle
        self._store = store
        self._service_address = str(service_address)
        self._interval_s = max(0.0, float(interval_ms) / 1000.0)
        self._on_change = on_change

        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()

        self._consecutive_failures = 0
        self.last_error: str = ""
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def start(self) -> bool:
        if self.running:
            return True
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="brickwall-reconcile")
        inc_counter("reconcile_start_total")
        log_event(log, "reconcile_started", interval_s=self._interval_s, service=self._service_address)
        return True

    async def stop(self) -> None:
        self._stop.set()
        task = self._task
        self._task = None
        if task is not None:
            await task
        inc_counter("reconcile_stop_total")

    async def run_once(self) -> ReconcileResult:
        scan = await self._oracle.scan_owned_assets(self._service_address)
        if not scan.complete:
            inc_counter("reconcile_skipped_total")
            log_event(
                log,
                "reconcile_skipped",
                level=logging.WARNING,
                reason="incomplete_scan",
                assets=len(scan.assets),
                pages=scan.pages,
            )
            return ReconcileResult(scanned=len(scan.assets), sold=0, skipped=True)

        held = scan.asset_ids()
        unpurchased = await self._store.unpurchased_asset_ids()
        sold = [a for a in unpurchased if a not in held]

        changed = await self._store.mark_purchased_by_asset_ids(sold)
        if changed and self._on_change is not None:
            self._on_change()

        set_gauge("reconcile_service_assets", len(held))
        inc_counter("reconcile_bricks_sold_total", changed)
        log_event(log, "reconcile_cycle", held=len(held), unpurchased=len(unpurchased), sold=changed)
        return ReconcileResult(scanned=len(held), sold=changed, skipped=False)

    def _mark_error(self, err: Exception) -> None:
        self._consecutive_failures += 1
        self.last_error = f"{type(err).__name__}:{err}"
        inc_counter("reconcile_errors_total")
        set_gauge("reconcile_consecutive_failures", self._consecutive_failures)
        log.exception("reconcile cycle failed failures=%s", self._consecutive_failures)

    def _clear_error(self) -> None:
        if self._consecutive_failures == 0 and not self.last_error:
            return
        self._consecutive_failures = 0
        self.last_error = ""
        set_gauge("reconcile_consecutive_failures", 0)

    async def _run(self) -> None:
        while not self._stop.is_set():
            inc_counter("reconcile_ticks_total")
            try:
                await self.run_once()
                self._clear_error()
            except Exception as e:
                self._mark_error(e)
            self.cycles += 1

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval_s)
            except asyncio.TimeoutError:
                pass
        log_event(log, "reconcile_stopped", cycles=self.cycles)
