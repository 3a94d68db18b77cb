from __future__ import annotations

import asyncio

import pytest
from solders.pubkey import Pubkey

from brickwall.chain.assets import AssetOwnershipOracle
from brickwall.runtime import metrics
from brickwall.runtime.reconcile_loop import ReconciliationLoop
from brickwall.services.wall_view import WallViewCache
from brickwall.storage.brick_store import Coordinate
from wall_fakes import seed_store


def _loop(store, index, service: str, **kw) -> ReconciliationLoop:
    return ReconciliationLoop(oracle=AssetOwnershipOracle(index), store=store, service_address=service, **kw)


@pytest.mark.asyncio
async def test_one_cycle_marks_only_assets_the_service_no_longer_holds(store, index) -> None:
    service = str(Pubkey.new_unique())
    buyer = str(Pubkey.new_unique())
    tree = str(Pubkey.new_unique())
    index.add("asset-a", buyer, tree=tree)
    index.add("asset-b", service, tree=tree)
    seed_store(store, [(0, 0, "asset-a"), (1, 0, "asset-b")])
    cache = WallViewCache(store)
    await cache.get()

    res = await _loop(store, index, service, on_change=cache.invalidate).run_once()

    assert res.sold == 1 and res.skipped is False
    a, b = await store.get_bricks([Coordinate(0, 0), Coordinate(1, 0)])
    assert a.purchased is True
    assert b.purchased is False
    assert not cache.is_cached()


@pytest.mark.asyncio
async def test_cycle_without_changes_keeps_cache(store, index) -> None:
    service = str(Pubkey.new_unique())
    index.add("asset-a", service, tree=str(Pubkey.new_unique()))
    seed_store(store, [(0, 0, "asset-a")])
    cache = WallViewCache(store)
    await cache.get()

    res = await _loop(store, index, service, on_change=cache.invalidate).run_once()

    assert res.sold == 0
    assert cache.is_cached()


@pytest.mark.asyncio
async def test_incomplete_scan_skips_update(store, index) -> None:
    service = str(Pubkey.new_unique())
    seed_store(store, [(0, 0, "asset-a"), (1, 0, "asset-b")])
    index.fail_pages.add((service, 1))

    res = await _loop(store, index, service).run_once()

    assert res.skipped is True
    assert sorted(await store.unpurchased_asset_ids()) == ["asset-a", "asset-b"]
    assert metrics.snapshot()["counters"]["reconcile_skipped_total"] == 1


@pytest.mark.asyncio
async def test_loop_survives_failing_cycles_and_stops_on_signal(store, index, monkeypatch: pytest.MonkeyPatch) -> None:
    service = str(Pubkey.new_unique())
    seed_store(store, [(0, 0, "asset-a")])
    calls = {"n": 0}

    async def _boom() -> list:
        calls["n"] += 1
        raise RuntimeError("db down")

    monkeypatch.setattr(store, "unpurchased_asset_ids", _boom)
    loop = _loop(store, index, service, interval_ms=10)

    assert loop.start() is True
    for _ in range(200):
        if loop.cycles >= 3:
            break
        await asyncio.sleep(0.01)
    await loop.stop()

    assert calls["n"] >= 3
    assert loop.running is False
    assert loop.consecutive_failures >= 3
    assert "db down" in loop.last_error
    assert metrics.snapshot()["counters"]["reconcile_errors_total"] >= 3


@pytest.mark.asyncio
async def test_stop_wakes_a_sleeping_loop(store, index) -> None:
    service = str(Pubkey.new_unique())
    loop = _loop(store, index, service, interval_ms=60 * 60 * 1000)

    loop.start()
    for _ in range(200):
        if loop.cycles >= 1:
            break
        await asyncio.sleep(0.01)
    await asyncio.wait_for(loop.stop(), timeout=2.0)

    assert loop.cycles == 1
    assert loop.running is False
