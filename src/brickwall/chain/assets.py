from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from brickwall.chain.event_log import log_event
from brickwall.chain.rpc import AssetIndex
from brickwall.constants import ASSET_PAGE_LIMIT
from brickwall.errors import ExternalUnavailable

Json = Dict[str, Any]

log = logging.getLogger("brickwall.assets")


@dataclass(frozen=True, slots=True)
class DigitalAsset:
    """Transient view of one collectible as reported by the indexer."""

    asset_id: str
    owner: str
    delegate: Optional[str]
    compressed: bool
    burnt: bool
    leaf_index: int
    data_hash: str
    creator_hash: str
    tree: str


@dataclass(frozen=True, slots=True)
class AssetScan:
    """Result of paging through an owner's assets.

    complete is False when pagination stopped early on an indexer or
    transport error; `assets` then holds only what was gathered before it.
    """

    assets: Tuple[DigitalAsset, ...]
    complete: bool
    pages: int

    def asset_ids(self) -> set[str]:
        return {a.asset_id for a in self.assets}


def _str_or_none(v: Any) -> Optional[str]:
    s = str(v).strip() if v is not None else ""
    return s or None


def asset_from_das(item: Any) -> Optional[DigitalAsset]:
    """Normalize a DAS asset object. Returns None for objects without an id/owner."""
    if not isinstance(item, dict):
        return None

    asset_id = _str_or_none(item.get("id"))
    ownership = item.get("ownership") if isinstance(item.get("ownership"), dict) else {}
    compression = item.get("compression") if isinstance(item.get("compression"), dict) else {}
    owner = _str_or_none(ownership.get("owner"))
    if asset_id is None or owner is None:
        return None

    try:
        leaf_index = int(compression.get("leaf_id") or 0)
    except (TypeError, ValueError):
        leaf_index = 0

    return DigitalAsset(
        asset_id=asset_id,
        owner=owner,
        delegate=_str_or_none(ownership.get("delegate")),
        compressed=bool(compression.get("compressed", False)),
        burnt=bool(item.get("burnt", False)),
        leaf_index=leaf_index,
        data_hash=str(compression.get("data_hash") or "").strip(),
        creator_hash=str(compression.get("creator_hash") or "").strip(),
        tree=str(compression.get("tree") or "").strip(),
    )


class AssetOwnershipOracle:
    """Answers "which compressed assets does this address hold right now".

    Never raises for indexer trouble: a failed page ends the scan and the
    partial result is returned. Callers must read a short or empty result as
    "no proof of ownership", never as proof of non-ownership.
    """

    def __init__(self, index: AssetIndex, *, page_limit: int = ASSET_PAGE_LIMIT) -> None:
        self.index = index
        self.page_limit = max(1, int(page_limit))

    async def scan_owned_assets(self, address: str) -> AssetScan:
        owner = str(address)
        limit = self.page_limit
        page = 1
        out: List[DigitalAsset] = []
        complete = True

        while True:
            try:
                result = await self.index.fetch_owned_assets(owner, page=page, limit=limit)
            except ExternalUnavailable as e:
                log_event(
                    log,
                    "owned_assets_page_failed",
                    level=logging.WARNING,
                    owner=owner,
                    page=page,
                    code=e.code,
                    error=e.reason,
                )
                complete = False
                break

            items = result.get("items")
            if not isinstance(items, list):
                log_event(log, "owned_assets_bad_page", level=logging.WARNING, owner=owner, page=page)
                complete = False
                break

            for item in items:
                asset = asset_from_das(item)
                if asset is None or asset.burnt or not asset.compressed:
                    continue
                out.append(asset)

            # Only the item count decides whether another page exists; `total` varies by indexer.
            if not items or len(items) < limit:
                break
            page += 1

        log_event(log, "owned_assets_scanned", owner=owner, assets=len(out), pages=page, complete=complete)
        return AssetScan(assets=tuple(out), complete=complete, pages=page)

    async def list_owned_assets(self, address: str) -> List[DigitalAsset]:
        scan = await self.scan_owned_assets(address)
        return list(scan.assets)

    async def owns_assets(self, address: str, asset_ids: Iterable[str]) -> set[str]:
        """Subset of asset_ids proven to be held by address."""
        wanted = {str(a) for a in asset_ids}
        if not wanted:
            return set()
        scan = await self.scan_owned_assets(address)
        return wanted & scan.asset_ids()
