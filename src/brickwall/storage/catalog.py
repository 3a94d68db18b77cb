from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List

from brickwall.errors import ValidationError


@dataclass(frozen=True, slots=True)
class CatalogEntry:
    x: int
    y: int
    asset_id: str


def _coord(raw: Any, *, field: str, index: int) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ValidationError("bad_catalog_entry", f"catalog entry {index} has a non-integer {field}", {"index": index})
    if raw < 0:
        raise ValidationError("bad_catalog_entry", f"catalog entry {index} has a negative {field}", {"index": index})
    return raw


def parse_catalog(raw: Any) -> List[CatalogEntry]:
    """Validate a catalog document.

    Expected shape (extra keys ignored):
      [{"column": 0, "row": 0, "coordinate": "A1", "assetId": "<base58>"}, ...]

    Every entry must carry integer coordinates and a non-empty asset id, and
    coordinates must be unique.
    """
    if not isinstance(raw, list):
        raise ValidationError("bad_catalog", "catalog must be a JSON array", {})

    out: List[CatalogEntry] = []
    seen: set[tuple[int, int]] = set()
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError("bad_catalog_entry", f"catalog entry {i} is not an object", {"index": i})

        x = _coord(item.get("column"), field="column", index=i)
        y = _coord(item.get("row"), field="row", index=i)

        asset_id = str(item.get("assetId") or "").strip()
        if not asset_id:
            raise ValidationError("missing_asset_id", f"catalog entry {i} has no assetId", {"index": i, "x": x, "y": y})

        if (x, y) in seen:
            raise ValidationError("duplicate_coordinate", f"catalog entry {i} repeats ({x}, {y})", {"x": x, "y": y})
        seen.add((x, y))

        out.append(CatalogEntry(x=x, y=y, asset_id=asset_id))
    return out


def read_catalog_file(path: str) -> List[CatalogEntry]:
    p = Path(path)
    return parse_catalog(json.loads(p.read_text(encoding="utf-8")))
