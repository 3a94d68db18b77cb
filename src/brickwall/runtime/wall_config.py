# src/brickwall/runtime/wall_config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from brickwall.constants import FUNDS_DESTINATION, PURCHASE_CHUNK_SIZE


def _env_str(name: str, default: str) -> str:
    v = os.environ.get(name)
    if v is None or not v.strip():
        return str(default)
    return v.strip()


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        return int(default)


def _env_bool(name: str, default: bool) -> bool:
    v = os.environ.get(name)
    if v is None:
        return bool(default)
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class WallConfig:
    mode: str  # "dev" | "testnet" | "prod"

    rpc_url: str
    das_url: str
    rpc_timeout_ms: int

    keypair_secret: Optional[str]
    keypair_path: Optional[str]
    funds_destination: str

    db_path: str
    catalog_path: str
    image_dir: str
    max_image_bytes: int

    purchase_chunk_size: int
    confirm_attempts: int
    confirm_delay_ms: int

    reconcile_interval_ms: int
    reconcile_autostart: bool

    challenge_ttl_s: int


_ALLOWED_MODES = {"dev", "testnet", "prod"}


def validate_wall_config(cfg: WallConfig) -> None:
    """Fail fast on operator misconfiguration."""

    if cfg.mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    for name, url in (("rpc_url", cfg.rpc_url), ("das_url", cfg.das_url)):
        if not url.startswith(("https://", "http://")):
            raise ValueError(f"{name} must be an http(s) URL; got: {url!r}")

    if cfg.purchase_chunk_size <= 0:
        raise ValueError(f"purchase_chunk_size must be > 0; got: {cfg.purchase_chunk_size}")

    if cfg.confirm_attempts <= 0:
        raise ValueError(f"confirm_attempts must be > 0; got: {cfg.confirm_attempts}")

    if cfg.reconcile_interval_ms < 1_000:
        # Sub-second polling would hammer the indexer.
        raise ValueError(f"reconcile_interval_ms must be >= 1000; got: {cfg.reconcile_interval_ms}")

    for name, p in (("db_path", cfg.db_path), ("catalog_path", cfg.catalog_path), ("image_dir", cfg.image_dir)):
        if not p.strip():
            raise ValueError(f"{name} must be a non-empty string")


def load_wall_config() -> WallConfig:
    rpc_url = _env_str("BRICKWALL_RPC_URL", "https://api.mainnet-beta.solana.com")

    cfg = WallConfig(
        mode=_env_str("BRICKWALL_MODE", "prod").lower(),
        rpc_url=rpc_url,
        # The DAS indexer is usually served by the same RPC provider.
        das_url=_env_str("BRICKWALL_DAS_URL", rpc_url),
        rpc_timeout_ms=max(1_000, _env_int("BRICKWALL_RPC_TIMEOUT_MS", 15_000)),
        keypair_secret=os.environ.get("BRICKWALL_KEYPAIR") or None,
        keypair_path=os.environ.get("BRICKWALL_KEYPAIR_PATH") or None,
        funds_destination=_env_str("BRICKWALL_FUNDS_DESTINATION", FUNDS_DESTINATION),
        db_path=_env_str("BRICKWALL_DB_PATH", "./data/brickwall.db"),
        catalog_path=_env_str("BRICKWALL_CATALOG_PATH", "./bricks.json"),
        image_dir=_env_str("BRICKWALL_IMAGE_DIR", "./data/images"),
        max_image_bytes=max(1, _env_int("BRICKWALL_MAX_IMAGE_BYTES", 1024 * 1024)),
        purchase_chunk_size=_env_int("BRICKWALL_PURCHASE_CHUNK_SIZE", PURCHASE_CHUNK_SIZE),
        confirm_attempts=_env_int("BRICKWALL_CONFIRM_ATTEMPTS", 10),
        confirm_delay_ms=max(0, _env_int("BRICKWALL_CONFIRM_DELAY_MS", 2_000)),
        reconcile_interval_ms=_env_int("BRICKWALL_RECONCILE_INTERVAL_MS", 5 * 60 * 1000),
        reconcile_autostart=_env_bool("BRICKWALL_RECONCILE_AUTOSTART", True),
        challenge_ttl_s=max(1, _env_int("BRICKWALL_CHALLENGE_TTL_S", 600)),
    )

    validate_wall_config(cfg)
    return cfg
