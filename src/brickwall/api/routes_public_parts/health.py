from __future__ import annotations

import time
from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _loop_status(request: Request) -> Dict[str, Any]:
    loop = getattr(request.app.state, "reconcile_loop", None)
    if loop is None:
        return {"running": None, "cycles": None, "last_error": None, "consecutive_failures": None}
    return {
        "running": bool(loop.running),
        "cycles": int(loop.cycles),
        "last_error": loop.last_error or None,
        "consecutive_failures": int(loop.consecutive_failures),
    }


@router.get("/healthz")
def healthz(request: Request) -> Dict[str, object]:
    # Never touches the ledger; reports local state only.
    rt = getattr(request.app.state, "runtime", None)
    return {
        "ok": True,
        "service": "brickwall",
        "version": "v1",
        "ts_ms": _now_ms(),
        "runtime": rt is not None,
        "mode": rt.cfg.mode if rt is not None else None,
        "service_address": str(rt.service_keypair.pubkey()) if rt is not None else None,
        "reconcile": _loop_status(request),
    }
