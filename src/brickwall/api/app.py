from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from brickwall.api.errors import install_error_handlers
from brickwall.api.routes_public import public_router
from brickwall.api.security import RequestSizeLimitMiddleware
from brickwall.api.structured_logging import RequestLogMiddleware
from brickwall.chain.event_log import log_event
from brickwall.runtime.wall_boot import WallRuntime
from brickwall.runtime.wall_boot import build_runtime as _build_runtime

log = logging.getLogger("brickwall.app")


def build_runtime() -> WallRuntime:
    """Build the wall runtime from the environment.

    Tests monkeypatch `brickwall.api.app.build_runtime` to inject fakes.
    """
    return _build_runtime()


def _parse_cors_origins() -> List[str]:
    """CORS allowlist from BRICKWALL_CORS_ORIGINS.

    Unset means CORS is disabled. A wildcard is refused in prod mode.
    """
    raw = os.environ.get("BRICKWALL_CORS_ORIGINS", "").strip()
    mode = os.environ.get("BRICKWALL_MODE", "prod").strip().lower()

    if not raw:
        return []

    origins = [o.strip() for o in raw.split(",") if o.strip()]

    if "*" in origins:
        if mode == "prod":
            raise RuntimeError(
                "Unsafe CORS configuration: wildcard '*' not allowed in production. "
                "Set explicit origins in BRICKWALL_CORS_ORIGINS."
            )
        return ["*"]

    return origins


def create_app(*, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): open the store, build RPC clients and attach the runtime
      - False: no runtime; wall routes answer 500 not_ready (import checks, tests)
    """
    mode = os.environ.get("BRICKWALL_MODE", "prod").strip().lower()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        rt = getattr(app.state, "runtime", None)
        loop = None
        if rt is not None and rt.cfg.reconcile_autostart:
            loop = rt.loop
            loop.start()
        app.state.reconcile_loop = loop

        try:
            yield
        finally:
            if loop is not None:
                await loop.stop()
            if rt is not None:
                await rt.aclose()
            log_event(log, "app_stopped")

    if mode == "prod":
        app = FastAPI(title="Brick Wall API", docs_url=None, redoc_url=None, openapi_url=None, lifespan=_lifespan)
    else:
        app = FastAPI(title="Brick Wall API", lifespan=_lifespan)

    app.state.runtime = build_runtime() if boot_runtime else None
    app.state.reconcile_loop = None

    install_error_handlers(app)

    # --- Middleware ---
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestLogMiddleware)

    cors_origins = _parse_cors_origins()
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type"],
        )

    app.include_router(public_router)
    return app
