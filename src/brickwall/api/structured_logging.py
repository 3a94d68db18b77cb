# src/brickwall/api/structured_logging.py
from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Any, Dict

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from brickwall.chain.event_log import log_event

Json = Dict[str, Any]


def _truthy(v: str | None) -> bool:
    if v is None:
        return False
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def configure_structured_logging() -> None:
    """Configure stdlib logging for JSONL output on stderr.

    Level from BRICKWALL_LOG_LEVEL (default INFO). Safe to call more than once.
    """
    level_name = (os.environ.get("BRICKWALL_LOG_LEVEL") or "INFO").strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    if getattr(root, "_brickwall_configured", False):  # type: ignore[attr-defined]
        root.setLevel(level)
        return

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root.handlers = [handler]
    root.setLevel(level)
    setattr(root, "_brickwall_configured", True)  # type: ignore[attr-defined]


# Polled by load balancers and scrapers; logged at DEBUG only.
_QUIET_PREFIXES = ("/v1/healthz", "/v1/metrics")

_HEADER_SUBSET = ("user-agent", "origin", "content-length", "x-forwarded-for")


class RequestLogMiddleware(BaseHTTPMiddleware):
    """One `http_request` event per request, tagged with an x-request-id.

    The id is taken from the inbound header when present and echoed on the
    response. 5xx responses log at WARNING. BRICKWALL_LOG_REQUESTS=0 disables
    the middleware; BRICKWALL_LOG_REQUEST_HEADERS=1 adds a few headers.
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        raw = (os.environ.get("BRICKWALL_LOG_REQUESTS") or "1").strip().lower()
        self._enabled = raw not in {"0", "false", "no", "n", "off"}
        self._log_headers = _truthy(os.environ.get("BRICKWALL_LOG_REQUEST_HEADERS"))
        self._logger = logging.getLogger("brickwall.http")

    def _level(self, path: str, status: int) -> int:
        if status >= 500:
            return logging.WARNING
        if path.startswith(_QUIET_PREFIXES):
            return logging.DEBUG
        return logging.INFO

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        t0 = time.monotonic()
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = rid
        path = str(request.url.path or "")

        fields: Json = {"request_id": rid, "method": request.method, "path": path}
        if self._log_headers:
            fields["headers"] = {k: request.headers[k] for k in _HEADER_SUBSET if request.headers.get(k)}

        try:
            response: Response = await call_next(request)
        except Exception as e:
            log_event(
                self._logger,
                "http_request",
                level=logging.ERROR,
                status=500,
                duration_ms=int((time.monotonic() - t0) * 1000),
                error=f"{type(e).__name__}:{e}",
                **fields,
            )
            raise

        response.headers.setdefault("x-request-id", rid)
        status = int(response.status_code)
        log_event(
            self._logger,
            "http_request",
            level=self._level(path, status),
            status=status,
            duration_ms=int((time.monotonic() - t0) * 1000),
            **fields,
        )
        return response
