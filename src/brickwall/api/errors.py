from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from brickwall.chain.event_log import log_event
from brickwall.errors import ExternalUnavailable, WallError

log = logging.getLogger("brickwall.http")


@dataclass
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    @staticmethod
    def from_wall_error(err: WallError) -> "ApiError":
        if isinstance(err, ExternalUnavailable):
            # Upstream detail stays in the logs.
            return ApiError.internal("internal_error", "internal error")
        details = err.details if isinstance(err.details, dict) else ({"items": err.details} if err.details else {})
        return ApiError(int(err.status_code), err.code, err.reason, details)

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content={"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}},
        )


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return exc.to_response()


async def _wall_error_handler(request: Request, exc: WallError) -> JSONResponse:
    level = logging.ERROR if isinstance(exc, ExternalUnavailable) else logging.INFO
    log_event(
        log,
        "request_failed",
        level=level,
        path=str(request.url.path or ""),
        kind=type(exc).__name__,
        code=exc.code,
        reason=exc.reason,
        details=exc.details,
    )
    return ApiError.from_wall_error(exc).to_response()


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(WallError, _wall_error_handler)
