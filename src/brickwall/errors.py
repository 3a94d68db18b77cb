# src/brickwall/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar


@dataclass
class WallError(Exception):
    """Canonical error type for wall operations.

    `code` is a stable machine-readable tag, `reason` a human message and
    `details` an optional JSON-safe payload (e.g. itemized offending bricks).
    """

    code: str
    reason: str
    details: Any | None = None

    status_code: ClassVar[int] = 500

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class ValidationError(WallError):
    status_code = 400


class UnknownBrick(ValidationError):
    pass


class ConflictError(WallError):
    status_code = 409


class NotFoundError(WallError):
    status_code = 404


class ExternalUnavailable(WallError):
    """Indexer / ledger failures. Surfaced to callers as an internal error."""

    status_code = 500


class RpcError(ExternalUnavailable):
    pass


class ProofUnavailable(ExternalUnavailable):
    pass


class TreeUnavailable(ExternalUnavailable):
    pass


class DecodeError(ExternalUnavailable):
    pass
