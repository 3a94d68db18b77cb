from __future__ import annotations

"""Pydantic request schemas for the public API.

These exist only for HTTP input validation; the service layer re-validates
addresses and coordinates itself.
"""

from typing import List

from pydantic import BaseModel, Field

from brickwall.storage.brick_store import Coordinate


class BrickRef(BaseModel):
    x: int = Field(..., ge=0, description="Brick column")
    y: int = Field(..., ge=0, description="Brick row")

    def coordinate(self) -> Coordinate:
        return Coordinate(self.x, self.y)


class BrickImage(BrickRef):
    image: str = Field(..., min_length=1, description="Base64 image or data: URL")


class PurchaseRequest(BaseModel):
    purchaser: str = Field(..., description="Base58 purchaser address")
    bricks: List[BrickRef] = Field(..., min_length=1)


class PurchaseCompleteRequest(BaseModel):
    address: str = Field(..., description="Base58 purchaser address")
    signature: str = Field(..., description="Purchase transaction signature")
    x: int = Field(..., ge=0)
    y: int = Field(..., ge=0)


class EditPaymentRequest(BaseModel):
    payer: str = Field(..., description="Base58 payer address")
    bricks: List[BrickRef] = Field(..., min_length=1)


class PaidEditRequest(BaseModel):
    address: str = Field(..., description="Base58 address that paid for the edit")
    signature: str = Field(..., description="Edit payment transaction signature")
    bricks: List[BrickImage] = Field(..., min_length=1)


class InitialImageRequest(BaseModel):
    address: str = Field(..., description="Base58 owner address")
    message: str = Field(..., description="Signed brickwall-auth challenge text")
    signature: str = Field(..., description="Ed25519 signature over message (base58 or base64)")
    bricks: List[BrickImage] = Field(..., min_length=1)
