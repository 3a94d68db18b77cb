from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from brickwall.api.routes_public_parts.common import _image_map, _service
from brickwall.api.schemas import (
    EditPaymentRequest,
    InitialImageRequest,
    PaidEditRequest,
    PurchaseCompleteRequest,
    PurchaseRequest,
)
from brickwall.storage.brick_store import Coordinate

router = APIRouter()

Json = Dict[str, Any]


@router.post("/purchase")
async def purchase(request: Request, body: PurchaseRequest) -> Json:
    """One partially signed transaction per brick the purchaser does not already hold.

    Returns:
      { ok, blockhash, transactions: [base64...], skipped: [{x, y, asset_id, reason, owner}] }
    """
    batch = await _service(request).purchase_bricks([b.coordinate() for b in body.bricks], body.purchaser)
    return {
        "ok": True,
        "blockhash": batch.blockhash,
        "transactions": batch.transactions,
        "skipped": [s.to_json() for s in batch.skipped],
    }


@router.post("/purchase/complete")
async def purchase_complete(request: Request, body: PurchaseCompleteRequest) -> Json:
    brick = await _service(request).confirm_purchase(
        signature=body.signature,
        address=body.address,
        coordinate=Coordinate(body.x, body.y),
    )
    return {"ok": True, "brick": brick.to_json()}


@router.post("/edit/payment")
async def edit_payment(request: Request, body: EditPaymentRequest) -> Json:
    pay = await _service(request).request_edit_payment([b.coordinate() for b in body.bricks], body.payer)
    return {
        "ok": True,
        "transaction": pay.transaction,
        "amount_lamports": pay.amount_lamports,
        "bricks": pay.bricks,
        "blockhash": pay.blockhash,
    }


@router.put("/image")
async def edit_images(request: Request, body: PaidEditRequest) -> Json:
    res = await _service(request).edit_images_paid(
        signature=body.signature,
        address=body.address,
        images=_image_map(body.bricks),
    )
    return {"ok": True, "bricks": [b.to_json() for b in res.bricks]}


@router.post("/image")
async def set_images(request: Request, body: InitialImageRequest) -> Json:
    res = await _service(request).set_initial_images(
        address=body.address,
        message=body.message,
        signature=body.signature,
        images=_image_map(body.bricks),
    )
    return {"ok": True, "bricks": [b.to_json() for b in res.bricks]}
