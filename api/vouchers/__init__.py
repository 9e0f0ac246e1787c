"""Voucher API endpoints.

Webhooks are called by the marketplace when a voucher is created, bought or
scanned at the point of sale. The vouchers endpoints back the buyer's and the
issuer's voucher lists.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from vouchers import VoucherManager

logger = logging.getLogger(__name__)

webhook_router = APIRouter(
    prefix="/webhook",
    tags=["Webhooks"]
)

vouchers_router = APIRouter(
    prefix="/vouchers",
    tags=["Vouchers"]
)

def get_manager(request: Request) -> VoucherManager:
    """Return the manager built by the application lifespan."""
    return request.app.state.manager

# Model definitions
class CreateVoucherRequest(BaseModel):
    """Request model for the voucher-created webhook."""
    model_config = ConfigDict(populate_by_name=True)

    listing_id: int = Field(alias="adv_id")
    user_id: int
    title: str
    description: Optional[str] = None
    price: Decimal
    photo_url: Optional[str] = Field(default=None, alias="photo")

class PurchaseVoucherRequest(BaseModel):
    """Request model for the voucher-purchased webhook."""
    voucher_id: str
    buyer_id: int

class RedeemVoucherRequest(BaseModel):
    """Request model for the voucher-redeemed webhook."""
    redemption_token: str
    redeemed_at: Optional[datetime] = None

""" Webhooks """
@webhook_router.post("/voucher-created")
async def voucher_created(
    body: CreateVoucherRequest,
    manager: VoucherManager = Depends(get_manager)
):
    """Create a voucher for a listing."""
    voucher = await manager.create_voucher(
        listing_id=body.listing_id,
        user_id=body.user_id,
        title=body.title,
        price=body.price,
        description=body.description,
        photo_url=body.photo_url
    )
    return {
        "message": "Voucher created successfully",
        "data": voucher.to_dict()
    }

@webhook_router.post("/voucher-purchased")
async def voucher_purchased(
    body: PurchaseVoucherRequest,
    manager: VoucherManager = Depends(get_manager)
):
    """Record the purchase of a voucher and issue its redemption token."""
    purchase = await manager.purchase_voucher(
        voucher_id=body.voucher_id,
        buyer_id=body.buyer_id
    )
    return {
        "message": "Voucher purchased successfully",
        "data": purchase.to_dict()
    }

@webhook_router.post("/voucher-redeemed")
async def voucher_redeemed(
    body: RedeemVoucherRequest,
    manager: VoucherManager = Depends(get_manager)
):
    """Redeem a purchase using the token scanned from the buyer's QR code."""
    await manager.redeem_voucher(
        redemption_token=body.redemption_token,
        redeemed_at=body.redeemed_at or datetime.now(timezone.utc)
    )
    return {"message": "Voucher redeemed successfully"}

""" Voucher lists """
@vouchers_router.get("/by-id/{voucher_id}")
async def get_voucher(
    voucher_id: str,
    manager: VoucherManager = Depends(get_manager)
):
    """Get a voucher by ID."""
    voucher = await manager.get_voucher(voucher_id)
    return {
        "message": "Voucher retrieved successfully",
        "data": voucher.to_dict()
    }

@vouchers_router.get("/owner/{user_id}")
async def get_owner_vouchers(
    user_id: int,
    manager: VoucherManager = Depends(get_manager)
):
    """Get the vouchers a user has issued."""
    vouchers = await manager.list_owner_vouchers(user_id)
    return {
        "message": "Owner vouchers retrieved successfully",
        "data": [v.to_dict() for v in vouchers]
    }

@vouchers_router.get("/{user_id}")
async def get_user_vouchers(
    user_id: int,
    manager: VoucherManager = Depends(get_manager)
):
    """Get the vouchers a user has purchased, newest first."""
    views = await manager.list_user_vouchers(user_id)
    logger.info(f"Retrieved {len(views)} vouchers for user {user_id}")
    return {
        "message": "User vouchers retrieved successfully",
        "data": [v.to_dict() for v in views]
    }
