from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, model_serializer


class PurchaseStatus(str, Enum):
    ACTIVE = "active"
    REDEEMED = "redeemed"


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Voucher(BaseModel):
    id: str
    listing_id: int
    user_id: int
    title: str
    description: Optional[str] = None
    price: Decimal
    photo_url: Optional[str] = None
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'listing_id': self.listing_id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'price': str(self.price),
            'photo_url': self.photo_url,
            'created_at': _isoformat(self.created_at)
        }


class Purchase(BaseModel):
    id: str
    voucher_id: str
    buyer_id: int
    redemption_token: str
    status: PurchaseStatus = PurchaseStatus.ACTIVE
    redeemed_at: Optional[datetime] = None
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'voucher_id': self.voucher_id,
            'buyer_id': self.buyer_id,
            'status': self.status.value,
            'redeemed_at': _isoformat(self.redeemed_at),
            'created_at': _isoformat(self.created_at)
        }
        # The token only ever leaves the service while it can still be used
        if self.status == PurchaseStatus.ACTIVE:
            result['redemption_token'] = self.redemption_token
        return result


class PurchaseView(BaseModel):
    """A buyer's purchase joined with the voucher it bought."""
    id: str
    title: str
    description: Optional[str] = None
    photo_url: Optional[str] = None
    price: Decimal
    status: PurchaseStatus
    redemption_token: Optional[str] = None
    purchased_at: datetime
    redeemed_at: Optional[datetime] = None

    def redacted(self) -> 'PurchaseView':
        """Return the view with the redemption token removed unless the purchase is active."""
        if self.status == PurchaseStatus.ACTIVE:
            return self
        return self.model_copy(update={'redemption_token': None})

    @model_serializer(mode='wrap')
    def _drop_spent_token(self, handler):
        data = handler(self)
        if self.status != PurchaseStatus.ACTIVE or self.redemption_token is None:
            data.pop('redemption_token', None)
        return data

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'photo_url': self.photo_url,
            'price': str(self.price),
            'status': self.status.value,
            'purchased_at': _isoformat(self.purchased_at),
            'redeemed_at': _isoformat(self.redeemed_at)
        }
        if self.status == PurchaseStatus.ACTIVE and self.redemption_token is not None:
            result['redemption_token'] = self.redemption_token
        return result
