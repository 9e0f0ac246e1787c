"""In-memory store adapters.

Used by the test suite and for running the service without a database
(storage_backend = memory). Each operation yields to the event loop once and
then runs its check-and-set without awaiting, so within a single process the
uniqueness and compare-and-set guarantees match the PostgreSQL adapters.
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional

from database.exceptions import DatabaseError, UniqueViolation
from . import VoucherStore, PurchaseStore
from ..models import Voucher, Purchase, PurchaseStatus, PurchaseView


async def _checkpoint(operation: str, timeout: float) -> None:
    """Yield to the event loop, honouring the store timeout."""
    try:
        await asyncio.wait_for(asyncio.sleep(0), timeout)
    except asyncio.TimeoutError as e:
        raise DatabaseError(f"{operation}: timed out") from e


def _newest_first(items: list, key) -> list:
    # Later inserts win ties on equal timestamps
    return sorted(reversed(items), key=key, reverse=True)


class MemoryVoucherStore(VoucherStore):
    """Voucher store kept in a dict."""

    def __init__(self) -> None:
        self.vouchers: Dict[str, Voucher] = {}

    async def create(self, voucher: Voucher, timeout: float) -> None:
        await _checkpoint("create voucher", timeout)
        if voucher.id in self.vouchers:
            raise UniqueViolation("create voucher: duplicate id", constraint='id')
        self.vouchers[voucher.id] = voucher.model_copy()

    async def get(self, voucher_id: str, timeout: float) -> Optional[Voucher]:
        await _checkpoint("get voucher", timeout)
        voucher = self.vouchers.get(voucher_id)
        return voucher.model_copy() if voucher else None

    async def list_by_owner(self, user_id: int, timeout: float) -> List[Voucher]:
        await _checkpoint("list vouchers", timeout)
        owned = [v.model_copy() for v in self.vouchers.values() if v.user_id == user_id]
        return _newest_first(owned, key=lambda v: v.created_at)


class MemoryPurchaseStore(PurchaseStore):
    """Purchase store kept in dicts, joined against a MemoryVoucherStore."""

    def __init__(self, voucher_store: MemoryVoucherStore) -> None:
        self.voucher_store = voucher_store
        self.purchases: Dict[str, Purchase] = {}
        self._by_voucher: Dict[str, str] = {}
        self._by_token: Dict[str, str] = {}

    async def create(self, purchase: Purchase, timeout: float) -> None:
        await _checkpoint("create purchase", timeout)
        if purchase.id in self.purchases:
            raise UniqueViolation("create purchase: duplicate id", constraint='id')
        if purchase.voucher_id in self._by_voucher:
            raise UniqueViolation("create purchase: duplicate voucher_id", constraint='voucher_id')
        if purchase.redemption_token in self._by_token:
            raise UniqueViolation(
                "create purchase: duplicate redemption_token",
                constraint='redemption_token'
            )
        if purchase.voucher_id not in self.voucher_store.vouchers:
            raise DatabaseError(f"create purchase: voucher {purchase.voucher_id} does not exist")

        self.purchases[purchase.id] = purchase.model_copy()
        self._by_voucher[purchase.voucher_id] = purchase.id
        self._by_token[purchase.redemption_token] = purchase.id

    async def get_by_voucher(self, voucher_id: str, timeout: float) -> Optional[Purchase]:
        await _checkpoint("get purchase by voucher", timeout)
        purchase_id = self._by_voucher.get(voucher_id)
        return self.purchases[purchase_id].model_copy() if purchase_id else None

    async def get_by_token(self, redemption_token: str, timeout: float) -> Optional[Purchase]:
        await _checkpoint("get purchase by token", timeout)
        purchase_id = self._by_token.get(redemption_token)
        return self.purchases[purchase_id].model_copy() if purchase_id else None

    async def mark_redeemed(
        self,
        redemption_token: str,
        redeemed_at: datetime,
        timeout: float
    ) -> bool:
        await _checkpoint("redeem purchase", timeout)
        purchase_id = self._by_token.get(redemption_token)
        if purchase_id is None:
            return False
        purchase = self.purchases[purchase_id]
        if purchase.status != PurchaseStatus.ACTIVE:
            return False
        self.purchases[purchase_id] = purchase.model_copy(update={
            'status': PurchaseStatus.REDEEMED,
            'redeemed_at': redeemed_at
        })
        return True

    async def list_views_by_buyer(self, buyer_id: int, timeout: float) -> List[PurchaseView]:
        await _checkpoint("list buyer purchases", timeout)
        views = []
        for purchase in self.purchases.values():
            if purchase.buyer_id != buyer_id:
                continue
            voucher = self.voucher_store.vouchers[purchase.voucher_id]
            views.append(PurchaseView(
                id=purchase.id,
                title=voucher.title,
                description=voucher.description,
                photo_url=voucher.photo_url,
                price=voucher.price,
                status=purchase.status,
                redemption_token=purchase.redemption_token,
                purchased_at=purchase.created_at,
                redeemed_at=purchase.redeemed_at
            ))
        return _newest_first(views, key=lambda v: v.purchased_at)
