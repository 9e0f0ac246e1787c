"""Persistence contracts for vouchers and purchases.

Every store method takes a timeout in seconds and must give up with
DatabaseError once it elapses. Cancelling the calling task cancels the store
call. Adapters raise only database.exceptions errors; mapping them onto the
voucher error taxonomy is the manager's job.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ..models import Voucher, Purchase, PurchaseView

__all__ = [
    'VoucherStore', 'PurchaseStore',
    'PostgresVoucherStore', 'PostgresPurchaseStore',
    'MemoryVoucherStore', 'MemoryPurchaseStore'
]


class VoucherStore(ABC):
    """Storage for voucher definitions."""

    @abstractmethod
    async def create(self, voucher: Voucher, timeout: float) -> None:
        """Insert a voucher."""

    @abstractmethod
    async def get(self, voucher_id: str, timeout: float) -> Optional[Voucher]:
        """Return the voucher with this id, or None."""

    @abstractmethod
    async def list_by_owner(self, user_id: int, timeout: float) -> List[Voucher]:
        """Return the vouchers issued by a user, newest first."""


class PurchaseStore(ABC):
    """Storage for purchases.

    Implementations must enforce uniqueness of voucher_id and
    redemption_token, raising UniqueViolation with the violated column as
    its constraint, and must make mark_redeemed a single atomic
    compare-and-set.
    """

    @abstractmethod
    async def create(self, purchase: Purchase, timeout: float) -> None:
        """Insert a purchase."""

    @abstractmethod
    async def get_by_voucher(self, voucher_id: str, timeout: float) -> Optional[Purchase]:
        """Return the purchase of a voucher, or None."""

    @abstractmethod
    async def get_by_token(self, redemption_token: str, timeout: float) -> Optional[Purchase]:
        """Return the purchase holding this redemption token, or None."""

    @abstractmethod
    async def mark_redeemed(
        self,
        redemption_token: str,
        redeemed_at: datetime,
        timeout: float
    ) -> bool:
        """Move an active purchase to redeemed.

        Returns:
            True if exactly this call performed the transition, False if no
            active purchase holds the token
        """

    @abstractmethod
    async def list_views_by_buyer(self, buyer_id: int, timeout: float) -> List[PurchaseView]:
        """Return a buyer's purchases joined with their vouchers, newest first."""


from .postgres import PostgresVoucherStore, PostgresPurchaseStore  # noqa: E402
from .memory import MemoryVoucherStore, MemoryPurchaseStore  # noqa: E402
