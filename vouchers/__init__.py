"""Vouchers module for issuing, selling and redeeming single-use vouchers.

This module provides functionality for:
- Creating vouchers attached to listings
- Purchasing a voucher (at most once per voucher)
- Redeeming a purchase through its redemption token (at most once)
- Listing a buyer's purchases with token redaction

The once-only guarantees are delegated to the stores: a unique constraint on
the purchased voucher id and a conditional status update. VoucherManager
holds no mutable state of its own and takes no locks.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union

from database.exceptions import DatabaseError, UniqueViolation
from tokens import TokenGenerator
from .models import Voucher, Purchase, PurchaseStatus, PurchaseView
from .stores import VoucherStore, PurchaseStore

logger = logging.getLogger(__name__)

__all__ = [
    'VoucherManager', 'VoucherError', 'ValidationError', 'NotFoundError',
    'ConflictError', 'StorageError', 'Voucher', 'Purchase', 'PurchaseStatus',
    'PurchaseView', 'DEFAULT_STORE_TIMEOUT'
]

DEFAULT_STORE_TIMEOUT = 5.0  # seconds

# Matches purchases.price DECIMAL(12, 2)
PRICE_DECIMAL_PLACES = 2
MAX_PRICE = Decimal('9999999999.99')
PRICE_QUANTUM = Decimal('0.01')

# Listing, user and buyer ids are stored as INT8
MAX_INT8 = 2**63 - 1

class VoucherError(Exception):
    """Base exception for voucher operations."""
    pass

class ValidationError(VoucherError):
    """Raised when input is malformed or out of range."""
    pass

class NotFoundError(VoucherError):
    """Raised when a referenced voucher or purchase does not exist."""
    pass

class ConflictError(VoucherError):
    """Raised when an operation would break a lifecycle invariant."""
    pass

class StorageError(VoucherError):
    """Raised when the persistence layer fails. Retrying the whole operation is safe."""
    pass

def _require_positive_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"invalid {name}: must be a positive integer")
    if value > MAX_INT8:
        raise ValidationError(f"invalid {name}: must not exceed {MAX_INT8}")
    return value

def _optional_str(name: str, value) -> Optional[str]:
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"invalid {name}: must be a string")
    return value

def _parse_price(price: Union[Decimal, int, float, str]) -> Decimal:
    if isinstance(price, bool):
        raise ValidationError("invalid price")
    try:
        value = Decimal(str(price))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"invalid price: {price!r}")
    if not value.is_finite():
        raise ValidationError("invalid price: must be finite")
    if value < 0:
        raise ValidationError("price must be non-negative")
    if value > MAX_PRICE:
        raise ValidationError(f"price must not exceed {MAX_PRICE}")
    # Trailing zeros past the second place are fine, anything else is not
    quantized = value.quantize(PRICE_QUANTUM)
    if quantized != value:
        raise ValidationError(
            f"invalid price: maximum {PRICE_DECIMAL_PLACES} decimal places allowed"
        )
    return quantized

class VoucherManager:
    """Manager class for the voucher lifecycle."""

    def __init__(
        self,
        voucher_store: VoucherStore,
        purchase_store: PurchaseStore,
        token_generator: Optional[TokenGenerator] = None,
        store_timeout: float = DEFAULT_STORE_TIMEOUT
    ):
        """Initialize the voucher manager.

        Args:
            voucher_store: Store for voucher definitions
            purchase_store: Store for purchases
            token_generator: Source of ids and redemption tokens
            store_timeout: Default seconds allowed for each store call
        """
        if store_timeout <= 0:
            raise ValueError("store_timeout must be positive")
        self.voucher_store = voucher_store
        self.purchase_store = purchase_store
        self.tokens = token_generator or TokenGenerator()
        self.store_timeout = store_timeout

    def _timeout(self, timeout: Optional[float]) -> float:
        if timeout is None:
            return self.store_timeout
        if timeout <= 0:
            raise ValidationError("timeout must be positive")
        return timeout

    def _require_voucher_id(self, voucher_id) -> str:
        if not self.tokens.is_valid_id(voucher_id):
            raise ValidationError(f"invalid voucher_id: {voucher_id!r}")
        return voucher_id

    async def create_voucher(
        self,
        listing_id: int,
        user_id: int,
        title: str,
        price: Union[Decimal, int, float, str],
        description: Optional[str] = None,
        photo_url: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> Voucher:
        """Create a new voucher.

        Args:
            listing_id: The listing the voucher belongs to
            user_id: The user issuing the voucher
            title: Non-empty voucher title
            price: Non-negative price with at most two decimal places
            description: Optional description
            photo_url: Optional photo reference
            timeout: Optional store timeout override in seconds

        Returns:
            The stored voucher

        Raises:
            ValidationError: If any input is invalid
            StorageError: If the voucher could not be stored
        """
        timeout = self._timeout(timeout)
        _require_positive_int('listing_id', listing_id)
        _require_positive_int('user_id', user_id)
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("title is required")
        _optional_str('description', description)
        _optional_str('photo_url', photo_url)
        value = _parse_price(price)

        voucher = Voucher(
            id=self.tokens.new_id(),
            listing_id=listing_id,
            user_id=user_id,
            title=title,
            description=description,
            price=value,
            photo_url=photo_url,
            created_at=datetime.now(timezone.utc)
        )

        try:
            await self.voucher_store.create(voucher, timeout)
        except DatabaseError as e:
            logger.error(f"Error creating voucher for listing {listing_id}: {e}")
            raise StorageError(f"failed to create voucher: {e}") from e

        logger.info(
            f"Created voucher {voucher.id} for listing {listing_id} by user {user_id}"
        )
        return voucher

    async def get_voucher(self, voucher_id: str, timeout: Optional[float] = None) -> Voucher:
        """Get a voucher by ID.

        Raises:
            ValidationError: If the id is malformed
            NotFoundError: If the voucher doesn't exist
            StorageError: If the lookup failed
        """
        timeout = self._timeout(timeout)
        self._require_voucher_id(voucher_id)

        try:
            voucher = await self.voucher_store.get(voucher_id, timeout)
        except DatabaseError as e:
            raise StorageError(f"failed to get voucher: {e}") from e

        if voucher is None:
            raise NotFoundError(f"voucher {voucher_id} not found")
        return voucher

    async def list_owner_vouchers(
        self,
        user_id: int,
        timeout: Optional[float] = None
    ) -> List[Voucher]:
        """List vouchers issued by a user, newest first."""
        timeout = self._timeout(timeout)
        _require_positive_int('user_id', user_id)

        try:
            return list(await self.voucher_store.list_by_owner(user_id, timeout))
        except DatabaseError as e:
            raise StorageError(f"failed to list vouchers: {e}") from e

    async def purchase_voucher(
        self,
        voucher_id: str,
        buyer_id: int,
        timeout: Optional[float] = None
    ) -> Purchase:
        """Purchase a voucher.

        A voucher can be purchased once. The purchase carries a fresh
        redemption token, unrelated to the voucher id, which is the only
        handle that can redeem it.

        Args:
            voucher_id: The voucher to purchase
            buyer_id: The purchasing user
            timeout: Optional store timeout override in seconds

        Returns:
            The new active purchase, including its redemption token

        Raises:
            ValidationError: If any input is invalid
            NotFoundError: If the voucher doesn't exist
            ConflictError: If the voucher was already purchased
            StorageError: If the purchase could not be stored
        """
        timeout = self._timeout(timeout)
        self._require_voucher_id(voucher_id)
        _require_positive_int('buyer_id', buyer_id)

        await self.get_voucher(voucher_id, timeout)

        try:
            existing = await self.purchase_store.get_by_voucher(voucher_id, timeout)
        except DatabaseError as e:
            raise StorageError(f"failed to check existing purchase: {e}") from e
        if existing is not None:
            logger.warning(f"Rejected purchase of voucher {voucher_id} by {buyer_id}: already purchased")
            raise ConflictError(f"voucher {voucher_id} already purchased")

        purchase = Purchase(
            id=self.tokens.new_id(),
            voucher_id=voucher_id,
            buyer_id=buyer_id,
            redemption_token=self.tokens.new_redemption_token(),
            status=PurchaseStatus.ACTIVE,
            redeemed_at=None,
            created_at=datetime.now(timezone.utc)
        )

        try:
            await self.purchase_store.create(purchase, timeout)
        except UniqueViolation as e:
            if e.constraint == 'voucher_id':
                # Lost the race against a concurrent purchase of the same voucher
                logger.warning(f"Rejected purchase of voucher {voucher_id} by {buyer_id}: already purchased")
                raise ConflictError(f"voucher {voucher_id} already purchased") from e
            logger.error(f"Error storing purchase of voucher {voucher_id}: {e}")
            raise StorageError(f"failed to create purchase: {e}") from e
        except DatabaseError as e:
            logger.error(f"Error storing purchase of voucher {voucher_id}: {e}")
            raise StorageError(f"failed to create purchase: {e}") from e

        logger.info(f"Voucher {voucher_id} purchased by {buyer_id} (purchase {purchase.id})")
        return purchase

    async def redeem_voucher(
        self,
        redemption_token: str,
        redeemed_at: datetime,
        timeout: Optional[float] = None
    ) -> None:
        """Redeem a purchase by its redemption token.

        Args:
            redemption_token: The token read from the buyer's QR code
            redeemed_at: When the redemption happened; naive values are UTC
            timeout: Optional store timeout override in seconds

        Raises:
            ValidationError: If any input is invalid
            NotFoundError: If no purchase holds the token
            ConflictError: If the purchase was already redeemed
            StorageError: If the redemption could not be recorded
        """
        timeout = self._timeout(timeout)
        if not isinstance(redemption_token, str) or not redemption_token:
            raise ValidationError("redemption_token is required")
        if not isinstance(redeemed_at, datetime):
            raise ValidationError("redeemed_at must be a datetime")
        if redeemed_at.tzinfo is None:
            redeemed_at = redeemed_at.replace(tzinfo=timezone.utc)

        purchase = await self._get_purchase_by_token(redemption_token, timeout)
        if purchase is None:
            raise NotFoundError("no purchase matches the redemption token")
        if purchase.status == PurchaseStatus.REDEEMED:
            logger.warning(f"Rejected redemption of purchase {purchase.id}: already redeemed")
            raise ConflictError(f"purchase {purchase.id} already redeemed")

        try:
            redeemed = await self.purchase_store.mark_redeemed(
                redemption_token, redeemed_at, timeout
            )
        except DatabaseError as e:
            logger.error(f"Error redeeming purchase {purchase.id}: {e}")
            raise StorageError(f"failed to redeem voucher: {e}") from e

        if not redeemed:
            # Zero rows moved; find out whether someone else redeemed it first
            current = await self._get_purchase_by_token(redemption_token, timeout)
            if current is not None and current.status == PurchaseStatus.REDEEMED:
                logger.warning(f"Rejected redemption of purchase {purchase.id}: already redeemed")
                raise ConflictError(f"purchase {purchase.id} already redeemed")
            logger.error(f"Purchase {purchase.id} disappeared during redemption")
            raise StorageError(f"purchase {purchase.id} could not be updated")

        logger.info(
            f"Redeemed purchase {purchase.id} of voucher {purchase.voucher_id} "
            f"at {redeemed_at.isoformat()}"
        )

    async def _get_purchase_by_token(
        self,
        redemption_token: str,
        timeout: float
    ) -> Optional[Purchase]:
        try:
            return await self.purchase_store.get_by_token(redemption_token, timeout)
        except DatabaseError as e:
            raise StorageError(f"failed to look up purchase: {e}") from e

    async def list_user_vouchers(
        self,
        buyer_id: int,
        timeout: Optional[float] = None
    ) -> List[PurchaseView]:
        """List a buyer's purchases, newest first.

        Redemption tokens are only included for active purchases.

        Raises:
            ValidationError: If buyer_id is invalid
            StorageError: If the listing failed
        """
        timeout = self._timeout(timeout)
        _require_positive_int('buyer_id', buyer_id)

        try:
            views = await self.purchase_store.list_views_by_buyer(buyer_id, timeout)
        except DatabaseError as e:
            logger.error(f"Error listing purchases for buyer {buyer_id}: {e}")
            raise StorageError(f"failed to get user vouchers: {e}") from e

        return [view.redacted() for view in views or []]
