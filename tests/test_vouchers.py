"""Tests for the vouchers module."""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from conftest import SAMPLE_VOUCHER, SELLER_ID, BUYER_ID, OTHER_BUYER_ID
from database.exceptions import DatabaseError
from tokens import TokenGenerator
from vouchers import (
    VoucherManager,
    ValidationError,
    NotFoundError,
    ConflictError,
    StorageError,
    PurchaseStatus
)
from vouchers.stores import MemoryVoucherStore, MemoryPurchaseStore

REDEEMED_AT = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)

class FixedTokenGenerator(TokenGenerator):
    """Hands out the same redemption token every time."""

    def new_redemption_token(self) -> str:
        return "the-only-token-there-is"

class StuckPurchaseStore(MemoryPurchaseStore):
    """Purchase store whose conditional update never matches a row."""

    async def mark_redeemed(self, redemption_token, redeemed_at, timeout):
        return False

class TimingOutVoucherStore(MemoryVoucherStore):
    """Voucher store whose calls never finish within their timeout."""

    async def get(self, voucher_id, timeout):
        try:
            await asyncio.wait_for(asyncio.sleep(10), timeout)
        except asyncio.TimeoutError as e:
            raise DatabaseError("get voucher: timed out") from e

class BrokenPurchaseStore(MemoryPurchaseStore):
    """Purchase store that has lost its database."""

    async def list_views_by_buyer(self, buyer_id, timeout):
        raise DatabaseError("list buyer purchases: connection refused")

""" Creating vouchers """
@pytest.mark.asyncio
async def test_create_voucher(voucher_manager, voucher_store):
    """Test creating a new voucher echoes its input."""
    voucher = await voucher_manager.create_voucher(**SAMPLE_VOUCHER)

    assert TokenGenerator.is_valid_id(voucher.id)
    assert voucher.listing_id == SAMPLE_VOUCHER["listing_id"]
    assert voucher.user_id == SELLER_ID
    assert voucher.title == SAMPLE_VOUCHER["title"]
    assert voucher.description == SAMPLE_VOUCHER["description"]
    assert voucher.price == Decimal("49.90")
    assert voucher.photo_url == SAMPLE_VOUCHER["photo_url"]
    assert voucher.created_at.tzinfo is not None

    # Stored as returned
    assert voucher_store.vouchers[voucher.id] == voucher

@pytest.mark.asyncio
async def test_create_voucher_optional_fields(voucher_manager):
    """Test description and photo are optional and price may be free."""
    voucher = await voucher_manager.create_voucher(
        listing_id=1, user_id=SELLER_ID, title="Free coffee", price=0
    )

    assert voucher.description is None
    assert voucher.photo_url is None
    assert voucher.price == Decimal("0")

@pytest.mark.asyncio
@pytest.mark.parametrize("price, stored", [
    ("5.000", "5.00"),
    ("5", "5.00"),
    (Decimal("12.5"), "12.50"),
    (7, "7.00"),
])
async def test_create_voucher_price_is_normalised(voucher_manager, price, stored):
    """Test that exact prices are stored with two decimal places."""
    voucher = await voucher_manager.create_voucher(**{**SAMPLE_VOUCHER, "price": price})

    assert voucher.to_dict()["price"] == stored

@pytest.mark.asyncio
async def test_voucher_ids_are_unique(voucher_manager):
    """Test that every voucher gets its own id."""
    vouchers = [
        await voucher_manager.create_voucher(**SAMPLE_VOUCHER)
        for _ in range(20)
    ]
    assert len({v.id for v in vouchers}) == 20

@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {"listing_id": 0},
    {"listing_id": -3},
    {"listing_id": "7"},
    {"user_id": True},
    {"title": ""},
    {"title": "   "},
    {"price": "-1"},
    {"price": "1.234"},
    {"price": "NaN"},
    {"price": "Infinity"},
    {"price": "cheap"},
    {"price": "10000000000"},
    {"listing_id": 2**63},
    {"user_id": 2**70},
    {"description": 123},
    {"photo_url": ["https://cdn.example.com/spa.jpg"]},
])
async def test_create_voucher_invalid_input(voucher_manager, voucher_store, overrides):
    """Test that malformed input is rejected before anything is stored."""
    with pytest.raises(ValidationError):
        await voucher_manager.create_voucher(**{**SAMPLE_VOUCHER, **overrides})
    assert voucher_store.vouchers == {}

@pytest.mark.asyncio
async def test_get_voucher(voucher_manager, sample_voucher):
    """Test retrieving a voucher by ID."""
    voucher = await voucher_manager.get_voucher(sample_voucher.id)
    assert voucher == sample_voucher

@pytest.mark.asyncio
async def test_get_voucher_not_found(voucher_manager):
    """Test that getting a non-existent voucher raises an error."""
    with pytest.raises(NotFoundError):
        await voucher_manager.get_voucher(TokenGenerator().new_id())

@pytest.mark.asyncio
async def test_list_owner_vouchers(voucher_manager, sample_voucher):
    """Test listing the vouchers a user has issued, newest first."""
    newer = await voucher_manager.create_voucher(**{**SAMPLE_VOUCHER, "title": "Massage"})
    await voucher_manager.create_voucher(**{**SAMPLE_VOUCHER, "user_id": SELLER_ID + 1})

    vouchers = await voucher_manager.list_owner_vouchers(SELLER_ID)

    assert [v.id for v in vouchers] == [newer.id, sample_voucher.id]

""" Purchasing """
@pytest.mark.asyncio
async def test_purchase_voucher(voucher_manager, sample_voucher):
    """Test purchasing a voucher issues an active purchase with a token."""
    purchase = await voucher_manager.purchase_voucher(sample_voucher.id, BUYER_ID)

    assert TokenGenerator.is_valid_id(purchase.id)
    assert purchase.voucher_id == sample_voucher.id
    assert purchase.buyer_id == BUYER_ID
    assert purchase.status == PurchaseStatus.ACTIVE
    assert purchase.redeemed_at is None
    assert purchase.redemption_token
    assert purchase.redemption_token not in (sample_voucher.id, purchase.id)

@pytest.mark.asyncio
async def test_redemption_tokens_are_unique(voucher_manager):
    """Test that each purchase gets its own redemption token."""
    tokens = set()
    for _ in range(20):
        voucher = await voucher_manager.create_voucher(**SAMPLE_VOUCHER)
        purchase = await voucher_manager.purchase_voucher(voucher.id, BUYER_ID)
        tokens.add(purchase.redemption_token)
    assert len(tokens) == 20

@pytest.mark.asyncio
async def test_purchase_voucher_twice(voucher_manager, sample_voucher):
    """Test that a voucher can only be purchased once."""
    await voucher_manager.purchase_voucher(sample_voucher.id, BUYER_ID)

    with pytest.raises(ConflictError):
        await voucher_manager.purchase_voucher(sample_voucher.id, OTHER_BUYER_ID)

    # Same buyer is no different
    with pytest.raises(ConflictError):
        await voucher_manager.purchase_voucher(sample_voucher.id, BUYER_ID)

@pytest.mark.asyncio
async def test_concurrent_purchases(voucher_manager, purchase_store, sample_voucher):
    """Test that exactly one of many concurrent purchases succeeds."""
    buyers = range(1, 11)
    results = await asyncio.gather(
        *(voucher_manager.purchase_voucher(sample_voucher.id, buyer) for buyer in buyers),
        return_exceptions=True
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(successes) == 1
    assert len(conflicts) == len(buyers) - 1
    assert len(purchase_store.purchases) == 1

@pytest.mark.asyncio
async def test_purchase_unknown_voucher(voucher_manager, purchase_store):
    """Test purchasing a voucher that doesn't exist."""
    with pytest.raises(NotFoundError):
        await voucher_manager.purchase_voucher(TokenGenerator().new_id(), BUYER_ID)
    assert purchase_store.purchases == {}

@pytest.mark.asyncio
@pytest.mark.parametrize("voucher_id, buyer_id", [
    ("not-an-id", BUYER_ID),
    ("", BUYER_ID),
    (None, BUYER_ID),
    ("A" * 32, BUYER_ID),
    ("0" * 32, 0),
    ("0" * 32, False),
    ("0" * 32, 2**63),
])
async def test_purchase_invalid_input(voucher_manager, voucher_id, buyer_id):
    """Test that malformed purchase input is rejected."""
    with pytest.raises(ValidationError):
        await voucher_manager.purchase_voucher(voucher_id, buyer_id)

@pytest.mark.asyncio
async def test_purchase_token_collision_is_storage_error(voucher_store, purchase_store):
    """Test that a duplicate redemption token is not reported as a conflict."""
    manager = VoucherManager(voucher_store, purchase_store, FixedTokenGenerator())
    first = await manager.create_voucher(**SAMPLE_VOUCHER)
    second = await manager.create_voucher(**SAMPLE_VOUCHER)
    await manager.purchase_voucher(first.id, BUYER_ID)

    with pytest.raises(StorageError):
        await manager.purchase_voucher(second.id, BUYER_ID)
    assert len(purchase_store.purchases) == 1

""" Redeeming """
@pytest.mark.asyncio
async def test_redeem_voucher(voucher_manager, purchase_store, sample_voucher):
    """Test redeeming a purchase by its token."""
    purchase = await voucher_manager.purchase_voucher(sample_voucher.id, BUYER_ID)

    await voucher_manager.redeem_voucher(purchase.redemption_token, REDEEMED_AT)

    stored = purchase_store.purchases[purchase.id]
    assert stored.status == PurchaseStatus.REDEEMED
    assert stored.redeemed_at == REDEEMED_AT

@pytest.mark.asyncio
async def test_redeem_voucher_twice(voucher_manager, purchase_store, sample_voucher):
    """Test that a purchase can only be redeemed once."""
    purchase = await voucher_manager.purchase_voucher(sample_voucher.id, BUYER_ID)
    await voucher_manager.redeem_voucher(purchase.redemption_token, REDEEMED_AT)

    with pytest.raises(ConflictError):
        await voucher_manager.redeem_voucher(
            purchase.redemption_token, datetime.now(timezone.utc)
        )

    # First redemption time is kept
    assert purchase_store.purchases[purchase.id].redeemed_at == REDEEMED_AT

@pytest.mark.asyncio
async def test_concurrent_redemptions(voucher_manager, sample_voucher):
    """Test that exactly one of many concurrent redemptions succeeds."""
    purchase = await voucher_manager.purchase_voucher(sample_voucher.id, BUYER_ID)

    results = await asyncio.gather(
        *(voucher_manager.redeem_voucher(purchase.redemption_token, REDEEMED_AT)
          for _ in range(10)),
        return_exceptions=True
    )

    assert results.count(None) == 1
    assert sum(isinstance(r, ConflictError) for r in results) == 9

@pytest.mark.asyncio
async def test_redeem_unknown_token(voucher_manager):
    """Test redeeming with a token no purchase holds."""
    with pytest.raises(NotFoundError):
        await voucher_manager.redeem_voucher("no-such-token", REDEEMED_AT)

@pytest.mark.asyncio
async def test_redeem_with_voucher_id(voucher_manager, purchase_store, sample_voucher):
    """Test that the voucher id cannot stand in for the redemption token."""
    purchase = await voucher_manager.purchase_voucher(sample_voucher.id, BUYER_ID)

    with pytest.raises(NotFoundError):
        await voucher_manager.redeem_voucher(sample_voucher.id, REDEEMED_AT)
    with pytest.raises(NotFoundError):
        await voucher_manager.redeem_voucher(purchase.id, REDEEMED_AT)

    assert purchase_store.purchases[purchase.id].status == PurchaseStatus.ACTIVE

@pytest.mark.asyncio
async def test_redeem_naive_timestamp_is_utc(voucher_manager, purchase_store, sample_voucher):
    """Test that a naive redemption time is stored as UTC."""
    purchase = await voucher_manager.purchase_voucher(sample_voucher.id, BUYER_ID)

    await voucher_manager.redeem_voucher(
        purchase.redemption_token, datetime(2024, 5, 1, 12, 30)
    )

    assert purchase_store.purchases[purchase.id].redeemed_at == REDEEMED_AT

@pytest.mark.asyncio
@pytest.mark.parametrize("token, redeemed_at", [
    ("", REDEEMED_AT),
    (None, REDEEMED_AT),
    ("some-token", "2024-05-01T12:30:00Z"),
    ("some-token", None),
])
async def test_redeem_invalid_input(voucher_manager, token, redeemed_at):
    """Test that malformed redemption input is rejected."""
    with pytest.raises(ValidationError):
        await voucher_manager.redeem_voucher(token, redeemed_at)

@pytest.mark.asyncio
async def test_redeem_row_vanished(voucher_store):
    """Test that an update matching no row on an active purchase is a storage error."""
    purchase_store = StuckPurchaseStore(voucher_store)
    manager = VoucherManager(voucher_store, purchase_store)
    voucher = await manager.create_voucher(**SAMPLE_VOUCHER)
    purchase = await manager.purchase_voucher(voucher.id, BUYER_ID)

    with pytest.raises(StorageError):
        await manager.redeem_voucher(purchase.redemption_token, REDEEMED_AT)

""" Listing a buyer's vouchers """
@pytest.mark.asyncio
async def test_list_user_vouchers_empty(voucher_manager):
    """Test listing for a buyer with no purchases."""
    assert await voucher_manager.list_user_vouchers(BUYER_ID) == []

@pytest.mark.asyncio
@pytest.mark.parametrize("buyer_id", [0, -1, True, "200", 2**63])
async def test_list_user_vouchers_invalid_buyer(voucher_manager, buyer_id):
    """Test that buyer ids outside the stored range are rejected."""
    with pytest.raises(ValidationError):
        await voucher_manager.list_user_vouchers(buyer_id)

@pytest.mark.asyncio
async def test_list_user_vouchers(voucher_manager, sample_voucher):
    """Test listing carries voucher details and the active token."""
    purchase = await voucher_manager.purchase_voucher(sample_voucher.id, BUYER_ID)

    views = await voucher_manager.list_user_vouchers(BUYER_ID)

    assert len(views) == 1
    view = views[0]
    assert view.id == purchase.id
    assert view.title == sample_voucher.title
    assert view.description == sample_voucher.description
    assert view.photo_url == sample_voucher.photo_url
    assert view.price == sample_voucher.price
    assert view.status == PurchaseStatus.ACTIVE
    assert view.redemption_token == purchase.redemption_token
    assert view.purchased_at == purchase.created_at
    assert view.redeemed_at is None
    assert view.to_dict()["redemption_token"] == purchase.redemption_token

@pytest.mark.asyncio
async def test_list_user_vouchers_redacts_redeemed(voucher_manager, sample_voucher):
    """Test that redeemed purchases are listed without their token."""
    purchase = await voucher_manager.purchase_voucher(sample_voucher.id, BUYER_ID)
    await voucher_manager.redeem_voucher(purchase.redemption_token, REDEEMED_AT)

    views = await voucher_manager.list_user_vouchers(BUYER_ID)

    assert views[0].status == PurchaseStatus.REDEEMED
    assert views[0].redemption_token is None
    assert views[0].redeemed_at == REDEEMED_AT
    assert "redemption_token" not in views[0].to_dict()
    assert "redemption_token" not in views[0].model_dump()
    assert "redemption_token" not in views[0].model_dump_json()

@pytest.mark.asyncio
async def test_list_user_vouchers_newest_first(voucher_manager):
    """Test purchases are listed newest first and only for their buyer."""
    first = await voucher_manager.create_voucher(**SAMPLE_VOUCHER)
    second = await voucher_manager.create_voucher(**SAMPLE_VOUCHER)
    theirs = await voucher_manager.create_voucher(**SAMPLE_VOUCHER)

    older = await voucher_manager.purchase_voucher(first.id, BUYER_ID)
    newer = await voucher_manager.purchase_voucher(second.id, BUYER_ID)
    await voucher_manager.purchase_voucher(theirs.id, OTHER_BUYER_ID)

    views = await voucher_manager.list_user_vouchers(BUYER_ID)

    assert [v.id for v in views] == [newer.id, older.id]

@pytest.mark.asyncio
async def test_voucher_lifecycle(voucher_manager):
    """Test the full create, purchase, redeem and list flow."""
    voucher = await voucher_manager.create_voucher(
        listing_id=10, user_id=1, title="10% off", price=Decimal("5.00")
    )
    purchase = await voucher_manager.purchase_voucher(voucher.id, 7)
    assert purchase.status == PurchaseStatus.ACTIVE

    await voucher_manager.redeem_voucher(purchase.redemption_token, datetime.now(timezone.utc))
    with pytest.raises(ConflictError):
        await voucher_manager.redeem_voucher(purchase.redemption_token, datetime.now(timezone.utc))

    views = await voucher_manager.list_user_vouchers(7)
    assert len(views) == 1
    assert views[0].status == PurchaseStatus.REDEEMED
    assert "redemption_token" not in views[0].to_dict()

""" Timeouts and storage failures """
@pytest.mark.asyncio
async def test_store_timeout_is_storage_error():
    """Test that a store call exceeding its timeout surfaces as a storage error."""
    voucher_store = TimingOutVoucherStore()
    manager = VoucherManager(
        voucher_store, MemoryPurchaseStore(voucher_store), store_timeout=0.01
    )

    with pytest.raises(StorageError):
        await manager.get_voucher(TokenGenerator().new_id())

@pytest.mark.asyncio
async def test_storage_failure_while_listing(voucher_store):
    """Test that a failing store surfaces as a storage error."""
    manager = VoucherManager(voucher_store, BrokenPurchaseStore(voucher_store))

    with pytest.raises(StorageError):
        await manager.list_user_vouchers(BUYER_ID)

@pytest.mark.asyncio
async def test_invalid_timeout(voucher_manager):
    """Test that a non-positive timeout override is rejected."""
    with pytest.raises(ValidationError):
        await voucher_manager.list_user_vouchers(BUYER_ID, timeout=0)

def test_invalid_store_timeout():
    """Test that the manager refuses a non-positive default timeout."""
    voucher_store = MemoryVoucherStore()
    with pytest.raises(ValueError):
        VoucherManager(voucher_store, MemoryPurchaseStore(voucher_store), store_timeout=0)
