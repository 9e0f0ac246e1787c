"""Shared fixtures for the voucher service tests."""

import pytest_asyncio

from tokens import TokenGenerator
from vouchers import VoucherManager
from vouchers.stores import MemoryVoucherStore, MemoryPurchaseStore

SELLER_ID = 100
BUYER_ID = 200
OTHER_BUYER_ID = 300

SAMPLE_VOUCHER = {
    "listing_id": 7,
    "user_id": SELLER_ID,
    "title": "Spa day",
    "description": "Two hours in the thermal baths",
    "price": "49.90",
    "photo_url": "https://cdn.example.com/spa.jpg"
}

@pytest_asyncio.fixture
async def voucher_store():
    """Create an empty in-memory voucher store."""
    return MemoryVoucherStore()

@pytest_asyncio.fixture
async def purchase_store(voucher_store):
    """Create an empty in-memory purchase store."""
    return MemoryPurchaseStore(voucher_store)

@pytest_asyncio.fixture
async def voucher_manager(voucher_store, purchase_store):
    """Create a VoucherManager over the in-memory stores."""
    return VoucherManager(voucher_store, purchase_store, TokenGenerator())

@pytest_asyncio.fixture
async def sample_voucher(voucher_manager):
    """Create and return a sample voucher."""
    return await voucher_manager.create_voucher(**SAMPLE_VOUCHER)
