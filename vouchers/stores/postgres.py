"""PostgreSQL store adapters built on an asyncpg pool."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

import asyncpg
from asyncpg.pool import Pool

from database.exceptions import DatabaseError, UniqueViolation
from . import VoucherStore, PurchaseStore
from ..models import Voucher, Purchase, PurchaseStatus, PurchaseView

logger = logging.getLogger(__name__)

# Constraint names come from the schema manager's uq_<table>_<column> convention
CONSTRAINT_COLUMNS = {
    'uq_purchases_voucher_id': 'voucher_id',
    'uq_purchases_redemption_token': 'redemption_token',
    'purchases_pkey': 'id',
    'vouchers_pkey': 'id'
}

VOUCHER_COLUMNS = 'id, listing_id, user_id, title, description, price, photo_url, created_at'
PURCHASE_COLUMNS = 'id, voucher_id, buyer_id, redemption_token, status, redeemed_at, created_at'


@asynccontextmanager
async def translate_errors(operation: str):
    """Re-raise driver errors as database exceptions."""
    try:
        yield
    except asyncpg.exceptions.UniqueViolationError as e:
        constraint = CONSTRAINT_COLUMNS.get(e.constraint_name, e.constraint_name)
        raise UniqueViolation(f"{operation}: duplicate {constraint}", constraint=constraint) from e
    except asyncio.TimeoutError as e:
        raise DatabaseError(f"{operation}: timed out") from e
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
        logger.error(f"{operation} failed: {e}")
        raise DatabaseError(f"{operation}: {e}") from e


def _voucher_from_row(row) -> Voucher:
    return Voucher(
        id=row['id'],
        listing_id=row['listing_id'],
        user_id=row['user_id'],
        title=row['title'],
        description=row['description'],
        price=row['price'],
        photo_url=row['photo_url'],
        created_at=row['created_at']
    )


def _purchase_from_row(row) -> Purchase:
    return Purchase(
        id=row['id'],
        voucher_id=row['voucher_id'],
        buyer_id=row['buyer_id'],
        redemption_token=row['redemption_token'],
        status=PurchaseStatus(row['status']),
        redeemed_at=row['redeemed_at'],
        created_at=row['created_at']
    )


class PostgresVoucherStore(VoucherStore):
    """Voucher store backed by the vouchers table."""

    def __init__(self, pool: Pool) -> None:
        self.pool = pool

    async def create(self, voucher: Voucher, timeout: float) -> None:
        async with translate_errors("create voucher"):
            async with self.pool.acquire(timeout=timeout) as conn:
                await conn.execute(
                    f'''
                    INSERT INTO vouchers ({VOUCHER_COLUMNS})
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    ''',
                    voucher.id,
                    voucher.listing_id,
                    voucher.user_id,
                    voucher.title,
                    voucher.description,
                    voucher.price,
                    voucher.photo_url,
                    voucher.created_at,
                    timeout=timeout
                )

    async def get(self, voucher_id: str, timeout: float) -> Optional[Voucher]:
        async with translate_errors("get voucher"):
            async with self.pool.acquire(timeout=timeout) as conn:
                row = await conn.fetchrow(
                    f'SELECT {VOUCHER_COLUMNS} FROM vouchers WHERE id = $1',
                    voucher_id,
                    timeout=timeout
                )
        return _voucher_from_row(row) if row else None

    async def list_by_owner(self, user_id: int, timeout: float) -> List[Voucher]:
        async with translate_errors("list vouchers"):
            async with self.pool.acquire(timeout=timeout) as conn:
                rows = await conn.fetch(
                    f'''
                    SELECT {VOUCHER_COLUMNS}
                    FROM vouchers
                    WHERE user_id = $1
                    ORDER BY created_at DESC, id
                    ''',
                    user_id,
                    timeout=timeout
                )
        return [_voucher_from_row(row) for row in rows]


class PostgresPurchaseStore(PurchaseStore):
    """Purchase store backed by the purchases table.

    Uniqueness of voucher_id and redemption_token is enforced by the table's
    UNIQUE constraints; redemption is a single conditional UPDATE.
    """

    def __init__(self, pool: Pool) -> None:
        self.pool = pool

    async def create(self, purchase: Purchase, timeout: float) -> None:
        async with translate_errors("create purchase"):
            async with self.pool.acquire(timeout=timeout) as conn:
                await conn.execute(
                    f'''
                    INSERT INTO purchases ({PURCHASE_COLUMNS})
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    ''',
                    purchase.id,
                    purchase.voucher_id,
                    purchase.buyer_id,
                    purchase.redemption_token,
                    purchase.status.value,
                    purchase.redeemed_at,
                    purchase.created_at,
                    timeout=timeout
                )

    async def get_by_voucher(self, voucher_id: str, timeout: float) -> Optional[Purchase]:
        async with translate_errors("get purchase by voucher"):
            async with self.pool.acquire(timeout=timeout) as conn:
                row = await conn.fetchrow(
                    f'SELECT {PURCHASE_COLUMNS} FROM purchases WHERE voucher_id = $1',
                    voucher_id,
                    timeout=timeout
                )
        return _purchase_from_row(row) if row else None

    async def get_by_token(self, redemption_token: str, timeout: float) -> Optional[Purchase]:
        async with translate_errors("get purchase by token"):
            async with self.pool.acquire(timeout=timeout) as conn:
                row = await conn.fetchrow(
                    f'SELECT {PURCHASE_COLUMNS} FROM purchases WHERE redemption_token = $1',
                    redemption_token,
                    timeout=timeout
                )
        return _purchase_from_row(row) if row else None

    async def mark_redeemed(
        self,
        redemption_token: str,
        redeemed_at: datetime,
        timeout: float
    ) -> bool:
        async with translate_errors("redeem purchase"):
            async with self.pool.acquire(timeout=timeout) as conn:
                purchase_id = await conn.fetchval(
                    '''
                    UPDATE purchases
                    SET status = 'redeemed', redeemed_at = $2
                    WHERE redemption_token = $1 AND status = 'active'
                    RETURNING id
                    ''',
                    redemption_token,
                    redeemed_at,
                    timeout=timeout
                )
        return purchase_id is not None

    async def list_views_by_buyer(self, buyer_id: int, timeout: float) -> List[PurchaseView]:
        async with translate_errors("list buyer purchases"):
            async with self.pool.acquire(timeout=timeout) as conn:
                rows = await conn.fetch(
                    '''
                    SELECT
                        p.id,
                        v.title,
                        v.description,
                        v.photo_url,
                        v.price,
                        p.status,
                        CASE WHEN p.status = 'active' THEN p.redemption_token END AS redemption_token,
                        p.created_at AS purchased_at,
                        p.redeemed_at
                    FROM purchases p
                    JOIN vouchers v ON p.voucher_id = v.id
                    WHERE p.buyer_id = $1
                    ORDER BY p.created_at DESC, p.id
                    ''',
                    buyer_id,
                    timeout=timeout
                )
        return [
            PurchaseView(
                id=row['id'],
                title=row['title'],
                description=row['description'],
                photo_url=row['photo_url'],
                price=row['price'],
                status=PurchaseStatus(row['status']),
                redemption_token=row['redemption_token'],
                purchased_at=row['purchased_at'],
                redeemed_at=row['redeemed_at']
            )
            for row in rows
        ]
