"""Database module for managing PostgreSQL connections.

This module handles:
- Database connection pool creation
- Schema management
- Connection lifecycle

The pool is owned by the caller (the process entry point) and passed down to
the stores explicitly; this module keeps no connection state of its own.
"""

import logging
import ssl
from typing import Dict, Any
from urllib.parse import urlparse, parse_qs

import asyncpg
import backoff

from .exceptions import DatabaseError, DatabaseSchemaError, UniqueViolation
from .lib.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

__all__ = [
    'create_pool', 'init_db', 'close_pool',
    'DatabaseError', 'DatabaseSchemaError', 'UniqueViolation', 'SchemaManager'
]

def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for hosted PostgreSQL connections."""
    ssl_context = ssl.create_default_context()
    ssl_context.verify_mode = ssl.CERT_REQUIRED
    ssl_context.check_hostname = True
    return ssl_context

def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    SSL is only forced when the URL asks for it with sslmode=require or
    sslmode=verify-full; asyncpg handles the remaining sslmode values itself.

    Args:
        db_url: Database connection URL

    Returns:
        Dict of connection parameters
    """
    parsed = urlparse(db_url)
    params = parse_qs(parsed.query)

    kwargs: Dict[str, Any] = {}
    if params.get('sslmode', [''])[0] in ('require', 'verify-full'):
        kwargs['ssl'] = _get_ssl_context()

    return kwargs

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def create_pool(
    db_url: str,
    min_size: int = 2,
    max_size: int = 20,
    command_timeout: float = 60.0
) -> asyncpg.Pool:
    """Create a database connection pool.

    Args:
        db_url: Database connection URL
        min_size: Minimum idle connections
        max_size: Maximum connections
        command_timeout: Upper bound for any statement without its own timeout

    Returns:
        The connection pool

    Raises:
        ValueError: If database URL is not provided
        Exception: If the pool cannot be created after retries
    """
    if not db_url:
        raise ValueError("Database URL not provided")

    conn_kwargs = _get_connection_kwargs(db_url)

    pool = await asyncpg.create_pool(
        db_url,
        min_size=min_size,
        max_size=max_size,
        max_inactive_connection_lifetime=300.0,  # 5 minutes
        command_timeout=command_timeout,
        **conn_kwargs
    )
    logger.info(f"Connected to database {urlparse(db_url).hostname}")
    return pool

async def init_db(
    db_url: str,
    min_size: int = 2,
    max_size: int = 20,
    command_timeout: float = 60.0
) -> asyncpg.Pool:
    """Create the connection pool and bring the schema up to date.

    Args:
        db_url: Database connection URL
        min_size: Minimum idle connections
        max_size: Maximum connections
        command_timeout: Upper bound for any statement without its own timeout

    Returns:
        The connection pool, ready for the stores

    Raises:
        DatabaseSchemaError: If schema initialization fails
    """
    pool = await create_pool(db_url, min_size, max_size, command_timeout)

    try:
        await SchemaManager(pool).initialize()
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        await pool.close()
        raise

    return pool

async def close_pool(pool: asyncpg.Pool) -> None:
    """Close the database connection pool."""
    if pool:
        await pool.close()
        logger.info("Database pool closed")
