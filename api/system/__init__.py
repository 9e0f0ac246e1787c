"""System health endpoints."""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

import psutil
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])

HEALTH_CHECK_TIMEOUT = 2.0  # seconds

class SystemHealth(BaseModel):
    """Model for system health data."""
    status: str
    service: str
    timestamp: datetime
    uptime: float
    cpu_usage: float
    memory_usage: float
    database: str
    active_connections: Optional[int] = None

def _uptime() -> float:
    return time.time() - psutil.Process().create_time()

@router.get("/health", response_model=SystemHealth)
async def health(request: Request):
    """Get service health.

    Reports host load and, for the postgres backend, whether the database
    answers within HEALTH_CHECK_TIMEOUT. An unreachable database makes the
    whole service unhealthy (503) since no voucher operation can succeed.
    """
    health = SystemHealth(
        status="healthy",
        service="voucher-api",
        timestamp=datetime.now(timezone.utc),
        uptime=_uptime(),
        cpu_usage=psutil.cpu_percent(),
        memory_usage=psutil.virtual_memory().percent,
        database="not_configured"
    )

    pool = request.app.state.pool
    if pool is not None:
        try:
            async with pool.acquire(timeout=HEALTH_CHECK_TIMEOUT) as conn:
                await conn.fetchval('SELECT 1', timeout=HEALTH_CHECK_TIMEOUT)
            health.database = "connected"
            health.active_connections = pool.get_size() - pool.get_idle_size()
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            health.status = "unhealthy"
            health.database = "unreachable"
            return JSONResponse(status_code=503, content=health.model_dump(mode="json"))

    return health
