"""
Health endpoint.

Probes PostgreSQL with a trivial query. Always returns 200 so load balancers
can read the body; `status` reports degradation.
"""

import time
from datetime import UTC, datetime

from fastapi import APIRouter
from sqlalchemy import text
from structlog import get_logger

from app.config import settings
from app.db.session import get_write_db
from app.models.api import HealthResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["status"])

# Thresholds
DEGRADED_LATENCY_THRESHOLD = 1000  # ms

_OVERALL_STATUS = {"operational": "healthy", "degraded": "degraded", "outage": "unhealthy"}


async def check_postgresql() -> str:
    """Check PostgreSQL connectivity: operational, degraded or outage."""
    start = time.perf_counter()
    try:
        async for db in get_write_db():
            await db.execute(text("SELECT 1"))
            latency_ms = int((time.perf_counter() - start) * 1000)
            return "degraded" if latency_ms > DEGRADED_LATENCY_THRESHOLD else "operational"
    except Exception as e:
        logger.warning("postgresql_health_check_failed", error=str(e))
        return "outage"

    return "outage"


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    database = await check_postgresql()
    return HealthResponse(
        status=_OVERALL_STATUS[database],
        database=database,
        timestamp=datetime.now(UTC).isoformat(),
        version=settings.api_version,
    )
