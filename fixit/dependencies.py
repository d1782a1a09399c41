"""Shared FastAPI dependencies."""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.database.config import get_db
from fixit.errors import ServiceUnavailableError
from fixit.health import HealthCheckCache, ping_database


def get_health_cache(request: Request) -> HealthCheckCache:
    return request.app.state.health_cache


async def require_database(
    db: AsyncSession = Depends(get_db),
    cache: HealthCheckCache = Depends(get_health_cache),
) -> None:
    """Fail fast with 503 when the database is unreachable."""
    if not await cache.check(lambda: ping_database(db)):
        raise ServiceUnavailableError("Database service unavailable. Please try again later.")
