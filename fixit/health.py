"""Debounced database health checks."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

Probe = Callable[[], Awaitable[None]]


class HealthCheckCache:
    """Remembers the last probe result for ``ttl_seconds``.

    Concurrent callers share one in-flight probe; later callers inside the TTL
    window get the cached result without touching the database.
    """

    def __init__(self, ttl_seconds: float = 5.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self.last_checked: Optional[float] = None
        self.healthy: Optional[bool] = None
        self.last_error: Optional[str] = None

    def is_fresh(self) -> bool:
        return self.last_checked is not None and self._clock() - self.last_checked < self.ttl_seconds

    def invalidate(self) -> None:
        self.last_checked = None

    async def check(self, probe: Probe) -> bool:
        if self.is_fresh():
            return bool(self.healthy)

        async with self._lock:
            if self.is_fresh():
                return bool(self.healthy)
            try:
                await probe()
            except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
                if self.healthy is not False:
                    logger.warning("Database health check failed: %s", exc)
                self.healthy = False
                self.last_error = str(exc)
            else:
                if self.healthy is False:
                    logger.info("Database connection recovered")
                self.healthy = True
                self.last_error = None
            self.last_checked = self._clock()

        return self.healthy


async def ping_database(db: AsyncSession, timeout: float = 3.0) -> None:
    await asyncio.wait_for(db.execute(text("SELECT 1")), timeout=timeout)
