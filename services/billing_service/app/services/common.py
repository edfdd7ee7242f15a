"""Unit-of-work plumbing shared by the billing services."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TypeVar

from loguru import logger
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import StorageConflictError
from ..metrics import storage_conflict_total
from ..settings import BillingSettings, billing_settings
from ..time_utils import utc_now

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
_CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}


def is_storage_conflict(exc: DBAPIError) -> bool:
    """Return True for transient contention errors that are safe to retry."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in _CONFLICT_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


class BillingService:
    """Base class holding the injected storage handle, settings and clock.

    Every public operation runs as one short transaction on its own session;
    nothing is cached between operations.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: BillingSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self.settings = settings or billing_settings()
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    async def run(self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run ``work`` inside a single transaction, committing on success."""
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    return await work(session)
            except DBAPIError as exc:
                if is_storage_conflict(exc):
                    storage_conflict_total.labels(operation=operation).inc()
                    raise StorageConflictError() from exc
                raise

    async def run_with_retries(self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Like :meth:`run`, retrying the whole unit of work on storage conflicts."""
        attempts = max(1, self.settings.max_conflict_retries)
        for attempt in range(1, attempts + 1):
            try:
                return await self.run(operation, work)
            except StorageConflictError:
                if attempt == attempts:
                    raise
                logger.bind(operation=operation, attempt=attempt).info("billing.storage.conflict_retry")
                await asyncio.sleep(0.01 * attempt)
        raise StorageConflictError()  # pragma: no cover
