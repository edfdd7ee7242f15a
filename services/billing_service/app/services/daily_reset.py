"""Daily reset of STANDARD wallets.

A STANDARD wallet is stale when its ``last_token_reset`` is missing or older
than the current boundary: the most recent local midnight in the configured
reset timezone. Resetting moves it back to the daily allotment. The bulk run
re-checks staleness inside each user's transaction, which makes a second
run within the same period a no-op.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import BillingError
from ..metrics import daily_reset_failures_total
from ..models import Wallet, WalletType
from ..settings import BillingSettings
from ..time_utils import reset_boundary, utc_now
from .common import BillingService
from .wallets import WalletService


@dataclass
class ResetFailure:
    user_id: str
    error: str


@dataclass
class ResetResult:
    success: bool
    reset_count: int
    message: str
    errors: list[ResetFailure] = field(default_factory=list)


@dataclass
class OperationOutcome:
    success: bool
    message: str


class DailyResetScheduler(BillingService):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        wallets: WalletService | None = None,
        settings: BillingSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(session_factory, settings=settings, clock=clock)
        self.wallets = wallets or WalletService(session_factory, settings=self.settings, clock=clock)

    def current_boundary(self, now: datetime | None = None) -> datetime:
        return reset_boundary(now or self.now(), self.settings.reset_timezone)

    async def pending_reset_count(self) -> int:
        boundary = self.current_boundary()

        async def work(session: AsyncSession) -> int:
            stmt = select(func.count(Wallet.id)).where(
                Wallet.wallet_type == WalletType.STANDARD.value,
                Wallet.is_active.is_(True),
                or_(Wallet.last_token_reset.is_(None), Wallet.last_token_reset < boundary),
            )
            return int(await session.scalar(stmt) or 0)

        return await self.run("pending_reset_count", work)

    async def should_reset_tokens(self) -> bool:
        """True when at least one active STANDARD wallet is stale."""
        return await self.pending_reset_count() > 0

    async def reset_all_users_tokens(self, trigger: str = "scheduled") -> ResetResult:
        """Reset every stale STANDARD wallet, one transaction per user.

        A failing user is recorded in ``errors`` and does not stop the run.
        """
        boundary = self.current_boundary()
        user_ids = await self.wallets.list_stale_standard_owners(boundary)
        log = logger.bind(trigger=trigger, boundary=boundary.isoformat())
        log.info("billing.daily_reset.started candidates={}", len(user_ids))

        reset_count = 0
        errors: list[ResetFailure] = []
        for user_id in user_ids:
            try:
                _, reset = await self.wallets.reset_standard_wallet(
                    user_id,
                    {"trigger": trigger},
                    stale_before=boundary,
                    trigger=trigger,
                )
            except Exception as exc:  # noqa: BLE001
                daily_reset_failures_total.inc()
                message = exc.message if isinstance(exc, BillingError) else str(exc) or type(exc).__name__
                log.bind(user_id=user_id).exception("billing.daily_reset.user_failed")
                errors.append(ResetFailure(user_id=user_id, error=message))
                continue
            if reset:
                reset_count += 1

        if errors:
            message = f"Reset tokens for {reset_count} users, {len(errors)} failed"
        elif reset_count:
            message = f"Successfully reset tokens for {reset_count} users"
        else:
            message = "No wallets required a reset"
        log.info("billing.daily_reset.finished reset_count={} failures={}", reset_count, len(errors))
        return ResetResult(success=not errors, reset_count=reset_count, message=message, errors=errors)

    async def reset_user_tokens(
        self,
        user_id: str,
        actor_id: str | None = None,
        actor_email: str | None = None,
    ) -> OperationOutcome:
        """Force one user's STANDARD wallet back to the allotment, regardless of staleness."""
        metadata: dict[str, str | bool] = {"forced": True}
        if actor_id:
            metadata["actor_id"] = actor_id
        if actor_email:
            metadata["actor_email"] = actor_email
        try:
            await self.wallets.reset_standard_wallet(user_id, metadata, trigger="manual")
        except BillingError as exc:
            logger.bind(user_id=user_id, code=exc.code).warning("billing.daily_reset.forced_failed")
            return OperationOutcome(success=False, message=exc.message)
        return OperationOutcome(
            success=True,
            message=f"Reset tokens for user {user_id} to {self.settings.daily_allotment}",
        )
