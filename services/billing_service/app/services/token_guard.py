"""Gatekeeper for billable actions such as project creation."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import InvalidInputError, StorageConflictError
from ..models import TransactionType, WalletType
from ..pricing import TokenPackage, get_package, get_project_creation_cost
from ..settings import BillingSettings
from ..time_utils import as_utc, utc_now
from .common import BillingService
from .daily_reset import DailyResetScheduler
from .ledger import LedgerService
from .wallets import TokenSummary, WalletService


@dataclass
class TokenInfo:
    balance: Decimal
    can_create_project: bool
    required_tokens: Decimal
    last_reset: datetime | None
    next_reset: datetime


class TokenGuard(BillingService):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        wallets: WalletService | None = None,
        scheduler: DailyResetScheduler | None = None,
        settings: BillingSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(session_factory, settings=settings, clock=clock)
        self.wallets = wallets or WalletService(session_factory, settings=self.settings, clock=clock)
        self.scheduler = scheduler or DailyResetScheduler(
            session_factory, wallets=self.wallets, settings=self.settings, clock=clock
        )

    @property
    def ledger(self) -> LedgerService:
        return self.wallets.ledger

    async def _refreshed_summary(self, user_id: str) -> TokenSummary:
        # Users who were offline at midnight get their allotment on first use
        await self.wallets.check_and_reset_daily_tokens(user_id, self.scheduler.current_boundary())
        return await self.wallets.get_user_token_summary(user_id)

    async def can_create_project(self, user_id: str) -> bool:
        summary = await self._refreshed_summary(user_id)
        return summary.can_create_project

    async def deduct_project_creation_tokens(self, user_id: str, project_id: str) -> bool:
        if not project_id:
            raise InvalidInputError("project_id is required")
        return await self.ledger.deduct_tokens(
            user_id,
            get_project_creation_cost(),
            TransactionType.PROJECT_CREATION_DEBIT,
            f"Project creation: {project_id}",
            metadata={"project_id": project_id},
        )

    async def refund_project_creation_tokens(self, user_id: str, project_id: str, reason: str = "") -> bool:
        """Give back the project creation charge, e.g. when the build failed."""
        if not project_id:
            raise InvalidInputError("project_id is required")
        description = f"Refund for project: {project_id}"
        if reason:
            description = f"{description} ({reason})"
        return await self.ledger.grant_tokens(
            user_id,
            get_project_creation_cost(),
            TransactionType.REFUND,
            description,
            metadata={"project_id": project_id, "reason": reason},
        )

    async def get_token_info(self, user_id: str) -> TokenInfo:
        summary = await self._refreshed_summary(user_id)
        standard = next((w for w in summary.wallets if w.wallet_type == WalletType.STANDARD.value), None)
        next_reset = self.scheduler.current_boundary(self.now() + timedelta(days=1))
        return TokenInfo(
            balance=summary.total_balance,
            can_create_project=summary.can_create_project,
            required_tokens=summary.required_tokens,
            last_reset=as_utc(standard.last_token_reset) if standard else None,
            next_reset=next_reset,
        )

    async def credit_package_purchase(self, user_id: str, package_id: str, payment_reference: str) -> TokenPackage:
        """Credit a paid package (bonus included) to the PREMIUM wallet.

        Call only once the external checkout confirmed the payment.
        """
        package = get_package(package_id)
        if package is None:
            raise InvalidInputError(f"Unknown token package: {package_id}")
        if not payment_reference:
            raise InvalidInputError("payment_reference is required")
        granted = await self.ledger.grant_tokens(
            user_id,
            Decimal(package.total_tokens),
            TransactionType.TOKEN_PURCHASE,
            f"Purchased {package.name}",
            metadata={
                "package_id": package.id,
                "payment_reference": payment_reference,
                "bonus_tokens": package.bonus_tokens,
            },
            wallet_type=WalletType.PREMIUM,
        )
        if not granted:
            raise StorageConflictError(f"Could not credit package {package.id}, retry the purchase credit")
        logger.bind(user_id=user_id, package_id=package.id).info("billing.guard.package_credited")
        return package
