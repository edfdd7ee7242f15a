"""Wallet lifecycle: creation, summaries, the daily reset and deactivation."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from loguru import logger
from sqlalchemy import distinct, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import InvalidInputError, StorageConflictError, WalletAlreadyActiveError, WalletNotFoundError
from ..metrics import daily_reset_total
from ..models import TransactionType, Wallet, WalletType
from ..pricing import get_project_creation_cost
from ..settings import BillingSettings
from ..time_utils import as_utc, reset_boundary, utc_now
from . import wallet_store
from .common import BillingService
from .ledger import LedgerService, to_amount, validate_metadata


@dataclass
class TokenSummary:
    user_id: str
    total_balance: Decimal
    required_tokens: Decimal
    wallets: list[Wallet] = field(default_factory=list)

    @property
    def can_create_project(self) -> bool:
        return self.total_balance >= self.required_tokens


class WalletService(BillingService):
    """Orchestrates wallet lifecycle; every balance change goes through the ledger."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: LedgerService | None = None,
        settings: BillingSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(session_factory, settings=settings, clock=clock)
        self.ledger = ledger or LedgerService(session_factory, settings=self.settings, clock=clock)

    async def create_wallet(
        self,
        user_id: str,
        wallet_type: WalletType = WalletType.STANDARD,
        initial_tokens: Decimal | None = None,
        expires_at: datetime | None = None,
    ) -> Wallet:
        """Open a wallet, posting the opening balance as WALLET_INITIALIZATION.

        Raises WalletAlreadyActiveError when the user already has an active
        wallet of this type; the existing wallet is left untouched.
        """
        wallet_type = WalletType(wallet_type)
        initial = self.settings.default_wallet_tokens if initial_tokens is None else to_amount(initial_tokens)
        if initial < 0:
            raise InvalidInputError("initial_tokens must be non-negative")
        if expires_at is not None and as_utc(expires_at) <= self.now():
            raise InvalidInputError("expires_at must be in the future")

        async def work(session: AsyncSession) -> Wallet:
            now = self.now()
            existing = await wallet_store.find_active_wallet(session, user_id, wallet_type, now, lock=True)
            if existing is not None:
                raise WalletAlreadyActiveError(user_id, wallet_type.value)
            wallet = await wallet_store.insert_wallet(
                session,
                user_id,
                wallet_type,
                now,
                expires_at=as_utc(expires_at),
                last_token_reset=now,
            )
            if initial > 0:
                await self.ledger.post(
                    session,
                    user_id=user_id,
                    amount=initial,
                    type=TransactionType.WALLET_INITIALIZATION,
                    description=f"Initial {wallet_type.value} wallet balance",
                    metadata={"wallet_type": wallet_type.value},
                    wallet_id=wallet.id,
                )
            await session.refresh(wallet)
            return wallet

        wallet = await self.run("create_wallet", work)
        logger.bind(user_id=user_id, wallet_id=wallet.id, wallet_type=wallet_type.value).info("billing.wallet.created")
        return wallet

    async def get_user_wallets(self, user_id: str) -> list[Wallet]:
        """Active, non-expired wallets in debit priority order."""

        async def work(session: AsyncSession) -> list[Wallet]:
            return await wallet_store.list_active_wallets(session, user_id, self.now())

        return await self.run("get_user_wallets", work)

    async def get_wallet_by_type(self, user_id: str, wallet_type: WalletType) -> Wallet | None:
        wallet_type = WalletType(wallet_type)

        async def work(session: AsyncSession) -> Wallet | None:
            return await wallet_store.find_active_wallet(session, user_id, wallet_type, self.now())

        return await self.run("get_wallet_by_type", work)

    async def get_user_token_summary(self, user_id: str) -> TokenSummary:
        # A user without wallets simply has a zero balance
        wallets = await self.get_user_wallets(user_id)
        total = sum((Decimal(str(wallet.balance_tokens)) for wallet in wallets), Decimal("0"))
        return TokenSummary(
            user_id=user_id,
            total_balance=total.quantize(Decimal("0.01")),
            required_tokens=get_project_creation_cost(),
            wallets=wallets,
        )

    async def can_afford(self, user_id: str, amount: Decimal) -> bool:
        summary = await self.get_user_token_summary(user_id)
        return summary.total_balance >= to_amount(amount)

    async def reset_daily_tokens(
        self,
        user_id: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> Wallet:
        """Set the STANDARD wallet to the daily allotment, creating it when missing."""
        wallet, _ = await self.reset_standard_wallet(user_id, metadata)
        return wallet

    async def check_and_reset_daily_tokens(self, user_id: str, boundary: datetime | None = None) -> bool:
        """Reset the STANDARD wallet only when it was last reset before the current boundary."""
        if boundary is None:
            boundary = reset_boundary(self.now(), self.settings.reset_timezone)
        _, reset = await self.reset_standard_wallet(user_id, stale_before=boundary, trigger="lazy")
        return reset

    async def reset_standard_wallet(
        self,
        user_id: str,
        metadata: Mapping[str, Any] | None = None,
        *,
        stale_before: datetime | None = None,
        trigger: str = "manual",
    ) -> tuple[Wallet, bool]:
        """Reset under a row lock and report whether a reset happened.

        With ``stale_before`` the staleness check runs inside the same
        transaction as the reset, so concurrent callers reset at most once
        per period. The balance change is posted as a DAILY_RESET delta
        guarded by compare-and-swap on the balance read under the lock.
        """
        extra = validate_metadata(metadata) or {}
        allotment = self.settings.daily_allotment

        async def work(session: AsyncSession) -> tuple[Wallet, bool]:
            now = self.now()
            wallet = await wallet_store.find_active_wallet(session, user_id, WalletType.STANDARD, now, lock=True)
            if wallet is None:
                try:
                    wallet = await wallet_store.insert_wallet(session, user_id, WalletType.STANDARD, now)
                except WalletAlreadyActiveError as exc:
                    raise StorageConflictError() from exc
            elif stale_before is not None:
                last_reset = as_utc(wallet.last_token_reset)
                if last_reset is not None and last_reset >= stale_before:
                    return wallet, False

            previous = Decimal(str(wallet.balance_tokens))
            await self.ledger.post(
                session,
                user_id=user_id,
                amount=allotment - previous,
                type=TransactionType.DAILY_RESET,
                description="Daily token reset",
                metadata={
                    **extra,
                    "reset_date": now.date().isoformat(),
                    "wallet_type": WalletType.STANDARD.value,
                    "previous_balance": str(previous),
                },
                wallet_id=wallet.id,
                expected_balance=previous,
            )
            wallet.last_token_reset = now
            wallet.updated_at = now
            await session.flush()
            await session.refresh(wallet)
            return wallet, True

        wallet, reset = await self.run_with_retries("reset_daily_tokens", work)
        if reset:
            daily_reset_total.labels(trigger=trigger).inc()
            logger.bind(user_id=user_id, wallet_id=wallet.id, trigger=trigger).info("billing.wallet.daily_reset")
        return wallet, reset

    async def deactivate_wallet(self, wallet_id: int) -> bool:
        """Soft-deactivate a wallet, keeping its balance for audit.

        Returns False when the wallet was already inactive.
        """

        async def work(session: AsyncSession) -> bool:
            wallet = await wallet_store.get_wallet(session, wallet_id, lock=True)
            if wallet is None:
                raise WalletNotFoundError(wallet_id)
            if not wallet.is_active:
                return False
            wallet.is_active = False
            wallet.updated_at = self.now()
            await session.flush()
            return True

        changed = await self.run("deactivate_wallet", work)
        if changed:
            logger.bind(wallet_id=wallet_id).info("billing.wallet.deactivated")
        return changed

    async def deactivate_expired_wallets(self) -> int:
        async def work(session: AsyncSession) -> int:
            now = self.now()
            result = await session.execute(
                update(Wallet)
                .where(Wallet.is_active.is_(True), Wallet.expires_at.is_not(None), Wallet.expires_at <= now)
                .values(is_active=False, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

        count = await self.run("deactivate_expired_wallets", work)
        logger.bind(count=count).info("billing.wallet.expired_deactivated")
        return count

    async def initialize_user_wallets(self, user_id: str) -> Wallet:
        """Registration hook: make sure the user has a STANDARD wallet.

        Idempotent; an existing active STANDARD wallet is returned as is.
        """
        existing = await self.get_wallet_by_type(user_id, WalletType.STANDARD)
        if existing is not None:
            return existing
        try:
            return await self.create_wallet(user_id, WalletType.STANDARD, self.settings.daily_allotment)
        except WalletAlreadyActiveError:
            wallet = await self.get_wallet_by_type(user_id, WalletType.STANDARD)
            if wallet is None:
                raise
            return wallet

    async def list_wallet_owners(self, limit: int = 50, offset: int = 0) -> list[str]:
        """Distinct user ids owning at least one active wallet."""
        if limit < 1 or limit > 200:
            raise InvalidInputError("limit must be between 1 and 200")
        if offset < 0:
            raise InvalidInputError("offset must be non-negative")

        async def work(session: AsyncSession) -> list[str]:
            stmt = (
                select(distinct(Wallet.user_id))
                .where(Wallet.is_active.is_(True))
                .order_by(Wallet.user_id)
                .limit(limit)
                .offset(offset)
            )
            return list(await session.scalars(stmt))

        return await self.run("list_wallet_owners", work)

    async def count_wallet_owners(self) -> int:
        async def work(session: AsyncSession) -> int:
            stmt = select(func.count(distinct(Wallet.user_id))).where(Wallet.is_active.is_(True))
            return int(await session.scalar(stmt) or 0)

        return await self.run("count_wallet_owners", work)

    async def list_stale_standard_owners(self, boundary: datetime) -> list[str]:
        """Users whose active STANDARD wallet was last reset before ``boundary``."""

        async def work(session: AsyncSession) -> list[str]:
            stmt = (
                select(Wallet.user_id)
                .where(
                    Wallet.wallet_type == WalletType.STANDARD.value,
                    Wallet.is_active.is_(True),
                    or_(Wallet.last_token_reset.is_(None), Wallet.last_token_reset < boundary),
                )
                .order_by(Wallet.user_id)
            )
            return list(await session.scalars(stmt))

        return await self.run("list_stale_standard_owners", work)
