"""Ledger service: the only writer of wallet balances.

Every balance change is a single conditional UPDATE on the wallet row plus
the INSERT of its ledger entry, committed together. The UPDATE carries the
non-negativity check in its WHERE clause, so two debits racing on the same
wallet serialize on the row and the loser sees the winner's balance.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from loguru import logger
from pydantic import TypeAdapter, ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import (
    BillingError,
    InsufficientBalanceError,
    InvalidInputError,
    StorageConflictError,
    WalletAlreadyActiveError,
    WalletNotFoundError,
)
from ..metrics import insufficient_balance_total, tokens_deducted_total, tokens_granted_total
from ..models import DEBIT_PRIORITY, LedgerEntry, TransactionType, Wallet, WalletType
from . import wallet_store
from .common import BillingService

MetadataValue = str | int | float | bool | None
_METADATA_ADAPTER = TypeAdapter(dict[str, MetadataValue])

MAX_PAGE_SIZE = 200


def validate_metadata(metadata: Mapping[str, Any] | None) -> dict[str, MetadataValue] | None:
    """Check that metadata is a flat string-to-primitive mapping."""
    if not metadata:
        return None
    try:
        return _METADATA_ADAPTER.validate_python(dict(metadata), strict=True)
    except ValidationError as exc:
        raise InvalidInputError(f"Invalid ledger metadata: {exc.errors()[0]['msg']}") from exc


def to_amount(value: Decimal | int | str) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidInputError(f"Invalid token amount: {value!r}") from exc
    if not amount.is_finite():
        raise InvalidInputError(f"Invalid token amount: {value!r}")
    if amount != amount.quantize(Decimal("0.01")):
        raise InvalidInputError("Token amounts support at most two decimal places")
    return amount


def _require_user_id(user_id: str) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidInputError("user_id is required")
    return user_id.strip()


@dataclass
class ReconciliationReport:
    wallet_id: int
    balance: Decimal
    ledger_total: Decimal
    entry_count: int

    @property
    def balanced(self) -> bool:
        return self.balance == self.ledger_total


class LedgerService(BillingService):
    """Append-only token ledger with atomic balance adjustment."""

    async def post(
        self,
        session: AsyncSession,
        *,
        user_id: str,
        amount: Decimal,
        type: TransactionType,
        description: str,
        metadata: Mapping[str, Any] | None = None,
        wallet_id: int | None = None,
        expected_balance: Decimal | None = None,
    ) -> LedgerEntry:
        """Adjust the wallet by ``amount`` and append the entry in ``session``'s transaction.

        ``expected_balance`` turns the adjust into a compare-and-swap: the
        update only applies while the balance still equals that value.
        """
        user_id = _require_user_id(user_id)
        amount = to_amount(amount)
        entry_type = TransactionType(type)
        details = validate_metadata(metadata)

        if wallet_id is not None:
            await self._adjust_balance(session, wallet_id, user_id, amount, expected_balance)

        entry = LedgerEntry(
            user_id=user_id,
            wallet_id=wallet_id,
            amount=amount,
            type=entry_type.value,
            description=description or "",
            details=details,
            created_at=self.now(),
        )
        session.add(entry)
        await session.flush()
        return entry

    async def _adjust_balance(
        self,
        session: AsyncSession,
        wallet_id: int,
        user_id: str,
        amount: Decimal,
        expected_balance: Decimal | None,
    ) -> None:
        stmt = (
            update(Wallet)
            .where(
                Wallet.id == wallet_id,
                Wallet.user_id == user_id,
                Wallet.is_active.is_(True),
                Wallet.balance_tokens >= -amount,
            )
            .values(balance_tokens=Wallet.balance_tokens + amount, updated_at=self.now())
            .execution_options(synchronize_session=False)
        )
        if expected_balance is not None:
            stmt = stmt.where(Wallet.balance_tokens == expected_balance)
        result = await session.execute(stmt)
        if result.rowcount == 1:
            return

        # Nothing changed; work out why for the caller
        row = (
            await session.execute(
                select(Wallet.user_id, Wallet.is_active, Wallet.balance_tokens).where(Wallet.id == wallet_id)
            )
        ).one_or_none()
        if row is None or row.user_id != user_id or not row.is_active:
            raise WalletNotFoundError(wallet_id)
        if expected_balance is not None and row.balance_tokens != expected_balance:
            raise StorageConflictError(f"Wallet {wallet_id} changed during the operation")
        raise InsufficientBalanceError(required=-amount, available=row.balance_tokens)

    async def record_transaction(
        self,
        user_id: str,
        amount: Decimal,
        type: TransactionType,
        description: str,
        metadata: Mapping[str, Any] | None = None,
        wallet_id: int | None = None,
    ) -> LedgerEntry:
        """Append one entry and, when ``wallet_id`` is given, move that wallet's balance.

        Raises WalletNotFoundError or InsufficientBalanceError; the wallet is
        left untouched and no entry is written in either case.
        """

        async def work(session: AsyncSession) -> LedgerEntry:
            return await self.post(
                session,
                user_id=user_id,
                amount=amount,
                type=type,
                description=description,
                metadata=metadata,
                wallet_id=wallet_id,
            )

        return await self.run("record_transaction", work)

    async def grant_tokens(
        self,
        user_id: str,
        amount: Decimal,
        type: TransactionType,
        description: str,
        metadata: Mapping[str, Any] | None = None,
        wallet_type: WalletType = WalletType.STANDARD,
    ) -> bool:
        """Credit the user's wallet of ``wallet_type``, creating it when missing.

        Returns False instead of raising on billing failures; callers must
        check the result.
        """
        wallet_type = WalletType(wallet_type)
        try:
            amount = to_amount(amount)
            if amount <= 0:
                raise InvalidInputError("Grant amount must be positive")

            async def work(session: AsyncSession) -> LedgerEntry:
                now = self.now()
                wallet = await wallet_store.find_active_wallet(session, user_id, wallet_type, now)
                if wallet is None:
                    try:
                        wallet = await wallet_store.insert_wallet(
                            session, user_id, wallet_type, now, last_token_reset=now
                        )
                    except WalletAlreadyActiveError as exc:
                        # Another request created it first; retry against that wallet
                        raise StorageConflictError() from exc
                return await self.post(
                    session,
                    user_id=user_id,
                    amount=amount,
                    type=type,
                    description=description,
                    metadata=metadata,
                    wallet_id=wallet.id,
                )

            await self.run_with_retries("grant_tokens", work)
        except BillingError as exc:
            logger.bind(user_id=user_id, code=exc.code).warning("billing.ledger.grant_failed: {}", exc.message)
            return False

        tokens_granted_total.labels(type=TransactionType(type).value, wallet_type=wallet_type.value).inc()
        logger.bind(user_id=user_id, amount=str(amount)).info("billing.ledger.granted")
        return True

    async def deduct_tokens(
        self,
        user_id: str,
        amount: Decimal,
        type: TransactionType,
        description: str,
        metadata: Mapping[str, Any] | None = None,
        wallet_type: WalletType | None = None,
    ) -> bool:
        """Debit ``amount`` from one wallet able to cover it.

        Without ``wallet_type`` the wallets are tried in DEBIT_PRIORITY order.
        Returns False, leaving every balance unchanged and writing no entry,
        when no wallet can cover the amount.
        """
        candidates_types = (WalletType(wallet_type),) if wallet_type else DEBIT_PRIORITY
        allowed = {item.value for item in candidates_types}
        try:
            amount = to_amount(amount)
            if amount <= 0:
                raise InvalidInputError("Deduct amount must be positive")

            async def work(session: AsyncSession) -> tuple[LedgerEntry, str]:
                wallets = [
                    wallet
                    for wallet in await wallet_store.list_active_wallets(session, user_id, self.now())
                    if wallet.wallet_type in allowed
                ]
                for wallet in wallets:
                    if wallet.balance_tokens < amount:
                        continue
                    try:
                        entry = await self.post(
                            session,
                            user_id=user_id,
                            amount=-amount,
                            type=type,
                            description=description,
                            metadata=metadata,
                            wallet_id=wallet.id,
                        )
                    except InsufficientBalanceError:
                        # Drained concurrently since it was listed; the UPDATE changed nothing
                        continue
                    return entry, wallet.wallet_type
                available = max((wallet.balance_tokens for wallet in wallets), default=Decimal("0"))
                raise InsufficientBalanceError(required=amount, available=available)

            entry, debited_type = await self.run_with_retries("deduct_tokens", work)
        except InsufficientBalanceError as exc:
            insufficient_balance_total.labels(type=TransactionType(type).value).inc()
            logger.bind(user_id=user_id).info("billing.ledger.insufficient_balance: {}", exc.message)
            return False
        except BillingError as exc:
            logger.bind(user_id=user_id, code=exc.code).warning("billing.ledger.deduct_failed: {}", exc.message)
            return False

        tokens_deducted_total.labels(type=TransactionType(type).value, wallet_type=debited_type).inc()
        logger.bind(user_id=user_id, amount=str(amount), wallet_id=entry.wallet_id).info("billing.ledger.deducted")
        return True

    async def get_transaction_history(self, user_id: str, limit: int = 50, offset: int = 0) -> list[LedgerEntry]:
        """Entries of a user, newest first."""
        user_id = _require_user_id(user_id)
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise InvalidInputError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise InvalidInputError("offset must be non-negative")

        async def work(session: AsyncSession) -> list[LedgerEntry]:
            stmt = (
                select(LedgerEntry)
                .where(LedgerEntry.user_id == user_id)
                .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(await session.scalars(stmt))

        return await self.run("get_transaction_history", work)

    async def get_wallet_history(self, wallet_id: int) -> list[LedgerEntry]:
        """Entries of one wallet in replay order (oldest first)."""

        async def work(session: AsyncSession) -> list[LedgerEntry]:
            stmt = (
                select(LedgerEntry)
                .where(LedgerEntry.wallet_id == wallet_id)
                .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
            )
            return list(await session.scalars(stmt))

        return await self.run("get_wallet_history", work)

    async def reconcile(self, wallet_id: int) -> ReconciliationReport:
        """Compare a wallet's balance with the sum of its ledger entries."""

        async def work(session: AsyncSession) -> ReconciliationReport:
            wallet = await wallet_store.get_wallet(session, wallet_id)
            if wallet is None:
                raise WalletNotFoundError(wallet_id)
            total, count = (
                await session.execute(
                    select(func.sum(LedgerEntry.amount), func.count(LedgerEntry.id)).where(
                        LedgerEntry.wallet_id == wallet_id
                    )
                )
            ).one()
            return ReconciliationReport(
                wallet_id=wallet_id,
                balance=Decimal(str(wallet.balance_tokens)),
                ledger_total=total if total is not None else Decimal("0.00"),
                entry_count=int(count),
            )

        return await self.run("reconcile", work)

