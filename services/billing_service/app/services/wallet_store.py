"""Row-level access to the wallet table.

These helpers run inside a caller's transaction. They never change a balance:
balances move only through :meth:`LedgerService.post`.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import WalletAlreadyActiveError
from ..models import DEBIT_PRIORITY, Wallet, WalletType
from ..time_utils import as_utc

_PRIORITY_INDEX = {wallet_type.value: index for index, wallet_type in enumerate(DEBIT_PRIORITY)}


def is_expired(wallet: Wallet, now: datetime) -> bool:
    expires_at = as_utc(wallet.expires_at)
    return expires_at is not None and expires_at <= now


def priority_key(wallet: Wallet) -> tuple[int, datetime]:
    return _PRIORITY_INDEX.get(wallet.wallet_type, len(_PRIORITY_INDEX)), as_utc(wallet.created_at)


async def get_wallet(session: AsyncSession, wallet_id: int, *, lock: bool = False) -> Wallet | None:
    stmt = select(Wallet).where(Wallet.id == wallet_id).execution_options(populate_existing=True)
    if lock:
        stmt = stmt.with_for_update()
    return await session.scalar(stmt)


async def find_active_wallet(
    session: AsyncSession,
    user_id: str,
    wallet_type: WalletType,
    now: datetime,
    *,
    lock: bool = False,
) -> Wallet | None:
    """Return the user's active wallet of ``wallet_type``.

    An active wallet found past its expiry is deactivated on the spot and
    treated as absent.
    """
    stmt = (
        select(Wallet)
        .where(
            Wallet.user_id == user_id,
            Wallet.wallet_type == wallet_type.value,
            Wallet.is_active.is_(True),
        )
        .execution_options(populate_existing=True)
    )
    if lock:
        stmt = stmt.with_for_update()
    wallet = await session.scalar(stmt)
    if wallet is None:
        return None
    if is_expired(wallet, now):
        wallet.is_active = False
        await session.flush()
        return None
    return wallet


async def list_active_wallets(session: AsyncSession, user_id: str, now: datetime) -> list[Wallet]:
    """Active, non-expired wallets of a user in debit priority order."""
    stmt = select(Wallet).where(
        Wallet.user_id == user_id,
        Wallet.is_active.is_(True),
        or_(Wallet.expires_at.is_(None), Wallet.expires_at > now),
    )
    wallets = list(await session.scalars(stmt.execution_options(populate_existing=True)))
    return sorted(wallets, key=priority_key)


async def insert_wallet(
    session: AsyncSession,
    user_id: str,
    wallet_type: WalletType,
    now: datetime,
    *,
    expires_at: datetime | None = None,
    last_token_reset: datetime | None = None,
) -> Wallet:
    """Insert an empty wallet; any opening balance is posted through the ledger."""
    wallet = Wallet(
        user_id=user_id,
        wallet_type=wallet_type.value,
        is_active=True,
        expires_at=expires_at,
        last_token_reset=last_token_reset,
        created_at=now,
        updated_at=now,
        balance_tokens=Decimal("0"),
    )
    session.add(wallet)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise WalletAlreadyActiveError(user_id, wallet_type.value) from exc
    return wallet
