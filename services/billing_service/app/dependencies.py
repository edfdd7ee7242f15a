from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from fastapi import Depends, Request
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .errors import UnauthenticatedError
from .services import DailyResetScheduler, LedgerService, TokenGuard, WalletService
from .settings import BillingSettings, billing_settings
from .time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as asserted by the web app's session token."""

    user_id: str
    email: str | None = None
    roles: frozenset[str] = field(default_factory=frozenset)


def get_settings() -> BillingSettings:
    return billing_settings()


def get_clock() -> Callable[[], datetime]:
    return utc_now


def _bearer_token(request: Request) -> str | None:
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def decode_principal(token: str, settings: BillingSettings) -> Principal:
    """Validate an HS256 session token and build the caller's principal.

    The subject is the user id, kept as an opaque string. ``email`` and
    ``roles`` are optional claims.
    """
    try:
        decoded = jwt.decode(
            token,
            settings.secret_key,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except JWTError as exc:
        logger.warning("billing.auth.jwt_decode_failed", extra={"error": str(exc)})
        raise UnauthenticatedError("Invalid token") from exc

    sub = decoded.get("sub")
    if sub is None or not str(sub).strip():
        logger.info("billing.auth.missing_subject")
        raise UnauthenticatedError("Missing subject")

    roles = decoded.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return Principal(user_id=str(sub).strip(), email=decoded.get("email"), roles=frozenset(roles))


def get_current_principal(request: Request, settings: BillingSettings = Depends(get_settings)) -> Principal:
    token = _bearer_token(request)
    if token is None:
        raise UnauthenticatedError("Missing bearer token")
    return decode_principal(token, settings)


def get_optional_principal(request: Request, settings: BillingSettings = Depends(get_settings)) -> Principal | None:
    """Like get_current_principal, but anonymous callers get None instead of a 401."""
    token = _bearer_token(request)
    if token is None:
        return None
    return decode_principal(token, settings)


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


def get_ledger_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: BillingSettings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> LedgerService:
    return LedgerService(session_factory, settings=settings, clock=clock)


def get_wallet_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ledger: LedgerService = Depends(get_ledger_service),
    settings: BillingSettings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> WalletService:
    return WalletService(session_factory, ledger=ledger, settings=settings, clock=clock)


def get_reset_scheduler(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    wallets: WalletService = Depends(get_wallet_service),
    settings: BillingSettings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> DailyResetScheduler:
    return DailyResetScheduler(session_factory, wallets=wallets, settings=settings, clock=clock)


def get_token_guard(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    wallets: WalletService = Depends(get_wallet_service),
    scheduler: DailyResetScheduler = Depends(get_reset_scheduler),
    settings: BillingSettings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> TokenGuard:
    return TokenGuard(session_factory, wallets=wallets, scheduler=scheduler, settings=settings, clock=clock)
