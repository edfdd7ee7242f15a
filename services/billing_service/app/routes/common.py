from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Annotated, TypeVar

from fastapi import Depends
from loguru import logger

from ..dependencies import (
    Principal,
    get_current_principal,
    get_ledger_service,
    get_reset_scheduler,
    get_settings,
    get_token_guard,
    get_wallet_service,
)
from ..errors import OutcomeUnknownError
from ..services import DailyResetScheduler, LedgerService, TokenGuard, WalletService
from ..settings import BillingSettings

T = TypeVar("T")

SettingsDep = Annotated[BillingSettings, Depends(get_settings)]
PrincipalDep = Annotated[Principal, Depends(get_current_principal)]
LedgerDep = Annotated[LedgerService, Depends(get_ledger_service)]
WalletsDep = Annotated[WalletService, Depends(get_wallet_service)]
SchedulerDep = Annotated[DailyResetScheduler, Depends(get_reset_scheduler)]
GuardDep = Annotated[TokenGuard, Depends(get_token_guard)]


async def bounded(operation: str, awaitable: Awaitable[T], settings: BillingSettings) -> T:
    """Await a billing call under the request timeout.

    On timeout the caller cannot know whether the change committed, so it is
    told to re-read the balance instead of blindly retrying.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=settings.operation_timeout_seconds)
    except asyncio.TimeoutError as exc:
        logger.bind(operation=operation).warning("billing.request.timeout")
        raise OutcomeUnknownError(operation) from exc
