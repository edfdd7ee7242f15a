from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..policy import require_reset_trigger
from ..schemas import DailyResetResponse, DailyResetStatusResponse, ExpiredWalletsResponse, ResetFailureResponse
from .common import SchedulerDep, SettingsDep, WalletsDep, bounded

router = APIRouter()

TriggerDep = Annotated[str, Depends(require_reset_trigger)]


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/metrics")
async def metrics() -> Response:
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@router.get("/system/daily-reset/status", response_model=DailyResetStatusResponse)
async def daily_reset_status(_trigger: TriggerDep, scheduler: SchedulerDep, settings: SettingsDep) -> DailyResetStatusResponse:
    pending = await bounded("pending_reset_count", scheduler.pending_reset_count(), settings)
    return DailyResetStatusResponse(
        should_reset=pending > 0,
        pending_count=pending,
        boundary=scheduler.current_boundary(),
    )


@router.post("/system/daily-reset", response_model=DailyResetResponse)
async def run_daily_reset(trigger: TriggerDep, scheduler: SchedulerDep) -> DailyResetResponse:
    # The bulk run resets user by user and is not bounded by the request timeout
    result = await scheduler.reset_all_users_tokens(trigger=trigger)
    return DailyResetResponse(
        success=result.success,
        reset_count=result.reset_count,
        message=result.message,
        errors=[ResetFailureResponse(user_id=failure.user_id, error=failure.error) for failure in result.errors],
    )


@router.post("/system/wallets/expire", response_model=ExpiredWalletsResponse)
async def expire_wallets(_trigger: TriggerDep, wallets: WalletsDep, settings: SettingsDep) -> ExpiredWalletsResponse:
    count = await bounded("deactivate_expired_wallets", wallets.deactivate_expired_wallets(), settings)
    return ExpiredWalletsResponse(deactivated=count)
