from __future__ import annotations

from fastapi import APIRouter, Query, status

from ..errors import InsufficientBalanceError
from ..pricing import TOKEN_PACKAGES, get_best_value_package, get_project_creation_cost
from ..schemas import (
    LedgerEntryResponse,
    OperationResult,
    PackageResponse,
    ProjectChargeRequest,
    RefundRequest,
    TokenInfoResponse,
    TokenSummaryResponse,
    WalletResponse,
)
from ..services import TokenSummary
from .common import GuardDep, LedgerDep, PrincipalDep, SettingsDep, WalletsDep, bounded

router = APIRouter()


def summary_response(summary: TokenSummary) -> TokenSummaryResponse:
    return TokenSummaryResponse(
        balance=summary.total_balance,
        can_create_project=summary.can_create_project,
        required_tokens=summary.required_tokens,
        wallets=[WalletResponse.from_wallet(wallet) for wallet in summary.wallets],
    )


@router.get("/balance", response_model=TokenSummaryResponse)
async def get_balance(
    principal: PrincipalDep, wallets: WalletsDep, settings: SettingsDep
) -> TokenSummaryResponse:
    await bounded("check_and_reset_daily_tokens", wallets.check_and_reset_daily_tokens(principal.user_id), settings)
    summary = await bounded("get_user_token_summary", wallets.get_user_token_summary(principal.user_id), settings)
    return summary_response(summary)


@router.get("/transactions", response_model=list[LedgerEntryResponse])
async def list_transactions(
    principal: PrincipalDep,
    ledger: LedgerDep,
    settings: SettingsDep,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> list[LedgerEntryResponse]:
    entries = await bounded(
        "get_transaction_history", ledger.get_transaction_history(principal.user_id, limit, offset), settings
    )
    return [LedgerEntryResponse.from_entry(entry) for entry in entries]


@router.get("/guard/project-creation", response_model=TokenInfoResponse)
async def project_creation_info(principal: PrincipalDep, guard: GuardDep, settings: SettingsDep) -> TokenInfoResponse:
    info = await bounded("get_token_info", guard.get_token_info(principal.user_id), settings)
    return TokenInfoResponse(
        balance=info.balance,
        can_create_project=info.can_create_project,
        required_tokens=info.required_tokens,
        last_reset=info.last_reset,
        next_reset=info.next_reset,
    )


@router.post("/project-creation", response_model=OperationResult)
async def charge_project_creation(
    payload: ProjectChargeRequest, principal: PrincipalDep, guard: GuardDep, settings: SettingsDep
) -> OperationResult:
    charged = await bounded(
        "deduct_project_creation_tokens",
        guard.deduct_project_creation_tokens(principal.user_id, payload.project_id),
        settings,
    )
    if not charged:
        raise InsufficientBalanceError(required=get_project_creation_cost())
    return OperationResult(success=True, message=f"Charged {get_project_creation_cost()} tokens for project creation")


@router.post("/project-creation/refund", response_model=OperationResult)
async def refund_project_creation(
    payload: RefundRequest, principal: PrincipalDep, guard: GuardDep, settings: SettingsDep
) -> OperationResult:
    refunded = await bounded(
        "refund_project_creation_tokens",
        guard.refund_project_creation_tokens(principal.user_id, payload.project_id, payload.reason),
        settings,
    )
    if not refunded:
        return OperationResult(success=False, message="Failed to refund project creation tokens")
    return OperationResult(success=True, message=f"Refunded {get_project_creation_cost()} tokens")


@router.get("/packages", response_model=list[PackageResponse], status_code=status.HTTP_200_OK)
async def list_packages() -> list[PackageResponse]:
    best = get_best_value_package()
    return [PackageResponse.from_package(package, best_value_id=best.id) for package in TOKEN_PACKAGES]
