from __future__ import annotations

from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from ..dependencies import Principal
from ..models import TransactionType
from ..policy import require_admin
from ..schemas import (
    AdjustBalanceRequest,
    AdminUserOverview,
    AdminUsersResponse,
    AdminUsersStats,
    LedgerEntryResponse,
    OperationResult,
    PurchaseCreditRequest,
    ReconciliationResponse,
    ResetUserRequest,
    TokenSummaryResponse,
    WalletCreateRequest,
    WalletResponse,
)
from .common import GuardDep, LedgerDep, SchedulerDep, SettingsDep, WalletsDep, bounded
from .tokens import summary_response

router = APIRouter()

AdminDep = Annotated[Principal, Depends(require_admin)]

RECENT_TRANSACTIONS = 5


def _actor_metadata(admin: Principal) -> dict[str, str]:
    metadata = {"actor_id": admin.user_id}
    if admin.email:
        metadata["actor_email"] = admin.email
    return metadata


@router.get("/users/{user_id}/balance", response_model=TokenSummaryResponse)
async def get_user_balance(user_id: str, _admin: AdminDep, wallets: WalletsDep, settings: SettingsDep) -> TokenSummaryResponse:
    summary = await bounded("get_user_token_summary", wallets.get_user_token_summary(user_id), settings)
    return summary_response(summary)


@router.get("/users/{user_id}/transactions", response_model=list[LedgerEntryResponse])
async def get_user_transactions(
    user_id: str,
    _admin: AdminDep,
    ledger: LedgerDep,
    settings: SettingsDep,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> list[LedgerEntryResponse]:
    entries = await bounded("get_transaction_history", ledger.get_transaction_history(user_id, limit, offset), settings)
    return [LedgerEntryResponse.from_entry(entry) for entry in entries]


@router.post("/tokens/adjust", response_model=OperationResult)
async def adjust_balance(
    payload: AdjustBalanceRequest, admin: AdminDep, ledger: LedgerDep, settings: SettingsDep
) -> OperationResult:
    """Grant (positive amount) or deduct (negative amount) tokens as an ADMIN_ADJUSTMENT."""
    actor = admin.email or admin.user_id
    description = payload.description or f"Admin adjustment by {actor}: {payload.amount:+}"
    metadata = _actor_metadata(admin)
    if payload.amount > 0:
        ok = await bounded(
            "grant_tokens",
            ledger.grant_tokens(payload.user_id, payload.amount, TransactionType.ADMIN_ADJUSTMENT, description, metadata),
            settings,
        )
        verb = "Added"
    else:
        ok = await bounded(
            "deduct_tokens",
            ledger.deduct_tokens(payload.user_id, -payload.amount, TransactionType.ADMIN_ADJUSTMENT, description, metadata),
            settings,
        )
        verb = "Deducted"
    if not ok:
        return OperationResult(success=False, message=f"Failed to adjust tokens for user {payload.user_id}")
    return OperationResult(success=True, message=f"{verb} {abs(payload.amount)} tokens for user {payload.user_id}")


@router.post("/tokens/reset", response_model=OperationResult)
async def reset_user_tokens(
    payload: ResetUserRequest, admin: AdminDep, scheduler: SchedulerDep, settings: SettingsDep
) -> OperationResult:
    outcome = await bounded(
        "reset_user_tokens",
        scheduler.reset_user_tokens(payload.user_id, actor_id=admin.user_id, actor_email=admin.email),
        settings,
    )
    return OperationResult(success=outcome.success, message=outcome.message)


@router.post("/wallets", response_model=WalletResponse, status_code=status.HTTP_201_CREATED)
async def create_wallet(
    payload: WalletCreateRequest, _admin: AdminDep, wallets: WalletsDep, settings: SettingsDep
) -> WalletResponse:
    wallet = await bounded(
        "create_wallet",
        wallets.create_wallet(payload.user_id, payload.wallet_type, payload.initial_tokens, payload.expires_at),
        settings,
    )
    return WalletResponse.from_wallet(wallet)


@router.post("/wallets/{wallet_id}/deactivate", response_model=OperationResult)
async def deactivate_wallet(wallet_id: int, _admin: AdminDep, wallets: WalletsDep, settings: SettingsDep) -> OperationResult:
    changed = await bounded("deactivate_wallet", wallets.deactivate_wallet(wallet_id), settings)
    if not changed:
        return OperationResult(success=False, message=f"Wallet {wallet_id} is already inactive")
    return OperationResult(success=True, message=f"Wallet {wallet_id} deactivated")


@router.get("/wallets/{wallet_id}/reconciliation", response_model=ReconciliationResponse)
async def reconcile_wallet(wallet_id: int, _admin: AdminDep, ledger: LedgerDep, settings: SettingsDep) -> ReconciliationResponse:
    report = await bounded("reconcile", ledger.reconcile(wallet_id), settings)
    return ReconciliationResponse(
        wallet_id=report.wallet_id,
        balance=report.balance,
        ledger_total=report.ledger_total,
        entry_count=report.entry_count,
        balanced=report.balanced,
    )


@router.post("/tokens/purchases", response_model=OperationResult)
async def credit_purchase(
    payload: PurchaseCreditRequest, _admin: AdminDep, guard: GuardDep, settings: SettingsDep
) -> OperationResult:
    package = await bounded(
        "credit_package_purchase",
        guard.credit_package_purchase(payload.user_id, payload.package_id, payload.payment_reference),
        settings,
    )
    return OperationResult(
        success=True,
        message=f"Credited {package.total_tokens} tokens ({package.name}) to user {payload.user_id}",
    )


@router.get("/tokens/users", response_model=AdminUsersResponse)
async def list_users(
    _admin: AdminDep,
    wallets: WalletsDep,
    ledger: LedgerDep,
    settings: SettingsDep,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> AdminUsersResponse:
    """Token overview of wallet owners; stats cover the returned page."""
    user_ids = await bounded("list_wallet_owners", wallets.list_wallet_owners(limit, offset), settings)
    total_users = await bounded("count_wallet_owners", wallets.count_wallet_owners(), settings)

    users: list[AdminUserOverview] = []
    for user_id in user_ids:
        summary = await bounded("get_user_token_summary", wallets.get_user_token_summary(user_id), settings)
        recent = await bounded(
            "get_transaction_history", ledger.get_transaction_history(user_id, RECENT_TRANSACTIONS), settings
        )
        users.append(
            AdminUserOverview(
                user_id=user_id,
                balance=summary.total_balance,
                can_create_project=summary.can_create_project,
                wallets=[WalletResponse.from_wallet(wallet) for wallet in summary.wallets],
                recent_transactions=[LedgerEntryResponse.from_entry(entry) for entry in recent],
            )
        )

    total_tokens = sum((user.balance for user in users), Decimal("0"))
    average = (total_tokens / len(users)).quantize(Decimal("0.01")) if users else Decimal("0.00")
    stats = AdminUsersStats(
        total_users=total_users,
        total_tokens=total_tokens,
        average_tokens_per_user=average,
        users_with_zero_tokens=sum(1 for user in users if user.balance == 0),
    )
    return AdminUsersResponse(users=users, stats=stats)
