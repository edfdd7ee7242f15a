from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..models import LedgerEntry, TransactionType, Wallet, WalletType
from ..pricing import TokenPackage, get_price_per_token
from ..time_utils import as_utc


class WalletResponse(BaseModel):
    id: int
    user_id: str
    wallet_type: WalletType
    balance_tokens: Decimal
    is_active: bool
    last_token_reset: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_wallet(cls, wallet: Wallet) -> "WalletResponse":
        return cls(
            id=wallet.id,
            user_id=wallet.user_id,
            wallet_type=WalletType(wallet.wallet_type),
            balance_tokens=wallet.balance_tokens,
            is_active=wallet.is_active,
            last_token_reset=as_utc(wallet.last_token_reset),
            expires_at=as_utc(wallet.expires_at),
            created_at=as_utc(wallet.created_at),
        )


class LedgerEntryResponse(BaseModel):
    """A ledger row as seen by clients.

    Built field by field: the ORM keeps the JSON column under ``details``
    because ``metadata`` is taken on declarative models.
    """

    id: int
    user_id: str
    wallet_id: int | None = None
    amount: Decimal
    type: TransactionType
    description: str
    metadata: dict[str, Any] | None = None
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> "LedgerEntryResponse":
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            wallet_id=entry.wallet_id,
            amount=entry.amount,
            type=TransactionType(entry.type),
            description=entry.description,
            metadata=entry.details,
            created_at=as_utc(entry.created_at),
        )


class TokenSummaryResponse(BaseModel):
    balance: Decimal
    can_create_project: bool
    required_tokens: Decimal
    wallets: list[WalletResponse]


class OperationResult(BaseModel):
    success: bool
    message: str


class AdjustBalanceRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    amount: Decimal = Field(..., max_digits=18, decimal_places=2)
    description: str | None = Field(None, max_length=500)

    @field_validator("amount")
    @classmethod
    def _non_zero(cls, value: Decimal) -> Decimal:
        if value == 0:
            raise ValueError("amount must not be zero")
        return value


class ResetUserRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)


class WalletCreateRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    wallet_type: WalletType = WalletType.STANDARD
    initial_tokens: Decimal | None = Field(None, ge=0, max_digits=18, decimal_places=2)
    expires_at: datetime | None = None


class DailyResetStatusResponse(BaseModel):
    should_reset: bool
    pending_count: int
    boundary: datetime


class ResetFailureResponse(BaseModel):
    user_id: str
    error: str


class DailyResetResponse(BaseModel):
    success: bool
    reset_count: int
    message: str
    errors: list[ResetFailureResponse] = Field(default_factory=list)


class TokenInfoResponse(BaseModel):
    balance: Decimal
    can_create_project: bool
    required_tokens: Decimal
    last_reset: datetime | None = None
    next_reset: datetime


class ProjectChargeRequest(BaseModel):
    project_id: str = Field(..., min_length=1, max_length=128)


class RefundRequest(BaseModel):
    project_id: str = Field(..., min_length=1, max_length=128)
    reason: str = Field("", max_length=500)


class PackageResponse(BaseModel):
    id: str
    name: str
    tokens: int
    bonus_tokens: int
    total_tokens: int
    price_thb: Decimal
    price_usd: Decimal
    price_per_token_thb: Decimal
    popular: bool
    best_value: bool = False

    @classmethod
    def from_package(cls, package: TokenPackage, best_value_id: str | None = None) -> "PackageResponse":
        return cls(
            id=package.id,
            name=package.name,
            tokens=package.tokens,
            bonus_tokens=package.bonus_tokens,
            total_tokens=package.total_tokens,
            price_thb=package.price_thb,
            price_usd=package.price_usd,
            price_per_token_thb=get_price_per_token(package, "THB"),
            popular=package.popular,
            best_value=package.id == best_value_id,
        )


class PurchaseCreditRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    package_id: str = Field(..., min_length=1)
    payment_reference: str = Field(..., min_length=1, max_length=128)


class AdminUserOverview(BaseModel):
    user_id: str
    balance: Decimal
    can_create_project: bool
    wallets: list[WalletResponse]
    recent_transactions: list[LedgerEntryResponse]


class AdminUsersStats(BaseModel):
    total_users: int
    total_tokens: Decimal
    average_tokens_per_user: Decimal
    users_with_zero_tokens: int


class AdminUsersResponse(BaseModel):
    users: list[AdminUserOverview]
    stats: AdminUsersStats


class ReconciliationResponse(BaseModel):
    wallet_id: int
    balance: Decimal
    ledger_total: Decimal
    entry_count: int
    balanced: bool


class ExpiredWalletsResponse(BaseModel):
    deactivated: int
