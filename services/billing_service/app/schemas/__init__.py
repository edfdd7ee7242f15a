from .tokens import (
    AdjustBalanceRequest,
    AdminUserOverview,
    AdminUsersResponse,
    AdminUsersStats,
    DailyResetResponse,
    DailyResetStatusResponse,
    ExpiredWalletsResponse,
    LedgerEntryResponse,
    OperationResult,
    PackageResponse,
    ProjectChargeRequest,
    PurchaseCreditRequest,
    ReconciliationResponse,
    RefundRequest,
    ResetFailureResponse,
    ResetUserRequest,
    TokenInfoResponse,
    TokenSummaryResponse,
    WalletCreateRequest,
    WalletResponse,
)

__all__ = [
    "AdjustBalanceRequest",
    "AdminUserOverview",
    "AdminUsersResponse",
    "AdminUsersStats",
    "DailyResetResponse",
    "DailyResetStatusResponse",
    "ExpiredWalletsResponse",
    "LedgerEntryResponse",
    "OperationResult",
    "PackageResponse",
    "ProjectChargeRequest",
    "PurchaseCreditRequest",
    "ReconciliationResponse",
    "RefundRequest",
    "ResetFailureResponse",
    "ResetUserRequest",
    "TokenInfoResponse",
    "TokenSummaryResponse",
    "WalletCreateRequest",
    "WalletResponse",
]
