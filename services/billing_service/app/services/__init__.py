from .daily_reset import DailyResetScheduler, OperationOutcome, ResetFailure, ResetResult
from .ledger import LedgerService, ReconciliationReport
from .token_guard import TokenGuard, TokenInfo
from .wallets import TokenSummary, WalletService

__all__ = [
    "DailyResetScheduler",
    "OperationOutcome",
    "ResetFailure",
    "ResetResult",
    "LedgerService",
    "ReconciliationReport",
    "TokenGuard",
    "TokenInfo",
    "TokenSummary",
    "WalletService",
]
