"""Billing error hierarchy.

Every error carries a stable machine-readable ``code`` and the HTTP status the
boundary reports it with.
"""

from __future__ import annotations

from decimal import Decimal


class BillingError(Exception):
    """Base billing error."""

    def __init__(self, message: str, code: str, status_code: int = 400) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


class UnauthenticatedError(BillingError):
    def __init__(self, reason: str = "Unauthenticated") -> None:
        super().__init__(message=reason, code="UNAUTHENTICATED", status_code=401)


class ForbiddenError(BillingError):
    def __init__(self, reason: str = "You don't have permission") -> None:
        super().__init__(message=reason, code="FORBIDDEN", status_code=403)


class InvalidInputError(BillingError):
    """Malformed input, rejected before touching storage."""

    def __init__(self, reason: str) -> None:
        super().__init__(message=reason, code="INVALID_INPUT", status_code=422)


class WalletNotFoundError(BillingError):
    def __init__(self, wallet_id: int | None = None, reason: str | None = None) -> None:
        self.wallet_id = wallet_id
        message = reason or (f"Wallet {wallet_id} not found" if wallet_id is not None else "Wallet not found")
        super().__init__(message=message, code="WALLET_NOT_FOUND", status_code=404)


class WalletAlreadyActiveError(BillingError):
    def __init__(self, user_id: str, wallet_type: str) -> None:
        self.user_id = user_id
        self.wallet_type = wallet_type
        super().__init__(
            message=f"User {user_id} already has an active {wallet_type} wallet",
            code="WALLET_ALREADY_ACTIVE",
            status_code=409,
        )


class InsufficientBalanceError(BillingError):
    def __init__(self, required: Decimal, available: Decimal | None = None) -> None:
        self.required = required
        self.available = available
        if available is None:
            message = f"Insufficient tokens: need {required}"
        else:
            message = f"Insufficient tokens: need {required}, have {available}"
        super().__init__(message=message, code="INSUFFICIENT_BALANCE", status_code=409)


class StorageConflictError(BillingError):
    """Transient contention; the whole operation can be retried from scratch."""

    def __init__(self, reason: str = "Concurrent update detected, retry the operation") -> None:
        super().__init__(message=reason, code="STORAGE_CONFLICT", status_code=503)


class OutcomeUnknownError(BillingError):
    """The operation timed out; its effect must be re-queried before retrying."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            message=f"{operation} timed out; re-query the balance before retrying",
            code="OUTCOME_UNKNOWN",
            status_code=504,
        )
