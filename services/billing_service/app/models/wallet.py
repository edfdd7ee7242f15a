from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from services.billing_service.app.db.base import Base
from services.billing_service.app.db.types import TokenAmount
from services.billing_service.app.time_utils import utc_now


class WalletType(str, Enum):
    STANDARD = "STANDARD"
    PREMIUM = "PREMIUM"
    BONUS = "BONUS"
    PROMOTIONAL = "PROMOTIONAL"
    TRIAL = "TRIAL"


# Order in which wallets are drained when the caller does not pick one
DEBIT_PRIORITY: tuple[WalletType, ...] = (
    WalletType.STANDARD,
    WalletType.PREMIUM,
    WalletType.BONUS,
    WalletType.PROMOTIONAL,
    WalletType.TRIAL,
)


class Wallet(Base):
    __tablename__ = "token_wallets"
    __table_args__ = (
        CheckConstraint("balance_tokens >= 0", name="ck_token_wallet_balance_non_negative"),
        Index("ix_token_wallet_user_type", "user_id", "wallet_type"),
        # At most one active wallet per (user, type)
        Index(
            "uq_token_wallet_active_type",
            "user_id",
            "wallet_type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    wallet_type: Mapped[str] = mapped_column(String(20), nullable=False, default=WalletType.STANDARD.value)
    # Stored, authoritative balance; only the ledger's atomic adjust writes it
    balance_tokens: Mapped[Decimal] = mapped_column(TokenAmount(), default=Decimal("0.00"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_token_reset: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    entries = relationship(
        "LedgerEntry",
        back_populates="wallet",
        lazy="noload",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Wallet id={self.id} user={self.user_id} type={self.wallet_type} balance={self.balance_tokens}>"
