from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from services.billing_service.app.db.base import Base
from services.billing_service.app.db.types import TokenAmount
from services.billing_service.app.time_utils import utc_now


class TransactionType(str, Enum):
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"
    DAILY_RESET = "DAILY_RESET"
    TOKEN_PURCHASE = "TOKEN_PURCHASE"
    PROJECT_CREATION_DEBIT = "PROJECT_CREATION_DEBIT"
    REFUND = "REFUND"
    CHAT_ANALYSIS = "CHAT_ANALYSIS"
    WALLET_INITIALIZATION = "WALLET_INITIALIZATION"


class LedgerEntry(Base):
    """Append-only record of one balance-changing event.

    Rows are never updated or deleted. Summing ``amount`` over a wallet's
    entries reproduces that wallet's ``balance_tokens``.
    """

    __tablename__ = "token_ledger_entries"
    __table_args__ = (
        Index("ix_token_ledger_user_created", "user_id", "created_at"),
        Index("ix_token_ledger_wallet_created", "wallet_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # Nullable: user-level entries may precede any wallet
    wallet_id: Mapped[int | None] = mapped_column(
        ForeignKey("token_wallets.id", ondelete="RESTRICT"), nullable=True, default=None
    )
    amount: Mapped[Decimal] = mapped_column(TokenAmount(), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # 'metadata' is reserved on declarative classes; keep the column name
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)

    wallet = relationship("Wallet", back_populates="entries", lazy="noload")
