from __future__ import annotations

from decimal import Decimal

from sqlalchemy import BigInteger, Numeric
from sqlalchemy.types import TypeDecorator

CENT = Decimal("0.01")


class TokenAmount(TypeDecorator):
    """Token amount with two decimal places, exact on every backend.

    Postgres keeps ``NUMERIC(18, 2)``. SQLite has no exact decimal storage,
    so there the value is stored as an integer count of hundredths; sums,
    comparisons and ``balance + delta`` updates then stay integer arithmetic.
    """

    impl = Numeric(18, 2)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(BigInteger())
        return dialect.type_descriptor(Numeric(18, 2))

    def coerce_compared_value(self, op, value):
        return self

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        amount = Decimal(str(value)).quantize(CENT)
        if dialect.name == "sqlite":
            return int(amount.scaleb(2))
        return amount

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "sqlite":
            return (Decimal(int(value)) * CENT).quantize(CENT)
        return Decimal(str(value)).quantize(CENT)
