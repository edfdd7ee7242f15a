from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from services.billing_service.app.errors import InvalidInputError
from services.billing_service.app.models import TransactionType, WalletType


@pytest.mark.asyncio
async def test_new_user_gets_allotment_on_first_check(guard, wallets):
    assert await guard.can_create_project("fresh") is True

    standard = await wallets.get_wallet_by_type("fresh", WalletType.STANDARD)
    assert standard.balance_tokens == Decimal("5")


@pytest.mark.asyncio
async def test_project_charge_and_refund(guard, ledger, wallets):
    await wallets.create_wallet("u1", WalletType.STANDARD, Decimal("2"))

    assert await guard.deduct_project_creation_tokens("u1", "proj-1") is True
    assert await guard.deduct_project_creation_tokens("u1", "proj-2") is False
    assert await guard.refund_project_creation_tokens("u1", "proj-1", "build failed") is True

    history = await ledger.get_transaction_history("u1")
    assert [entry.type for entry in history[:2]] == [
        TransactionType.REFUND.value,
        TransactionType.PROJECT_CREATION_DEBIT.value,
    ]
    assert history[0].details == {"project_id": "proj-1", "reason": "build failed"}
    assert history[1].amount == Decimal("-1.5")
    assert (await wallets.get_user_token_summary("u1")).total_balance == Decimal("2")


@pytest.mark.asyncio
async def test_project_charge_requires_project_id(guard):
    with pytest.raises(InvalidInputError):
        await guard.deduct_project_creation_tokens("u1", "")


@pytest.mark.asyncio
async def test_token_info_reports_reset_times(guard, wallets, clock):
    await wallets.create_wallet("u1", WalletType.STANDARD, Decimal("1"))

    info = await guard.get_token_info("u1")

    assert info.balance == Decimal("1")
    assert info.can_create_project is False
    assert info.required_tokens == Decimal("1.5")
    assert info.last_reset == clock()
    assert info.next_reset == datetime(2026, 10, 19, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_package_purchase_credits_premium_wallet(guard, wallets, ledger):
    package = await guard.credit_package_purchase("u1", "pro", "pay_123")

    assert package.total_tokens == 55
    premium = await wallets.get_wallet_by_type("u1", WalletType.PREMIUM)
    assert premium.balance_tokens == Decimal("55")
    entry = (await ledger.get_transaction_history("u1", limit=1))[0]
    assert entry.type == TransactionType.TOKEN_PURCHASE.value
    assert entry.details["payment_reference"] == "pay_123"
    assert entry.details["bonus_tokens"] == 5


@pytest.mark.asyncio
async def test_unknown_package_is_rejected(guard):
    with pytest.raises(InvalidInputError):
        await guard.credit_package_purchase("u1", "platinum", "pay_1")
