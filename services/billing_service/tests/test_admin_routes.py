from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from services.billing_service.app.models import WalletType


@pytest.fixture()
def as_admin(caller):
    caller.act_as("admin-1", email="ops@example.com")
    return caller


@pytest.mark.asyncio
async def test_admin_routes_reject_regular_users(client):
    response = await client.post("/api/v1/admin/tokens/adjust", json={"user_id": "u2", "amount": 10})

    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_admin_role_claim_is_accepted(client, caller, wallets):
    await wallets.create_wallet("u2", WalletType.STANDARD, Decimal("5"))
    caller.act_as("someone", roles=frozenset({"admin"}))

    response = await client.get("/api/v1/admin/users/u2/balance")

    assert response.status_code == 200
    assert Decimal(str(response.json()["balance"])) == Decimal("5")


@pytest.mark.asyncio
async def test_adjust_balance_grants_and_records_actor(client, as_admin, wallets, clock):
    await wallets.create_wallet("u1", WalletType.STANDARD, Decimal("5"))
    clock.advance(minutes=1)

    response = await client.post(
        "/api/v1/admin/tokens/adjust", json={"user_id": "u1", "amount": 10, "description": "promo"}
    )

    assert response.status_code == 200
    assert response.json()["success"] is True
    balance = await client.get("/api/v1/admin/users/u1/balance")
    assert Decimal(str(balance.json()["balance"])) == Decimal("15")

    history = await client.get("/api/v1/admin/users/u1/transactions", params={"limit": 1})
    entry = history.json()[0]
    assert entry["type"] == "ADMIN_ADJUSTMENT"
    assert Decimal(str(entry["amount"])) == Decimal("10")
    assert entry["description"] == "promo"
    assert entry["metadata"] == {"actor_id": "admin-1", "actor_email": "ops@example.com"}


@pytest.mark.asyncio
async def test_adjust_balance_default_description(client, as_admin, ledger, wallets):
    await wallets.create_wallet("u1", WalletType.STANDARD, Decimal("5"))

    response = await client.post("/api/v1/admin/tokens/adjust", json={"user_id": "u1", "amount": -2})

    assert response.json() == {"success": True, "message": "Deducted 2 tokens for user u1"}
    entry = (await ledger.get_transaction_history("u1", limit=1))[0]
    assert entry.description == "Admin adjustment by ops@example.com: -2"
    assert entry.amount == Decimal("-2")


@pytest.mark.asyncio
async def test_adjust_balance_cannot_overdraw(client, as_admin, wallets, read_balance):
    wallet = await wallets.create_wallet("u1", WalletType.STANDARD, Decimal("15"))

    response = await client.post("/api/v1/admin/tokens/adjust", json={"user_id": "u1", "amount": -20})

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert await read_balance(wallet.id) == Decimal("15")


@pytest.mark.asyncio
async def test_adjust_balance_rejects_zero(client, as_admin):
    response = await client.post("/api/v1/admin/tokens/adjust", json={"user_id": "u1", "amount": 0})

    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_INPUT"


@pytest.mark.asyncio
async def test_forced_reset(client, as_admin, ledger, wallets):
    await wallets.create_wallet("u1", WalletType.STANDARD, Decimal("1"))

    response = await client.post("/api/v1/admin/tokens/reset", json={"user_id": "u1"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    entry = (await ledger.get_transaction_history("u1", limit=1))[0]
    assert entry.type == "DAILY_RESET"
    assert entry.details["actor_id"] == "admin-1"


@pytest.mark.asyncio
async def test_create_wallet_conflict(client, as_admin):
    payload = {"user_id": "u3", "wallet_type": "BONUS", "initial_tokens": "2.5"}

    created = await client.post("/api/v1/admin/wallets", json=payload)
    duplicate = await client.post("/api/v1/admin/wallets", json=payload)

    assert created.status_code == 201
    assert created.json()["wallet_type"] == "BONUS"
    assert Decimal(str(created.json()["balance_tokens"])) == Decimal("2.5")
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "WALLET_ALREADY_ACTIVE"


@pytest.mark.asyncio
async def test_deactivate_and_reconcile_wallet(client, as_admin, wallets):
    wallet = await wallets.create_wallet("u1", WalletType.BONUS, Decimal("4"))

    deactivated = await client.post(f"/api/v1/admin/wallets/{wallet.id}/deactivate")
    again = await client.post(f"/api/v1/admin/wallets/{wallet.id}/deactivate")
    report = await client.get(f"/api/v1/admin/wallets/{wallet.id}/reconciliation")
    missing = await client.get("/api/v1/admin/wallets/999/reconciliation")

    assert deactivated.json()["success"] is True
    assert again.json()["success"] is False
    assert report.status_code == 200
    assert report.json()["balanced"] is True
    assert report.json()["entry_count"] == 1
    assert missing.status_code == 404
    assert missing.json()["code"] == "WALLET_NOT_FOUND"


@pytest.mark.asyncio
async def test_purchase_credit(client, as_admin, wallets):
    response = await client.post(
        "/api/v1/admin/tokens/purchases",
        json={"user_id": "u4", "package_id": "starter", "payment_reference": "pay_1"},
    )
    unknown = await client.post(
        "/api/v1/admin/tokens/purchases",
        json={"user_id": "u4", "package_id": "gold", "payment_reference": "pay_2"},
    )

    assert response.status_code == 200
    premium = await wallets.get_wallet_by_type("u4", WalletType.PREMIUM)
    assert premium.balance_tokens == Decimal("20")
    assert unknown.status_code == 422


@pytest.mark.asyncio
async def test_users_overview(client, as_admin, wallets, ledger):
    await wallets.create_wallet("u1", WalletType.STANDARD, Decimal("4"))
    await wallets.create_wallet("u2", WalletType.STANDARD, Decimal("0"))

    response = await client.get("/api/v1/admin/tokens/users")

    assert response.status_code == 200
    body = response.json()
    assert [user["user_id"] for user in body["users"]] == ["u1", "u2"]
    assert len(body["users"][0]["recent_transactions"]) == 1
    stats = body["stats"]
    assert stats["total_users"] == 2
    assert Decimal(str(stats["total_tokens"])) == Decimal("4")
    assert Decimal(str(stats["average_tokens_per_user"])) == Decimal("2")
    assert stats["users_with_zero_tokens"] == 1


@pytest.mark.asyncio
async def test_daily_reset_requires_secret_or_admin(client, caller):
    caller.act_as(None)
    anonymous = await client.post("/api/v1/system/daily-reset")
    wrong_secret = await client.post("/api/v1/system/daily-reset", headers={"X-Cron-Secret": "nope"})
    caller.act_as("u1")
    regular_user = await client.get("/api/v1/system/daily-reset/status")

    assert anonymous.status_code == 401
    assert wrong_secret.status_code == 401
    assert regular_user.status_code == 403


@pytest.mark.asyncio
async def test_daily_reset_via_cron_secret(client, caller, wallets, settings, clock):
    caller.act_as(None)
    await wallets.create_wallet("u1", WalletType.STANDARD, Decimal("1"))
    await wallets.create_wallet("u2", WalletType.STANDARD, Decimal("2"))
    clock.advance(days=1)
    headers = {"X-Cron-Secret": settings.cron_secret}

    status = await client.get("/api/v1/system/daily-reset/status", headers=headers)
    first = await client.post("/api/v1/system/daily-reset", headers=headers)
    second = await client.post("/api/v1/system/daily-reset", headers=headers)

    assert status.json()["should_reset"] is True
    assert status.json()["pending_count"] == 2
    assert first.json()["success"] is True
    assert first.json()["reset_count"] == 2
    assert second.json()["reset_count"] == 0


@pytest.mark.asyncio
async def test_expire_wallets_route(client, as_admin, wallets, clock):
    await wallets.create_wallet("u1", WalletType.TRIAL, Decimal("3"), expires_at=clock() + timedelta(hours=1))
    clock.advance(hours=2)

    response = await client.post("/api/v1/system/wallets/expire")

    assert response.status_code == 200
    assert response.json() == {"deactivated": 1}
