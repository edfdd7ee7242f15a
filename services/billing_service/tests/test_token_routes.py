from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from services.billing_service.app.models import TransactionType, WalletType
from services.billing_service.app.services import LedgerService


@pytest.mark.asyncio
async def test_balance_grants_daily_allotment_to_new_user(client):
    response = await client.get("/api/v1/tokens/balance")

    assert response.status_code == 200
    body = response.json()
    assert Decimal(str(body["balance"])) == Decimal("5")
    assert body["can_create_project"] is True
    assert Decimal(str(body["required_tokens"])) == Decimal("1.5")
    assert [wallet["wallet_type"] for wallet in body["wallets"]] == ["STANDARD"]
    assert response.headers["x-request-id"]


@pytest.mark.asyncio
async def test_balance_requires_authentication(client, caller):
    caller.act_as(None)

    response = await client.get("/api/v1/tokens/balance")

    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHENTICATED"


@pytest.mark.asyncio
async def test_request_id_is_echoed(client):
    response = await client.get("/api/v1/healthz", headers={"x-request-id": "req-123"})

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["x-request-id"] == "req-123"


@pytest.mark.asyncio
async def test_project_creation_charge_until_insufficient(client, wallets):
    await wallets.create_wallet("u1", WalletType.STANDARD, Decimal("3"))

    for project_id in ("p1", "p2"):
        response = await client.post("/api/v1/tokens/project-creation", json={"project_id": project_id})
        assert response.status_code == 200
        assert response.json()["success"] is True

    rejected = await client.post("/api/v1/tokens/project-creation", json={"project_id": "p3"})
    assert rejected.status_code == 409
    assert rejected.json()["code"] == "INSUFFICIENT_BALANCE"

    refund = await client.post(
        "/api/v1/tokens/project-creation/refund", json={"project_id": "p2", "reason": "build failed"}
    )
    assert refund.status_code == 200
    assert refund.json()["success"] is True

    balance = await client.get("/api/v1/tokens/balance")
    assert Decimal(str(balance.json()["balance"])) == Decimal("1.5")


@pytest.mark.asyncio
async def test_project_creation_requires_project_id(client):
    response = await client.post("/api/v1/tokens/project-creation", json={"project_id": ""})

    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_INPUT"


@pytest.mark.asyncio
async def test_transactions_are_scoped_to_caller(client, ledger, wallets, clock):
    await wallets.create_wallet("u1", WalletType.STANDARD, Decimal("5"))
    await wallets.create_wallet("someone-else", WalletType.STANDARD, Decimal("5"))
    clock.advance(minutes=1)
    await ledger.deduct_tokens("u1", Decimal("0.5"), TransactionType.CHAT_ANALYSIS, "chat", metadata={"chat_id": "c1"})

    response = await client.get("/api/v1/tokens/transactions", params={"limit": 1})

    assert response.status_code == 200
    entries = response.json()
    assert len(entries) == 1
    assert entries[0]["user_id"] == "u1"
    assert entries[0]["type"] == "CHAT_ANALYSIS"
    assert Decimal(str(entries[0]["amount"])) == Decimal("-0.5")
    assert entries[0]["metadata"] == {"chat_id": "c1"}


@pytest.mark.asyncio
async def test_transactions_reject_bad_paging(client):
    response = await client.get("/api/v1/tokens/transactions", params={"limit": 0})

    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_INPUT"


@pytest.mark.asyncio
async def test_project_creation_guard_info(client, wallets):
    await wallets.create_wallet("u1", WalletType.STANDARD, Decimal("1"))

    response = await client.get("/api/v1/tokens/guard/project-creation")

    assert response.status_code == 200
    body = response.json()
    assert body["can_create_project"] is False
    assert Decimal(str(body["balance"])) == Decimal("1")
    assert body["next_reset"].startswith("2026-10-19T00:00:00")


@pytest.mark.asyncio
async def test_packages_catalogue_is_public(client, caller):
    caller.act_as(None)

    response = await client.get("/api/v1/tokens/packages")

    assert response.status_code == 200
    packages = response.json()
    assert [package["id"] for package in packages] == ["starter", "pro", "business", "enterprise"]
    assert [package["id"] for package in packages if package["best_value"]] == ["enterprise"]
    assert packages[1]["total_tokens"] == 55


@pytest.mark.asyncio
async def test_metrics_endpoint(client):
    response = await client.get("/api/v1/metrics")

    assert response.status_code == 200
    assert "billing_tokens_deducted_total" in response.text


@pytest.mark.asyncio
async def test_slow_storage_reports_unknown_outcome(client, settings, monkeypatch):
    async def slow_history(self, user_id, limit=50, offset=0):
        await asyncio.sleep(1)
        return []

    monkeypatch.setattr(LedgerService, "get_transaction_history", slow_history)
    settings.operation_timeout_seconds = 0.05

    response = await client.get("/api/v1/tokens/transactions")

    assert response.status_code == 504
    assert response.json()["code"] == "OUTCOME_UNKNOWN"
