from __future__ import annotations

import json
from decimal import Decimal

import pytest

from services.billing_service.app.db.base import Base
from services.billing_service.app.db.session import build_engine, build_session_factory
from services.billing_service.app.jobs import daily_reset as job
from services.billing_service.app.models import TransactionType, WalletType
from services.billing_service.app.services import LedgerService, WalletService


@pytest.fixture()
def job_settings(tmp_path, settings):
    return settings.model_copy(update={"database_url": f"sqlite+aiosqlite:///{tmp_path / 'job.db'}"})


async def _prepare_database(job_settings) -> None:
    engine = build_engine(job_settings.async_db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = build_session_factory(engine)
    ledger = LedgerService(factory, settings=job_settings)
    wallets = WalletService(factory, ledger=ledger, settings=job_settings)
    await wallets.create_wallet("u1", WalletType.STANDARD, Decimal("2"))
    await engine.dispose()


def test_parse_args():
    args = job.parse_args(["reset-user", "u1", "--actor-id", "ops"])

    assert args.action == "reset-user"
    assert args.user_id == "u1"
    assert args.actor_id == "ops"
    with pytest.raises(SystemExit):
        job.parse_args([])


@pytest.mark.asyncio
async def test_check_reports_nothing_pending(job_settings):
    await _prepare_database(job_settings)

    ok, payload = await job.run_action(job.parse_args(["check"]), job_settings)

    assert ok is True
    assert payload["should_reset"] is False
    assert payload["pending_count"] == 0


@pytest.mark.asyncio
async def test_reset_user_records_cli_actor(job_settings):
    await _prepare_database(job_settings)

    ok, payload = await job.run_action(job.parse_args(["reset-user", "u1"]), job_settings)

    assert ok is True
    assert payload["success"] is True
    engine = build_engine(job_settings.async_db_url)
    try:
        ledger = LedgerService(build_session_factory(engine), settings=job_settings)
        entry = (await ledger.get_transaction_history("u1", limit=1))[0]
    finally:
        await engine.dispose()
    assert entry.type == TransactionType.DAILY_RESET.value
    assert entry.amount == Decimal("3")
    assert entry.details["actor_id"] == "cli"


def test_main_prints_json_and_exit_code(monkeypatch, capsys, job_settings):
    async def fake_run_action(args, settings):
        return False, {"success": False, "reset_count": 0}

    monkeypatch.setattr(job, "billing_settings", lambda: job_settings)
    monkeypatch.setattr(job, "run_action", fake_run_action)

    assert job.main(["reset"]) == 1
    assert json.loads(capsys.readouterr().out) == {"success": False, "reset_count": 0}
