from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.billing_service.app.db.base import Base
from services.billing_service.app.db.session import build_engine, build_session_factory
from services.billing_service.app.dependencies import (
    Principal,
    get_clock,
    get_current_principal,
    get_optional_principal,
    get_session_factory,
    get_settings,
)
from services.billing_service.app.errors import UnauthenticatedError
from services.billing_service.app.main import create_app
from services.billing_service.app.models import LedgerEntry, Wallet
from services.billing_service.app.services import DailyResetScheduler, LedgerService, TokenGuard, WalletService
from services.billing_service.app.settings import BillingSettings, billing_settings

CRON_SECRET = "test-cron-secret"


class FrozenClock:
    """Deterministic clock; tests move it forward explicitly."""

    def __init__(self, now: datetime) -> None:
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc))


@pytest.fixture()
def settings() -> BillingSettings:
    return BillingSettings(
        reset_timezone="UTC",
        admin_user_ids="admin-1",
        cron_secret=CRON_SECRET,
        secret_key="test-secret",
        daily_allotment=Decimal("5"),
        default_wallet_tokens=Decimal("5"),
    )


@pytest_asyncio.fixture()
async def session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    # A file database: concurrent sessions need their own connections
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture()
def ledger(session_factory, settings, clock) -> LedgerService:
    return LedgerService(session_factory, settings=settings, clock=clock)


@pytest.fixture()
def wallets(session_factory, ledger, settings, clock) -> WalletService:
    return WalletService(session_factory, ledger=ledger, settings=settings, clock=clock)


@pytest.fixture()
def scheduler(session_factory, wallets, settings, clock) -> DailyResetScheduler:
    return DailyResetScheduler(session_factory, wallets=wallets, settings=settings, clock=clock)


@pytest.fixture()
def guard(session_factory, wallets, scheduler, settings, clock) -> TokenGuard:
    return TokenGuard(session_factory, wallets=wallets, scheduler=scheduler, settings=settings, clock=clock)


class PrincipalSwitch:
    """Stands in for the bearer-token dependency; tests pick who is calling."""

    def __init__(self) -> None:
        self.principal: Principal | None = Principal(user_id="u1", email="u1@example.com")

    def act_as(self, user_id: str | None, email: str | None = None, roles: frozenset[str] = frozenset()) -> None:
        self.principal = None if user_id is None else Principal(user_id=user_id, email=email, roles=roles)


@pytest.fixture()
def caller() -> PrincipalSwitch:
    return PrincipalSwitch()


@pytest_asyncio.fixture()
async def billing_app(monkeypatch, session_factory, settings, clock, caller):
    billing_settings.cache_clear()

    async def fake_run_migrations(*_args, **_kwargs) -> None:  # pragma: no cover - helper
        return None

    monkeypatch.setattr(
        "services.billing_service.app.main.run_alembic_migrations",
        fake_run_migrations,
    )

    def _current_principal() -> Principal:
        if caller.principal is None:
            raise UnauthenticatedError("Missing bearer token")
        return caller.principal

    app = create_app()
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_current_principal] = _current_principal
    app.dependency_overrides[get_optional_principal] = lambda: caller.principal
    yield app
    billing_settings.cache_clear()


@pytest_asyncio.fixture()
async def client(billing_app):
    transport = ASGITransport(app=billing_app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http


@pytest.fixture()
def read_balance(session_factory):
    async def _read(wallet_id: int) -> Decimal:
        async with session_factory() as session:
            wallet = await session.get(Wallet, wallet_id)
            return Decimal(str(wallet.balance_tokens))

    return _read


@pytest.fixture()
def count_entries(session_factory):
    async def _count(user_id: str) -> int:
        async with session_factory() as session:
            stmt = select(func.count(LedgerEntry.id)).where(LedgerEntry.user_id == user_id)
            return int(await session.scalar(stmt))

    return _count
