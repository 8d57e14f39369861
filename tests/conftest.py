"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import StaticPool

from core.settings import ManualSettings
from infrastructure.database import build_engine, create_tables
from infrastructure.external.payments import PaymentProviderRegistry
from infrastructure.external.payments.manual_client import ManualPaymentClient
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

from support import RecordingNotifier, Seeder, StubProvider


@pytest.fixture
async def engine():
    eng = build_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(bind=eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory):
    def factory(readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory=session_factory, readonly=readonly)

    return factory


@pytest.fixture
def seeder(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def stub_provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def registry(stub_provider) -> PaymentProviderRegistry:
    return PaymentProviderRegistry({"stub": stub_provider, "manual": ManualPaymentClient(ManualSettings())})


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
