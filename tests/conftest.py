"""Pytest configuration and fixtures."""

import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "false"
os.environ["MASTER_KEY"] = ""

from vaultswap.config import ChainFamily
from vaultswap.crypto import SecretBox
from vaultswap.storage.database import build_engine, build_session_factory, session_scope
from vaultswap.storage.models import Base
from vaultswap.wallets.keys import KeyMaterialService

class FakeClock:
    """Settable clock for quote and login expiry tests."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    session_factory = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session


@pytest.fixture
def db(db_engine):
    """Session context factory with the same commit/rollback rules as get_db()."""
    return session_scope(build_session_factory(db_engine))


@pytest.fixture
def keys() -> KeyMaterialService:
    """Key service without a master key (plain material)."""
    return KeyMaterialService(SecretBox())


@pytest.fixture
def sealed_keys() -> KeyMaterialService:
    from cryptography.fernet import Fernet

    return KeyMaterialService(SecretBox(Fernet.generate_key().decode()))


@pytest.fixture
def evm_keypair(keys):
    return keys.generate(ChainFamily.EVM)


@pytest.fixture
def solana_keypair(keys):
    return keys.generate(ChainFamily.SOLANA)
