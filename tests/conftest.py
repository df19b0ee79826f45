"""Pytest configuration and fixtures."""

import base64
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ["TONPOCKET_ENVIRONMENT"] = "test"
os.environ["TONPOCKET_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["TONPOCKET_TELEGRAM_BOT_TOKEN"] = ""
os.environ["TONPOCKET_DEBUG"] = "true"

from tonpocket.address import Address
from tonpocket.config import Settings
from tonpocket.scanner.cells import BOC_MAGIC
from tonpocket.storage.models import Base
from tonpocket.storage.repository import StorageRepository
from tonpocket.utils.cache import ResultCache
from tonpocket.utils.retry import RateLimitedFetcher

ZERO_FRIENDLY = "EQAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAM9c"
ZERO_RAW = "0:" + "0" * 64


def make_address(seed: int, workchain: int = 0) -> Address:
    """Deterministic test address."""
    return Address(workchain=workchain, hash_part=bytes([seed]) * 32)


def bits(value: int, width: int) -> str:
    return format(value, f"0{width}b") if width else ""


def coins_bits(amount: int) -> str:
    length = (amount.bit_length() + 7) // 8
    return bits(length, 4) + bits(amount, length * 8)


def address_bits(address: Address) -> str:
    return "10" + "0" + bits(address.workchain & 0xFF, 8) + bits(int.from_bytes(address.hash_part, "big"), 256)


def make_boc(cell_bits: str) -> str:
    """Base64 BOC holding a single cell with the given data bits."""
    bit_length = len(cell_bits)
    padded = cell_bits
    if bit_length % 8:
        padded += "1"
        padded += "0" * (-len(padded) % 8)
    data = int(padded, 2).to_bytes(len(padded) // 8, "big") if padded else b""

    d2 = bit_length // 8 + (bit_length + 7) // 8
    cell = bytes([0, d2]) + data
    header = BOC_MAGIC + bytes([0x01, 0x01, 1, 1, 0, len(cell), 0])
    return base64.b64encode(header + cell).decode("ascii")


def jetton_body(opcode: int, amount: int, query_id: int = 0) -> str:
    return make_boc(bits(opcode, 32) + bits(query_id, 64) + coins_bits(amount))


def tx_record(
    tx_hash: str,
    utime: int,
    source: str = "",
    destination: str = "",
    value: int = 0,
    out_msgs: Optional[list] = None,
    lt: int = 0,
    in_body: Optional[str] = None,
) -> dict:
    """A toncenter-shaped transaction record."""
    in_msg = {"source": source, "destination": destination, "value": str(value)}
    if in_body is not None:
        in_msg["msg_data"] = {"@type": "msg.dataRaw", "body": in_body}
    return {
        "utime": utime,
        "transaction_id": {"lt": str(lt or utime), "hash": tx_hash},
        "fee": "1000",
        "in_msg": in_msg,
        "out_msgs": out_msgs or [],
    }


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and .env files."""
    return Settings(
        _env_file=None,
        environment="test",
        fetch_max_attempts=3,
        fetch_base_delay=0.0,
        events_timeout=1.0,
        manifest_timeout=1.0,
        database_url="sqlite+aiosqlite:///:memory:",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def fetcher(fake_sleep) -> RateLimitedFetcher:
    return RateLimitedFetcher(max_attempts=3, base_delay=2.0, sleep=fake_sleep)


@pytest.fixture
def cache(clock) -> ResultCache:
    return ResultCache(clock=clock)


@pytest.fixture
def toncenter() -> MagicMock:
    """toncenter client double with async methods."""
    client = MagicMock()
    client.get_balance = AsyncMock(return_value="0")
    client.get_transactions = AsyncMock(return_value=[])
    client.run_get_method = AsyncMock(return_value={"stack": [], "exit_code": 0})
    client.send_boc = AsyncMock(return_value={"@type": "ok"})
    return client


@pytest.fixture
def tonapi() -> MagicMock:
    """tonapi client double with async methods."""
    client = MagicMock()
    client.get_jettons = AsyncMock(return_value=[])
    client.get_events = AsyncMock(return_value=[])
    return client


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )

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


@pytest_asyncio.fixture
async def storage_repo(db_session: AsyncSession) -> StorageRepository:
    """Create storage repository for testing."""
    return StorageRepository(db_session)


@pytest.fixture
def session_scope(db_engine):
    """Committing session context factory bound to the test engine."""
    session_factory = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    @asynccontextmanager
    async def scope():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return scope
