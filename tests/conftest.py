import os

# storefront.main はインポート時に DATABASE_URL を読む
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool

from storefront.committer import OrderCommitter
from storefront.ledger import Ledger
from storefront.schema import create_schema
from storefront.token_guard import BuyerInfo, CommitmentTokenGuard

# (code, main_category, description, stock, unit_price)
INVENTORY = [
    ("A", "Herbs", "Lemongrass bundle", 5, 50),
    ("B", "Herbs", "Mugwort bundle", 10, 120),
    ("C", "Ceramics", "Tea cup", 0, 80),
    ("D", "Ceramics", "Display vase", -1, 300),
]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine(tmp_path):
    # 接続を 1 本に絞り、SQLite のロック待ちを避ける
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        poolclass=AsyncAdaptedQueuePool,
        pool_size=1,
        max_overflow=0,
    )
    await create_schema(engine)
    async with engine.begin() as conn:
        for code, category, description, stock, price in INVENTORY:
            await conn.execute(
                text("""
                    INSERT INTO inventory (code, main_category, description, stock, unit_price)
                    VALUES (:code, :category, :description, :stock, :price)
                """),
                {
                    "code": code,
                    "category": category,
                    "description": description,
                    "stock": stock,
                    "price": price,
                },
            )
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def ledger(session_factory):
    return Ledger(session_factory, timeout=5.0)


@pytest.fixture
async def redis():
    client = FakeAsyncRedis(server=FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def guard(redis):
    return CommitmentTokenGuard(redis, ttl_seconds=300)


class RecordingNotifier:
    def __init__(self):
        self.records = []

    async def notify(self, record):
        self.records.append(record)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def committer(ledger, guard, notifier):
    return OrderCommitter(ledger, guard, notifier, shipping_fee=65, timezone="Asia/Taipei")


@pytest.fixture
def buyer():
    return BuyerInfo(
        name="Lin Mei",
        phone="0912345678",
        email="mei@example.com",
        address="No. 1, Zhongshan Rd, Taipei",
        account_last5="12345",
        facebook="",
        remark="Please call before delivery",
    )


@pytest.fixture
def read_stock(ledger):
    async def read(code):
        return (await ledger.get_stock([code]))[code]["stock"]

    return read
