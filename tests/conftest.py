"""Shared fixtures: in-memory SQLite, a mocked Redis and a seeded catalog."""

import os

# Settings are cached on first import; point them at test values before that.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["GATEWAY_MERCHANT_ID"] = "1211149"
os.environ["GATEWAY_MERCHANT_SECRET"] = "test-secret"
os.environ["RECONCILE_BACKOFF_SECONDS"] = "0"
os.environ["LOCK_MAX_RETRIES"] = "1"
os.environ["LOCK_RETRY_DELAY_MS"] = "1"

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from seatledger.authorization import Principal, Role
from seatledger.documents import Attachment, DispatchResult, TicketDocument
from seatledger.models import (
    Base,
    EventDay,
    SeatType,
    SeatTypeAvailability,
    Shop,
)
from seatledger.services.ticket_service import TicketService


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create a fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db(async_engine):
    session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def mock_redis():
    """Redis stand-in: locks always acquire, stream calls are recorded."""
    client = MagicMock()
    client.set = AsyncMock(return_value=True)
    client.register_script = MagicMock(return_value=AsyncMock(return_value=1))
    client.xgroup_create = AsyncMock(return_value=True)
    client.xadd = AsyncMock(return_value="1-0")
    client.xack = AsyncMock(return_value=1)
    client.xreadgroup = AsyncMock(return_value=[])
    client.xautoclaim = AsyncMock(return_value=["0-0", [], []])
    client.zadd = AsyncMock(return_value=1)
    client.zrangebyscore = AsyncMock(return_value=[])
    client.zrem = AsyncMock(return_value=1)
    return client


@dataclass
class Catalog:
    """Seeded ids used across tests."""

    shop_a: int
    shop_b: int
    vip_a: int
    standard_a: int
    vip_b: int
    day_1: int
    day_2: int
    event_date_1: date
    event_date_2: date


@pytest_asyncio.fixture
async def catalog(db) -> Catalog:
    """
    Two shops (sold by seller-1 and seller-2), three seat types and two event days.

    Every seat type is sold on both days with capacity 10.
    """
    shop_a = Shop(name="Galle Face", address="Colombo 03", seller_id="seller-1")
    shop_b = Shop(name="Viharamahadevi", address="Colombo 07", seller_id="seller-2")
    db.add_all([shop_a, shop_b])
    await db.flush()

    vip_a = SeatType(shop_id=shop_a.shop_id, name="VIP")
    standard_a = SeatType(shop_id=shop_a.shop_id, name="Standard")
    vip_b = SeatType(shop_id=shop_b.shop_id, name="VIP")
    day_1 = EventDay(event_date=date(2026, 12, 24), event_name="Christmas Eve")
    day_2 = EventDay(event_date=date(2026, 12, 31), event_name="New Year's Eve")
    db.add_all([vip_a, standard_a, vip_b, day_1, day_2])
    await db.flush()

    prices = {
        vip_a.seat_type_id: Decimal("5000.00"),
        standard_a.seat_type_id: Decimal("2500.00"),
        vip_b.seat_type_id: Decimal("4000.00"),
    }
    for seat_type_id, price in prices.items():
        for day in (day_1, day_2):
            db.add(
                SeatTypeAvailability(
                    seat_type_id=seat_type_id,
                    event_day_id=day.event_day_id,
                    price=price,
                    quantity=10,
                    available=True,
                )
            )
    await db.commit()

    return Catalog(
        shop_a=shop_a.shop_id,
        shop_b=shop_b.shop_id,
        vip_a=vip_a.seat_type_id,
        standard_a=standard_a.seat_type_id,
        vip_b=vip_b.seat_type_id,
        day_1=day_1.event_day_id,
        day_2=day_2.event_day_id,
        event_date_1=day_1.event_date,
        event_date_2=day_2.event_date,
    )


def customer(customer_id: str = "cust-1") -> Principal:
    return Principal(principal_id=customer_id, role=Role.CUSTOMER)


@pytest.fixture
def alice() -> Principal:
    return customer("alice")


@pytest.fixture
def bob() -> Principal:
    return customer("bob")


@pytest.fixture
def admin() -> Principal:
    return Principal(principal_id="admin-1", role=Role.ADMIN)


@pytest.fixture
def seller() -> Principal:
    return Principal(principal_id="seller-1", role=Role.SELLER)


class FakeCodeGenerator:
    def __init__(self):
        self.generated: list[str] = []

    def generate(self, ticket_no: str) -> str:
        self.generated.append(ticket_no)
        return f"codes/{ticket_no}.png"


class FakeRenderer:
    """Renders into memory; raises for groups belonging to ``fail_for_shops``."""

    def __init__(self, fail_for_shops: set[int] | None = None):
        self.fail_for_shops = fail_for_shops or set()
        self.rendered: list[TicketDocument] = []

    def render(self, document: TicketDocument, code_ref: str | None) -> str:
        if any(document.ticket_no.startswith(f"PGS{s}D") for s in self.fail_for_shops):
            raise RuntimeError("renderer crashed")
        self.rendered.append(document)
        return f"tickets/{document.ticket_no}.pdf"


@dataclass
class FakeNotifier:
    fail: bool = False
    sent: list[tuple[str, str, list[Attachment]]] = field(default_factory=list)

    async def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachments: list[Attachment],
    ) -> DispatchResult:
        if self.fail:
            raise ConnectionError("SMTP unavailable")
        self.sent.append((recipient, subject, attachments))
        return DispatchResult(sent=True)


@pytest.fixture
def code_generator() -> FakeCodeGenerator:
    return FakeCodeGenerator()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def ticket_service(db, code_generator, renderer, notifier) -> TicketService:
    return TicketService(
        db,
        code_generator=code_generator,
        renderer=renderer,
        notifier=notifier,
    )
