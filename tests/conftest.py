"""
Pytest configuration and fixtures for the commission engine.
"""
import os
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Use in-memory SQLite for tests, before the package builds its engine
os.environ.setdefault('DATABASE_URL', 'sqlite+aiosqlite://')

from commission_engine.config import Settings
from commission_engine.database import init_db
from commission_engine.models.commission import (
    Commission,
    CommissionRule,
    CommissionStatus,
)
from commission_engine.services.catalog import StaticCatalog
from commission_engine.services.event_service import EventSink
from commission_engine.services.transfer_service import (
    TransferOutcome,
    TransferProvider,
    TransferResult,
)


class RecordingEventSink(EventSink):
    """Keeps every emitted event for assertions."""

    def __init__(self):
        self.events: List[tuple] = []

    async def emit(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((event, payload))

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def payloads(self, name: str) -> List[Dict[str, Any]]:
        return [payload for event, payload in self.events if event == name]


class FakeTransferProvider(TransferProvider):
    """Transfer provider with a scripted outcome."""

    def __init__(
        self,
        destinations: Optional[Dict[int, str]] = None,
        outcome: TransferOutcome = TransferOutcome.SUCCEEDED,
        error_message: Optional[str] = None,
        raises: Optional[Exception] = None,
    ):
        self.destinations = dict(destinations or {})
        self.outcome = outcome
        self.error_message = error_message
        self.raises = raises
        self.calls: List[Dict[str, Any]] = []

    async def create_transfer(self, destination, amount, currency, metadata, idempotency_key):
        self.calls.append({
            'destination': destination,
            'amount': amount,
            'currency': currency,
            'metadata': metadata,
            'idempotency_key': idempotency_key,
        })
        if self.raises is not None:
            raise self.raises
        if self.outcome == TransferOutcome.SUCCEEDED:
            return TransferResult(outcome=self.outcome, reference=f"tr_{len(self.calls)}")
        return TransferResult(outcome=self.outcome, error_message=self.error_message)

    async def is_destination_connected(self, vendor_id: int) -> bool:
        return vendor_id in self.destinations

    async def get_destination(self, vendor_id: int) -> Optional[str]:
        return self.destinations.get(vendor_id)


@pytest_asyncio.fixture
async def engine():
    """In-memory database shared by every session of one test."""
    engine = create_async_engine(
        'sqlite+aiosqlite://',
        poolclass=StaticPool,
        connect_args={'check_same_thread': False},
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly
    @event.listens_for(engine.sync_engine, 'connect')
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, 'begin')
    def do_begin(conn):
        conn.exec_driver_sql('BEGIN')

    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        yield session


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        DATABASE_URL='sqlite+aiosqlite://',
        DEFAULT_COMMISSION_RATE=Decimal('10'),
        MINIMUM_PAYOUT=Decimal('50'),
        PAYOUT_FEE_HANDLING='platform',
        PLATFORM_FEE_PERCENT=Decimal('0'),
        CURRENCY='usd',
    )


@pytest.fixture
def sink():
    return RecordingEventSink()


@pytest.fixture
def catalog():
    catalog = StaticCatalog()
    catalog.add_product(101, vendor_id=7, category_ids=[5])
    catalog.add_product(102, vendor_id=7, category_ids=[5, 6])
    catalog.add_product(201, vendor_id=8, category_ids=[6])
    return catalog


@pytest.fixture
def transfers():
    return FakeTransferProvider(destinations={7: 'acct_7', 8: 'acct_8'})


@pytest.fixture
def make_rule(session):
    """Insert a rule straight into the database (no schema validation)."""
    async def _make_rule(**kwargs) -> CommissionRule:
        values = {
            'name': 'Rule',
            'rule_type': 'global',
            'calculation_method': 'percentage',
            'value': Decimal('10'),
            'priority': 10,
            'status': 'active',
        }
        values.update(kwargs)
        rule = CommissionRule(**values)
        session.add(rule)
        await session.commit()
        return rule
    return _make_rule


@pytest.fixture
def make_commission(session):
    """Insert a commission for a vendor with the given amount and status."""
    counter = {'item': 0}

    async def _make_commission(
        vendor_id: int,
        amount: str,
        status: str = CommissionStatus.APPROVED.value,
        order_id: int = 1000,
        **kwargs,
    ) -> Commission:
        counter['item'] += 1
        commission = Commission(
            order_id=order_id,
            order_item_id=kwargs.pop('order_item_id', counter['item']),
            product_id=kwargs.pop('product_id', 101),
            vendor_id=vendor_id,
            order_total=Decimal(amount) * 10,
            commission_amount=Decimal(amount),
            status=status,
            **kwargs,
        )
        session.add(commission)
        await session.commit()
        return commission
    return _make_commission
