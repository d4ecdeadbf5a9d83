import os
import shutil
import sys
import tempfile
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from criollo.api.main import create_app
from criollo.config import Settings, TableLayout
from criollo.integrations import (
    InMemoryCustomerDirectory,
    InMemoryProductCatalog,
    NotificationGateway,
    Product,
)
from criollo.services.floor import FloorCoordinator
from criollo.storage import InMemoryStorage, SQLAlchemyStorage
from criollo.utils.time_utils import FixedClock

# Saturday 2026-03-14, 12:00 in Santo Domingo (UTC-4)
NOON_LOCAL = datetime(2026, 3, 14, 16, 0, tzinfo=timezone.utc)

FLOOR = (
    TableLayout(number=1, capacity=2),
    TableLayout(number=2, capacity=4),
    TableLayout(number=3, capacity=4),
    TableLayout(number=4, capacity=8, location="terraza"),
)


class RecordingGateway(NotificationGateway):
    """Keeps every notification; can be told to fail the first N sends."""

    def __init__(self, fail_times: int = 0):
        self.sent: List[Dict[str, Any]] = []
        self.fail_times = fail_times
        self.calls = 0

    def send(self, kind, recipient, payload):
        self.calls += 1
        if self.calls <= self.fail_times:
            raise ConnectionError("smtp relay down")
        self.sent.append({"kind": kind, "recipient": recipient, "payload": payload})
        return True


@pytest.fixture
def clock():
    return FixedClock(NOON_LOCAL)


@pytest.fixture
def catalog():
    """A small Dominican menu."""
    return InMemoryProductCatalog([
        Product("presidente", "Cerveza Presidente", Decimal("100.00"), stock_quantity=100),
        Product("sancocho", "Sancocho de siete carnes", Decimal("250.50"), stock_quantity=40),
        Product("mofongo", "Mofongo de chicharrón", Decimal("350.50"), stock_quantity=30),
        Product("chivo", "Chivo guisado", Decimal("475.00"), stock_quantity=2),
        Product("habichuelas", "Habichuelas con dulce", Decimal("150.00"),
                is_available=False, stock_quantity=10),
    ])


@pytest.fixture
def customers():
    return InMemoryCustomerDirectory(["cust-ana", "cust-luis"])


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def settings():
    return Settings(tables=FLOOR)


@pytest.fixture
def coordinator(settings, clock, catalog, customers, gateway):
    """Coordinator over in-memory storage with the test floor registered."""
    floor = FloorCoordinator(
        InMemoryStorage(),
        settings=settings,
        clock=clock,
        catalog=catalog,
        customers=customers,
        gateway=gateway,
    )
    floor.bootstrap_tables()
    return floor


@pytest.fixture
def temp_sqlite_url():
    """URL of a throwaway SQLite file."""
    temp_dir = tempfile.mkdtemp()
    yield f"sqlite:///{os.path.join(temp_dir, 'test_floor.db')}"
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def sqlite_coordinator(temp_sqlite_url, settings, clock, catalog, customers, gateway):
    """Same floor as `coordinator`, persisted through SQLAlchemyStorage."""
    storage = SQLAlchemyStorage(temp_sqlite_url)
    floor = FloorCoordinator(
        storage,
        settings=settings,
        clock=clock,
        catalog=catalog,
        customers=customers,
        gateway=gateway,
    )
    floor.bootstrap_tables()
    yield floor
    floor.close()


@pytest.fixture(params=["inmemory", "sqlalchemy"])
def any_coordinator(request):
    """Run a test against both storage backends."""
    if request.param == "inmemory":
        return request.getfixturevalue("coordinator")
    return request.getfixturevalue("sqlite_coordinator")


@pytest.fixture
def app(coordinator):
    return create_app(coordinator)


@pytest_asyncio.fixture
async def async_client(app):
    """Create async HTTP client for testing."""
    async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
