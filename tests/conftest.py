# tests/conftest.py
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from infra.http_client import HttpClient
from fulfillment.config import (
    BsaleSettings,
    OrderReconcilerSettings,
    SchedulerSettings,
    StockReconcilerSettings,
    StoreSettings,
)
from fulfillment.services.endpoints import make_bsale_endpoints, make_store_endpoints
from fulfillment.stores.order_store import InMemoryOrderStore
from fulfillment.stores.stock_store import InMemoryStockStore

BSALE = "https://api.bsale.test"
STORE = "https://proj.supabase.test"

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def ts(minutes: int = 0) -> datetime:
    """Fixed timestamps so ordering in tests never depends on the wall clock."""
    return T0 + timedelta(minutes=minutes)


@pytest.fixture
def bsale_settings():
    return BsaleSettings(base_url=BSALE, access_token="test-token", page_size=2, backoff_ms=1)


@pytest.fixture
def store_settings():
    return StoreSettings(url=STORE, service_key="service-key", backoff_ms=1)


@pytest.fixture
def order_settings():
    return OrderReconcilerSettings()


@pytest.fixture
def stock_settings():
    return StockReconcilerSettings()


@pytest.fixture
def scheduler_settings():
    return SchedulerSettings(start_delay_s=0, order_interval_s=0.01, stock_interval_s=0.01, debounce_s=0)


@pytest.fixture
def bsale_endpoints(bsale_settings):
    return make_bsale_endpoints(bsale_settings)


@pytest.fixture
def store_endpoints(store_settings):
    return make_store_endpoints(store_settings)


@pytest_asyncio.fixture
async def bsale_http(bsale_settings):
    """
    HttpClient against the fake Bsale base url; the session is closed after the test.
    """
    async with HttpClient(bsale_settings.http_cfg(), headers=bsale_settings.auth_headers(), name="bsale") as client:
        yield client


@pytest_asyncio.fixture
async def store_http(store_settings):
    async with HttpClient(store_settings.http_cfg(), headers=store_settings.auth_headers(), name="store") as client:
        yield client


@pytest.fixture
def order_store():
    return InMemoryOrderStore()


@pytest.fixture
def stock_store():
    return InMemoryStockStore()
