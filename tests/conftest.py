import pytest
import httpx
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from app.core.config import Settings
from app.core.context import build_context
from app.database import create_tables, make_session_factory
from app.schemas.entities import (
    Address, LocalCustomer, LocalOrder, LocalProduct, OrderItem, ShippingLine,
)
from app.services.cache import MemoryCache
from app.services.storefront import InMemoryStorefront
from app.services.sync_ledger import SyncLedger
from mock_dolibarr import mock_server

DOLIBARR_URL = "http://dolibarr.test"
API_KEY = "test-dolibarr-key"

def make_settings(**overrides) -> Settings:
    values = dict(
        DOLIBARR_URL=DOLIBARR_URL,
        DOLIBARR_API_KEY=API_KEY,
        DOLIBARR_MAX_RETRIES=1,
        SYNC_CUSTOMERS=True,
        SYNC_ORDERS=True,
        SYNC_PRODUCTS=True,
        SYNC_INVENTORY=True,
        DEFAULT_WAREHOUSE_ID=1,
        DATABASE_URL="sqlite://",
        SECRET_KEY="test-secret",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)

@pytest.fixture
def settings():
    return make_settings()

@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()

@pytest.fixture
def ledger(session_factory):
    return SyncLedger(session_factory)

@pytest.fixture
def mock_dolibarr():
    """Фейковый Dolibarr в чистом состоянии"""
    mock_server.reset_state()
    yield mock_server
    mock_server.reset_state()

@pytest.fixture
def transport(mock_dolibarr):
    return httpx.ASGITransport(app=mock_dolibarr.app)

def past(minutes: int = 60) -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=minutes)

def make_customer(customer_id: int = 1, email: str = "jane@example.com", company: str = "") -> LocalCustomer:
    return LocalCustomer(
        id=customer_id,
        email=email,
        first_name="Jane",
        last_name="Doe",
        display_name="Jane Doe",
        billing=Address(
            first_name="Jane", last_name="Doe", company=company, email=email,
            phone="+33 1 23 45 67 89", address_1="1 Rue de Rivoli", city="Paris",
            postcode="75001", country="FR",
        ),
        date_modified=past(),
    )

def make_product(product_id: int = 10, sku: str = "SKU-10", price: float = 19.99, stock: int = 10) -> LocalProduct:
    return LocalProduct(
        id=product_id,
        name=f"Product {product_id}",
        sku=sku,
        description="A product",
        short_description="Short",
        price=price,
        stock_quantity=stock,
        date_modified=past(),
    )

def make_order(
    order_id: int = 100,
    customer_id=1,
    status: str = "processing",
    email: str = "jane@example.com",
    product_ids=(10,)
) -> LocalOrder:
    return LocalOrder(
        id=order_id,
        status=status,
        customer_id=customer_id,
        billing=Address(first_name="Jane", last_name="Doe", email=email, country="FR"),
        items=[
            OrderItem(name=f"Product {pid}", quantity=2, subtotal=40.0, subtotal_tax=8.0,
                      product_id=pid, sku=f"SKU-{pid}")
            for pid in product_ids
        ],
        shipping_lines=[ShippingLine(name="Flat rate", total=5.0)],
        date_created=past(120),
        date_modified=past(),
    )

@pytest.fixture
def storefront():
    return InMemoryStorefront(
        customers=[make_customer(1), make_customer(2, email="")],
        orders=[make_order()],
        products=[make_product(10), make_product(11, sku="SKU-11", price=5.0, stock=3)],
    )

@pytest.fixture
def memory_guard():
    guard = Mock()
    guard.is_too_high.return_value = False
    return guard

@pytest.fixture
async def context(settings, storefront, session_factory, transport, memory_guard):
    ctx = build_context(
        settings=settings,
        storefront=storefront,
        session_factory=session_factory,
        transport=transport,
        cache=MemoryCache(),
        memory_guard=memory_guard,
    )
    yield ctx
    await ctx.aclose()
