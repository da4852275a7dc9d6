import os
import tempfile

# CRITICAL: Set environment variables BEFORE any marketplace imports.
# marketplace.config.settings is built at import time.
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), "test_marketplace.db")
_TEST_STORAGE_DIR = tempfile.mkdtemp(prefix="marketplace-storage-")
os.environ["SECRET_KEY"] = "test-secret-key-1234567890"
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{_TEST_DB_PATH}"
os.environ["ENVIRONMENT"] = "test"
os.environ["API_V1_STR"] = "/api"  # Ensure /api prefix is used in tests
os.environ["STORAGE_DIR"] = _TEST_STORAGE_DIR
os.environ["AUTO_ARCHIVE_ON_PAYMENT"] = "true"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from marketplace import models
from marketplace.core.security import Actor, create_access_token_for_actor
from marketplace.database import Base, get_db, engine as app_engine
from marketplace.main import app
from marketplace.models import ActorRole, SALES_ORDER_PIPELINE
from marketplace.services import lifecycle
from marketplace.services.notifications import register_sink, unregister_sink

# Use the same engine that the app uses
TEST_ENGINE = app_engine

TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=TEST_ENGINE, future=True
)

ADMIN = Actor(id="admin-1", role=ActorRole.admin)
CUSTOMER = Actor(id="customer-1", role=ActorRole.customer)
OTHER_CUSTOMER = Actor(id="customer-2", role=ActorRole.customer)
SUPPLIER = Actor(id="supplier-1", role=ActorRole.supplier)
OTHER_SUPPLIER = Actor(id="supplier-2", role=ActorRole.supplier)

RFQ_PAYLOAD = {
    "project_name": "Gearbox housing",
    "material": "Aluminium",
    "material_grade": "6061-T6",
    "finishing": "Anodized",
    "tolerance": "+/-0.05mm",
    "quantity": 250,
    "manufacturing_process": "cnc_machining",
    "manufacturing_subprocess": "5_axis",
    "international_manufacturing_ok": True,
    "notes": "Deburr all edges",
    "special_instructions": "Ship in foam trays",
}


def override_get_db():
    """Test database session that uses the test engine."""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope="function", autouse=True)
def setup_test_database():
    """
    Create all tables before each test and clean up after.
    Also restores dependency overrides so tests stay isolated.
    """
    original_overrides = dict(app.dependency_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)

    yield

    app.dependency_overrides.clear()
    app.dependency_overrides.update(original_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client():
    return TestClient(app)


def auth_headers(actor: Actor) -> dict:
    return {"Authorization": f"Bearer {create_access_token_for_actor(actor)}"}


@pytest.fixture
def headers():
    return auth_headers


@pytest.fixture
def captured_notifications():
    captured = []
    register_sink(captured.append)
    try:
        yield captured
    finally:
        unregister_sink(captured.append)


class LifecycleFlow:
    """Drives entities to a given point of the lifecycle through the services."""

    def __init__(self, db):
        self.db = db

    def rfq(self, customer: Actor = CUSTOMER, **overrides) -> models.Rfq:
        return lifecycle.create_rfq(self.db, customer, {**RFQ_PAYLOAD, **overrides})

    def bid(self, *, price: float = 100.0, lead_time_days: int = 10, customer: Actor = CUSTOMER):
        rfq = self.rfq(customer)
        lifecycle.assign_suppliers(self.db, rfq.id, [SUPPLIER.id], ADMIN)
        sq = lifecycle.submit_supplier_quote(
            self.db, rfq.id, SUPPLIER, {"price": price, "lead_time_days": lead_time_days}
        )
        return rfq, sq

    def sales_quote(self, *, markup_percent: float = 30.0, **kwargs) -> models.SalesQuote:
        rfq, sq = self.bid(**kwargs)
        return lifecycle.publish_sales_quote(self.db, rfq.id, sq.id, markup_percent, ADMIN)

    def accepted_quote(self, **kwargs) -> models.SalesQuote:
        quote = self.sales_quote(**kwargs)
        return lifecycle.accept_quote(self.db, quote.id, CUSTOMER)

    def quote_with_po(self, **kwargs) -> models.SalesQuote:
        quote = self.accepted_quote(**kwargs)
        return lifecycle.attach_purchase_order(
            self.db, quote.id, CUSTOMER, file_url="file:///po/customer-po.pdf", po_number="CPO-77"
        )

    def sales_order(self, **kwargs) -> models.SalesOrder:
        quote = self.quote_with_po(**kwargs)
        return lifecycle.convert_to_sales_order(self.db, quote.id, ADMIN)

    def advance_to(self, order: models.SalesOrder, target) -> models.SalesOrder:
        stages = list(SALES_ORDER_PIPELINE)
        for stage in stages[stages.index(order.order_status) + 1 : stages.index(target) + 1]:
            order = lifecycle.advance_order_status(self.db, order.id, stage, ADMIN)
        return order

    def delivered_order(self, **kwargs) -> models.SalesOrder:
        order = self.sales_order(**kwargs)
        return self.advance_to(order, models.SalesOrderStatus.delivered)

    def purchase_order(self, **kwargs) -> models.PurchaseOrder:
        quote = self.accepted_quote(**kwargs)
        return lifecycle.create_purchase_order(self.db, quote.id, ADMIN)


@pytest.fixture
def flow(db_session):
    return LifecycleFlow(db_session)
