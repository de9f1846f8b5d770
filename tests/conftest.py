"""
Test configuration and shared fixtures for the report compiler test suite.
Provides database setup, the sample warehouse, and the API test client.
"""

import os
import tempfile

# Settings are read at import time, so point every database at a scratch
# directory before anything from report_compiler is imported.
_TMP_DIR = tempfile.mkdtemp(prefix="report_compiler_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/config.db"
os.environ["DATA_WAREHOUSE_URL"] = f"sqlite:///{_TMP_DIR}/warehouse.db"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"

from datetime import date, datetime
from decimal import Decimal
from typing import List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from report_compiler.app import create_app
from report_compiler.core.config import Settings
from report_compiler.core.database import Base, DWBase, get_db, get_dw_db
from report_compiler.core.dependencies import get_execution_service
from report_compiler.derived_fields.schemas import build_derived_field
from report_compiler.execution.service import QueryExecutionService
from report_compiler.joins.schemas import JoinCondition, JoinType
from report_compiler.schema_registry.registry import get_schema_registry
from report_compiler.warehouse.models import Order, OrderItem, Product, Refund


# ===== DATABASE SETUP =====


@pytest.fixture(scope="session")
def config_engine():
    """Create in-memory SQLite engine for config database"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    # Import all config models to register them
    from report_compiler.derived_fields.models import DerivedFieldDefinition  # noqa: F401
    from report_compiler.execution.models import ReportAsyncJob, ReportQueryCacheEntry  # noqa: F401
    from report_compiler.logging.models import RequestLog  # noqa: F401

    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="session")
def dw_engine():
    """Create in-memory SQLite engine for data warehouse database"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    DWBase.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def config_db_session(config_engine):
    """Create a database session for config database"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=config_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        # Clean up all data after each test
        Base.metadata.drop_all(bind=config_engine)
        Base.metadata.create_all(bind=config_engine)


@pytest.fixture(scope="function")
def dw_db_session(dw_engine):
    """Create a database session for data warehouse database"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=dw_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        DWBase.metadata.drop_all(bind=dw_engine)
        DWBase.metadata.create_all(bind=dw_engine)


# ===== CONFIGURATION =====


@pytest.fixture
def registry():
    """Schema registry over the warehouse models"""
    return get_schema_registry()


@pytest.fixture
def settings():
    """Settings with fast polling so runner tests never wait"""
    return Settings(
        poll_interval_seconds=0.01,
        poll_backoff=2.0,
        poll_max_interval_seconds=0.05,
        poll_max_attempts=5,
    )


# ===== SAMPLE DATA =====


@pytest.fixture
def sample_warehouse(dw_db_session):
    """Three orders, four order lines, two refunds"""
    products = [
        Product(id=1, name="Kayak tour", category="tours", price=Decimal("80.00"), in_stock=True),
        Product(id=2, name="Pub crawl", category="nightlife", price=Decimal("25.00"), in_stock=True),
    ]
    orders = [
        Order(
            id=1, customer_name="Ada", status="paid", total=Decimal("160.00"),
            discount_rate=Decimal("0.1000"), is_paid=True, created_at=datetime(2024, 1, 15, 10, 30),
        ),
        Order(
            id=2, customer_name="Grace", status="paid", total=Decimal("50.00"),
            discount_rate=None, is_paid=True, created_at=datetime(2024, 1, 20, 18, 0),
        ),
        Order(
            id=3, customer_name="Linus", status="open", total=Decimal("25.00"),
            discount_rate=None, is_paid=False, created_at=datetime(2024, 2, 3, 9, 15),
        ),
    ]
    items = [
        OrderItem(id=1, order_id=1, product_id=1, quantity=2, unit_price=Decimal("80.00")),
        OrderItem(id=2, order_id=2, product_id=2, quantity=2, unit_price=Decimal("25.00")),
        OrderItem(id=3, order_id=3, product_id=2, quantity=1, unit_price=Decimal("25.00")),
        OrderItem(id=4, order_id=1, product_id=2, quantity=0, unit_price=Decimal("25.00")),
    ]
    refunds = [
        Refund(id=1, order_id=1, amount=Decimal("40.00"), reason="weather", refunded_on=date(2024, 1, 16)),
        Refund(id=2, order_id=2, amount=Decimal("10.00"), reason="late start", refunded_on=date(2024, 1, 21)),
    ]
    dw_db_session.add_all(products + orders)
    dw_db_session.flush()
    dw_db_session.add_all(items + refunds)
    dw_db_session.commit()
    return {"products": products, "orders": orders, "items": items, "refunds": refunds}


@pytest.fixture
def orders_refunds_join():
    """orders.id = refunds.order_id, keeping every order"""
    return JoinCondition(
        id="join-1",
        left_model="orders",
        left_field="id",
        right_model="refunds",
        right_field="order_id",
        join_type=JoinType.LEFT,
    )


@pytest.fixture
def net_field():
    """net = orders.total - refunds.amount"""
    return build_derived_field("net", "net", "orders.total - refunds.amount")


# ===== API CLIENT =====


@pytest.fixture
def dispatched_jobs() -> List[str]:
    """Job ids handed to the background dispatcher"""
    return []


@pytest.fixture
def execution_service(config_db_session, dw_db_session, registry, settings, dispatched_jobs):
    return QueryExecutionService(
        config_db_session, dw_db_session, registry, settings, dispatcher=dispatched_jobs.append
    )


@pytest.fixture
def client(config_db_session, dw_db_session, execution_service):
    """Test client with both databases and the execution service overridden"""
    app = create_app()

    def override_get_db():
        yield config_db_session

    def override_get_dw_db():
        yield dw_db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dw_db] = override_get_dw_db
    app.dependency_overrides[get_execution_service] = lambda: execution_service

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
