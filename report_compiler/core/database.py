# report_compiler/core/database.py
"""Database configuration with dual database support.

The config store keeps derived-field definitions, async jobs, the result cache
and request logs. The data warehouse holds the relational data that compiled
report queries run against.
"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from report_compiler.core.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# ===== CONFIG DATABASE =====
DATABASE_URL = settings.database_url

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# ===== DATA WAREHOUSE DATABASE =====
DATA_WAREHOUSE_URL = settings.data_warehouse_url

dw_engine = create_engine(
    DATA_WAREHOUSE_URL,
    connect_args={"check_same_thread": False} if DATA_WAREHOUSE_URL.startswith("sqlite") else {},
)
DWSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=dw_engine)
DWBase = declarative_base()


# ===== SESSION GENERATORS =====


def get_db():
    """Get config database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_dw_db():
    """Get data warehouse database session."""
    db = DWSessionLocal()
    try:
        yield db
    finally:
        db.close()


# ===== TABLE CREATION =====


def create_all_tables():
    """Create tables in both databases."""
    # Import models to ensure they're registered with Base classes
    from report_compiler.logging.models import RequestLog  # noqa: F401
    from report_compiler.derived_fields.models import DerivedFieldDefinition  # noqa: F401
    from report_compiler.execution.models import ReportAsyncJob, ReportQueryCacheEntry  # noqa: F401
    from report_compiler.warehouse.models import Order, OrderItem, Product, Refund  # noqa: F401

    logger.info("Creating config database tables")
    Base.metadata.create_all(bind=engine)

    logger.info("Creating data warehouse tables")
    DWBase.metadata.create_all(bind=dw_engine)


def init_db():
    """Initialize both databases."""
    create_all_tables()
