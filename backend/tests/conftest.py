"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-at-least-32-characters")
os.environ.setdefault("TIMEZONE", "UTC")

import pytest
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cueclub.core.rbac import UserRole
from cueclub.core.security import get_password_hash, create_access_token
from cueclub.db.base import Base
from cueclub.db.session import configure_sqlite, get_db
from cueclub.main import app
# Import all models to ensure they're registered with Base.metadata
from cueclub.models import *
from cueclub.models.catalog import Product, ProductCategory, Table, TableType
from cueclub.models.setting import VenueSetting
from cueclub.models.snapshots import RoundingMode
from cueclub.models.user import User

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiter during tests to avoid flaky failures
    from cueclub.core.rate_limit import limiter
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    limiter.enabled = True
    app.dependency_overrides.clear()


# ============== Users and tokens ==============


def _make_user(db_session: Session, email: str, role: UserRole) -> User:
    user = User(
        email=email,
        password_hash=get_password_hash("testpass123"),
        role=role,
        name=email.split("@")[0].title(),
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def _token_for(user: User) -> str:
    return create_access_token(
        data={"sub": str(user.id), "email": user.email, "role": user.role.value}
    )


@pytest.fixture
def staff_user(db_session: Session) -> User:
    """Front-desk staff account."""
    return _make_user(db_session, "staff@example.com", UserRole.STAFF)


@pytest.fixture
def manager_user(db_session: Session) -> User:
    """Manager account."""
    return _make_user(db_session, "manager@example.com", UserRole.MANAGER)


@pytest.fixture
def auth_headers(staff_user: User) -> dict:
    """Authentication headers for the staff user."""
    return {"Authorization": f"Bearer {_token_for(staff_user)}"}


@pytest.fixture
def manager_headers(manager_user: User) -> dict:
    """Authentication headers for the manager."""
    return {"Authorization": f"Bearer {_token_for(manager_user)}"}


# ============== Catalog ==============


@pytest.fixture
def pool_type(db_session: Session) -> TableType:
    """Pool table type at 50,000/h with a cheaper weekday-morning slot."""
    table_type = TableType(
        code="pool",
        name="Pool",
        base_rate_per_hour=50000,
        day_rates=[
            {"days": [1, 2, 3, 4, 5], "from": "06:00", "to": "09:00", "rate_per_hour": 40000},
        ],
    )
    db_session.add(table_type)
    db_session.commit()
    db_session.refresh(table_type)
    return table_type


@pytest.fixture
def carom_type(db_session: Session) -> TableType:
    """Carom table type at a different rate from Pool."""
    table_type = TableType(code="carom", name="Carom", base_rate_per_hour=70000, day_rates=[])
    db_session.add(table_type)
    db_session.commit()
    db_session.refresh(table_type)
    return table_type


@pytest.fixture
def tables(db_session: Session, pool_type: TableType, carom_type: TableType) -> dict:
    """Two pool tables and one carom table, keyed by name."""
    rows = [
        Table(name="P1", table_type_id=pool_type.id, sort_order=1),
        Table(name="P2", table_type_id=pool_type.id, sort_order=2),
        Table(name="C1", table_type_id=carom_type.id, sort_order=3),
    ]
    db_session.add_all(rows)
    db_session.commit()
    for row in rows:
        db_session.refresh(row)
    return {row.name: row for row in rows}


@pytest.fixture
def drinks(db_session: Session) -> ProductCategory:
    category = ProductCategory(name="Drinks")
    db_session.add(category)
    db_session.commit()
    db_session.refresh(category)
    return category


@pytest.fixture
def snacks(db_session: Session) -> ProductCategory:
    category = ProductCategory(name="Snacks")
    db_session.add(category)
    db_session.commit()
    db_session.refresh(category)
    return category


@pytest.fixture
def products(db_session: Session, drinks: ProductCategory, snacks: ProductCategory) -> dict:
    """Beer and water in Drinks, peanuts in Snacks, keyed by short name."""
    rows = {
        "beer": Product(name="Beer", category_id=drinks.id, price=20000, unit="can"),
        "water": Product(name="Water", category_id=drinks.id, price=10000, unit="bottle"),
        "peanuts": Product(name="Peanuts", category_id=snacks.id, price=15000, unit="bag"),
    }
    db_session.add_all(rows.values())
    db_session.commit()
    for row in rows.values():
        db_session.refresh(row)
    return rows


@pytest.fixture
def venue_setting(db_session: Session) -> VenueSetting:
    """15-minute ceiling steps with a 5-minute grace period."""
    setting = VenueSetting(rounding_step=15, rounding_mode=RoundingMode.CEIL, grace_minutes=5)
    db_session.add(setting)
    db_session.commit()
    db_session.refresh(setting)
    return setting
