# tests/conftest.py

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import meit.main  # noqa: F401  registers every model on Base.metadata
from meit.db import Base, build_engine, get_db
from meit.main import app
from meit.models.customer import Customer
from meit.models.merchant import Merchant


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so several sessions can share one database"""
    engine = build_engine(f"sqlite:///{tmp_path / 'meit_test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def make_merchant(db_session, **overrides):
    values = dict(
        name="Cafe Central",
        points_per_unit=Decimal("1"),
        gift_card_threshold=100,
        gift_card_value=Decimal("5.00"),
        gift_card_expiry_days=30,
        gift_card_auto_generate=True,
        timezone="UTC",
        active=True,
    )
    values.update(overrides)
    merchant = Merchant(**values)
    db_session.add(merchant)
    db_session.commit()
    db_session.refresh(merchant)
    return merchant


@pytest.fixture
def merchant(db_session):
    return make_merchant(db_session)


@pytest.fixture
def other_merchant(db_session):
    return make_merchant(db_session, name="Panaderia Sur")


@pytest.fixture
def customer(db_session):
    customer = Customer(phone="+5491122334455", name="Ana", opt_in_marketing=True)
    db_session.add(customer)
    db_session.commit()
    db_session.refresh(customer)
    return customer


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def headers(merchant):
    return {"X-Merchant-Id": str(merchant.id), "X-Actor-Id": "cashier-1", "X-Actor-Role": "operator"}


@pytest.fixture
def admin_headers(merchant):
    return {"X-Merchant-Id": str(merchant.id), "X-Actor-Id": "owner-1", "X-Actor-Role": "admin"}
