"""
Pytest fixtures for PharmPOS tests.

Every test runs against one temporary SQLite file; tables are emptied before
each test. Seed rows are written and read through short-lived sessions so no
test holds a read lock while the API writes.
"""

import os
import tempfile
from datetime import date, timedelta

_DB_DIR = tempfile.mkdtemp(prefix="pharmpos-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient

from pharmpos.database import Base, SessionLocal, engine, init_db
from pharmpos.main import app as fastapi_app
from pharmpos.models.inventory import InventoryItem
from pharmpos.models.user import User
from pharmpos.services import auth_service


@pytest.fixture(scope="session")
def app():
    init_db()
    yield fastapi_app
    engine.dispose()


@pytest.fixture(autouse=True)
def clean_tables(app):
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def cashier():
    """A persisted user with a known email and role."""
    with SessionLocal() as db:
        user = User(email="ada@pharmacy.test", first_name="Ada", last_name="Obi", role="PHARMACIST")
        db.add(user)
        db.commit()
        return {"id": user.id, "email": user.email, "role": user.role}


@pytest.fixture
def auth_headers(cashier):
    token = auth_service.create_access_token(cashier["id"], cashier["email"], cashier["role"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_item():
    """Factory: insert an inventory row and return its id."""

    def _make(name="Paracetamol 500mg", quantity=10, unit_price=2.5, cost_price=1.5, **fields):
        with SessionLocal() as db:
            item = InventoryItem(
                name=name,
                quantity=quantity,
                unit_price=unit_price,
                cost_price=cost_price,
                **fields,
            )
            db.add(item)
            db.commit()
            return item.id

    return _make


@pytest.fixture
def expired_date():
    return date.today() - timedelta(days=1)


@pytest.fixture
def stock_of():
    def _stock(item_id):
        with SessionLocal() as db:
            return db.get(InventoryItem, item_id).quantity

    return _stock


@pytest.fixture
def count_rows():
    def _count(model, **where):
        with SessionLocal() as db:
            return db.query(model).filter_by(**where).count()

    return _count
