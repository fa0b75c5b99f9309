"""Shared fixtures for the billing tests."""

import copy
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from billing_api.db.engine import get_engine
from billing_api.db.schema import metadata
from billing_api.main import app
from billing_api.models.bills import Bill, BillIn, BillItem, ClientDetails
from billing_api.models.common import utcnow
from billing_api.services import bill_store
from billing_api.services.access import Actor

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
ADMIN_ID = "admin-1"

BASE_PAYLOAD = {
    "clientDetails": {
        "clientName": "Ramesh Kumar",
        "phoneNumber": "9876543210",
        "gender": "Male",
        "village": "Khandala",
    },
    "references": [],
    "items": [{"itemName": "Wheat seeds", "quantity": 2, "unitPrice": 100}],
    "tax": 0,
}


@pytest.fixture
def engine(tmp_path):
    """A fresh SQLite database per test."""
    engine = create_engine(f"sqlite:///{tmp_path / 'billing.sqlite'}", future=True)
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def client(engine):
    """TestClient wired to the per-test database."""
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user():
    return Actor(user_id=USER_ID)


@pytest.fixture
def other_user():
    return Actor(user_id=OTHER_USER_ID)


@pytest.fixture
def admin():
    return Actor(user_id=ADMIN_ID, role="Admin")


@pytest.fixture
def user_headers():
    return {"X-User-Id": USER_ID, "X-User-Role": "User"}


@pytest.fixture
def other_headers():
    return {"X-User-Id": OTHER_USER_ID, "X-User-Role": "User"}


@pytest.fixture
def admin_headers():
    return {"X-User-Id": ADMIN_ID, "X-User-Role": "Admin"}


@pytest.fixture
def make_payload():
    """Build a camelCase bill body; keyword overrides replace top-level keys."""

    def _make(**overrides):
        payload = copy.deepcopy(BASE_PAYLOAD)
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def make_bill_in(make_payload):
    def _make(**overrides):
        return BillIn.model_validate(make_payload(**overrides))

    return _make


@pytest.fixture
def make_bill():
    """An in-memory bill with totals already computed (never persisted)."""

    def _make(items=((2, "100"),), tax="0", status="Draft"):
        now = utcnow()
        bill = Bill(
            id="a" * 32,
            bill_number="BILL-000001",
            client_details=ClientDetails(
                client_name="Ramesh Kumar",
                phone_number="9876543210",
                gender="Male",
                village="Khandala",
            ),
            items=[
                BillItem(item_name=f"Item {i}", quantity=qty, unit_price=Decimal(price))
                for i, (qty, price) in enumerate(items, start=1)
            ],
            tax=Decimal(tax),
            status=status,
            created_by_user_id=USER_ID,
            created_at=now,
            updated_at=now,
        )
        return bill_store.recompute_bill(bill, now)

    return _make


@pytest.fixture
def stored_bill(engine, user, make_bill_in):
    """A persisted 2 x 100 bill owned by user-1."""
    return bill_store.create_bill(engine, make_bill_in(), user)
