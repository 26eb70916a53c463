"""Pytest configuration and fixtures."""

import copy
import os
import uuid
from collections.abc import Generator
from contextlib import ExitStack
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from itertools import count
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("SUPABASE_SIGNING_KEY_JWK", "test-signing-key-jwk")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe_secret_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_webhook_secret")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")
os.environ.setdefault("ADMIN_EMAIL", "admin@artmarket.test")
os.environ.setdefault("FRONTEND_URL", "https://artmarket.test")
os.environ.setdefault("TOPSHIP_BASE_URL", "https://topship.test/api")
os.environ.setdefault("TOPSHIP_API_KEY", "test-topship-key")

# Modules that bind get_supabase_client at import time
SUPABASE_CONSUMERS = (
    "src.core.supabase",
    "src.services.inventory_service",
    "src.services.order_service",
    "src.services.payment_service",
    "src.services.profile_service",
    "src.services.referral_service",
    "src.services.shipment_service",
)

PROFILE_ID = "11111111-1111-4111-8111-111111111111"
OTHER_PROFILE_ID = "22222222-2222-4222-8222-222222222222"
USER_ID = "550e8400-e29b-41d4-a716-446655440000"
ADMIN_USER_ID = "660e8400-e29b-41d4-a716-446655440000"


def _normalize(value: Any) -> Any:
    """Compare numbers by value, so "10" matches Decimal("10.00")."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value)
        except InvalidOperation:
            return value
    return str(value)


class FakeResponse:
    def __init__(self, data: list[dict[str, Any]]) -> None:
        self.data = data


class FakeQuery:
    """Chainable stand-in for a PostgREST request builder."""

    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self.db = db
        self.table = table
        self.op = "select"
        self.payload: Any = None
        self.filters: list[tuple[str, str, Any]] = []
        self.order_by: tuple[str, bool] | None = None
        self.bounds: tuple[int, int] | None = None
        self.max_rows: int | None = None

    def select(self, *columns: str) -> "FakeQuery":
        self.op = "select"
        return self

    def insert(self, payload: Any) -> "FakeQuery":
        self.op = "insert"
        self.payload = payload
        return self

    def update(self, payload: dict[str, Any]) -> "FakeQuery":
        self.op = "update"
        self.payload = payload
        return self

    def delete(self) -> "FakeQuery":
        self.op = "delete"
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(("eq", column, value))
        return self

    def in_(self, column: str, values: list[Any]) -> "FakeQuery":
        self.filters.append(("in", column, values))
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self.order_by = (column, desc)
        return self

    def range(self, start: int, end: int) -> "FakeQuery":
        self.bounds = (start, end)
        return self

    def limit(self, size: int) -> "FakeQuery":
        self.max_rows = size
        return self

    def _matches(self, row: dict[str, Any]) -> bool:
        for kind, column, value in self.filters:
            if kind == "eq" and _normalize(row.get(column)) != _normalize(value):
                return False
            if kind == "in" and _normalize(row.get(column)) not in {_normalize(v) for v in value}:
                return False
        return True

    def execute(self) -> FakeResponse:
        self.db.calls.append((self.table, self.op))
        failure = self.db.failures.get((self.table, self.op))
        if failure:
            raise failure

        rows = self.db.tables.setdefault(self.table, [])

        if self.op == "insert":
            payloads = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = [self.db.add(self.table, dict(item)) for item in payloads]
            return FakeResponse(copy.deepcopy(inserted))

        matched = [row for row in rows if self._matches(row)]

        if self.op == "update":
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return FakeResponse(copy.deepcopy(matched))

        if self.op == "delete":
            self.db.tables[self.table] = [row for row in rows if row not in matched]
            return FakeResponse(copy.deepcopy(matched))

        if self.order_by:
            column, desc = self.order_by
            matched = sorted(matched, key=lambda row: str(row.get(column)), reverse=desc)
        if self.bounds:
            start, end = self.bounds
            matched = matched[start:end + 1]
        if self.max_rows is not None:
            matched = matched[: self.max_rows]
        return FakeResponse(copy.deepcopy(matched))


class FakeSupabase:
    """In-memory Supabase client covering the query builder calls the services make."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], Exception] = {}
        self._clock = count()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def add(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row directly, filling in id and created_at."""
        row.setdefault("id", str(uuid.uuid4()))
        created = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=next(self._clock))
        row.setdefault("created_at", created.isoformat())
        self.tables.setdefault(table, []).append(row)
        return row

    def row(self, table: str, row_id: str) -> dict[str, Any] | None:
        for row in self.tables.get(table, []):
            if str(row["id"]) == str(row_id):
                return row
        return None

    def rows(self, table: str, **filters: Any) -> list[dict[str, Any]]:
        return [
            row
            for row in self.tables.get(table, [])
            if all(_normalize(row.get(k)) == _normalize(v) for k, v in filters.items())
        ]


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    get_settings.cache_clear()
    settings = get_settings()
    yield settings
    get_settings.cache_clear()


@pytest.fixture
def fake_db() -> Generator[FakeSupabase, None, None]:
    """Provide an in-memory Supabase client wired into every service.

    Yields:
        FakeSupabase: The fake client, for seeding and inspecting rows.
    """
    db = FakeSupabase()
    with ExitStack() as stack:
        for module in SUPABASE_CONSUMERS:
            stack.enter_context(patch(f"{module}.get_supabase_client", return_value=db))
        yield db


@pytest.fixture
def mock_stripe() -> Generator[MagicMock, None, None]:
    """Provide a mocked Stripe module for the payment service."""
    import stripe

    mock = MagicMock()
    mock.error = stripe.error
    with patch("src.services.payment_service.get_stripe", return_value=mock):
        yield mock


@pytest.fixture
def mock_resend() -> Generator[MagicMock, None, None]:
    """Capture outgoing emails instead of calling Resend."""
    with patch("src.services.email_service.resend.Emails.send", return_value={"id": "email_123"}) as send:
        yield send


@pytest.fixture
def profile(fake_db: FakeSupabase) -> dict[str, Any]:
    """Seed the buyer's profile."""
    return fake_db.add(
        "profiles",
        {
            "id": PROFILE_ID,
            "user_id": USER_ID,
            "user_email": "buyer@example.com",
            "name": "Ada Buyer",
            "mobile_number": "+2348000000000",
        },
    )


@pytest.fixture
def other_profile(fake_db: FakeSupabase) -> dict[str, Any]:
    """Seed a second, unrelated profile."""
    return fake_db.add(
        "profiles",
        {
            "id": OTHER_PROFILE_ID,
            "user_id": str(uuid.uuid4()),
            "user_email": "other@example.com",
            "name": "Other Person",
        },
    )


@pytest.fixture
def make_artwork(fake_db: FakeSupabase):
    """Factory for seeding artworks."""

    def _make(quantity: int = 5, price: str = "100.00", **fields: Any) -> dict[str, Any]:
        return fake_db.add(
            "artworks",
            {
                "title": "Untitled",
                "price": price,
                "quantity": quantity,
                "purchase_status": "InStock" if quantity else "SoldOut",
                **fields,
            },
        )

    return _make


@pytest.fixture
def make_order(fake_db: FakeSupabase):
    """Factory for seeding an order with line items.

    ``items`` is a list of (artwork, quantity) pairs.
    """

    def _make(
        profile_id: str = PROFILE_ID,
        items: list[tuple[dict[str, Any], int]] | None = None,
        status: str = "PENDING",
        **fields: Any,
    ) -> dict[str, Any]:
        items = items or []
        total = sum((Decimal(art["price"]) * qty for art, qty in items), Decimal("0"))
        order = fake_db.add(
            "orders",
            {
                "profile_id": profile_id,
                "status": status,
                "total_price": str(total),
                "shipping_cost": None,
                "delivery_address": "12 Admiralty Way",
                "city": "Lagos",
                "zip": "101233",
                "country": "NG",
                "referrer_code": None,
                **fields,
            },
        )
        for artwork, quantity in items:
            fake_db.add(
                "order_items",
                {
                    "order_id": order["id"],
                    "artwork_id": artwork["id"],
                    "quantity": quantity,
                    "price": str(Decimal(artwork["price"]) * quantity),
                },
            )
        return order

    return _make


@pytest.fixture
def user_context() -> Any:
    from src.schemas.auth import UserContext

    return UserContext(user_id=uuid.UUID(USER_ID), email="buyer@example.com", role="authenticated")


@pytest.fixture
def admin_context() -> Any:
    from src.schemas.auth import UserContext

    return UserContext(user_id=uuid.UUID(ADMIN_USER_ID), email="admin@artmarket.test", role="admin")


@pytest.fixture
def client(fake_db: FakeSupabase, user_context: Any) -> Generator[TestClient, None, None]:
    """Provide a test client authenticated as the buyer.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.api.deps import get_current_user
    from src.main import app

    app.dependency_overrides[get_current_user] = lambda: user_context
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
