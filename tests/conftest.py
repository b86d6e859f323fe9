"""Shared pytest fixtures and configuration for all tests."""

import os
from datetime import UTC, datetime
from decimal import Decimal

import pytest

# Keep lambda_handler from configuring logging and exporters on import
os.environ.setdefault("ENVIRONMENT", "test")

from cafe_order_service.models.menu_models import MenuItem  # noqa: E402
from cafe_order_service.models.order_models import Role, Session  # noqa: E402


@pytest.fixture
def fixed_now() -> datetime:
    """Fixture providing a fixed point in time for timestamps."""
    return datetime(2024, 1, 15, 10, 30, 0, tzinfo=UTC)


@pytest.fixture
def customer_session() -> Session:
    """Fixture providing a customer caller."""
    return Session(login="alice", role=Role.CUSTOMER)


@pytest.fixture
def other_customer_session() -> Session:
    """Fixture providing a second customer caller."""
    return Session(login="bob", role=Role.CUSTOMER)


@pytest.fixture
def employee_session() -> Session:
    """Fixture providing an employee caller."""
    return Session(login="erin", role=Role.EMPLOYEE)


@pytest.fixture
def manager_session() -> Session:
    """Fixture providing a manager caller."""
    return Session(login="mona", role=Role.MANAGER)


@pytest.fixture
def latte() -> MenuItem:
    """Fixture providing the Latte menu item."""
    return MenuItem(
        name="Latte",
        category="Drinks",
        price=Decimal("3.50"),
        description="Espresso with steamed milk",
        image_url=None,
    )


@pytest.fixture
def muffin() -> MenuItem:
    """Fixture providing the Muffin menu item."""
    return MenuItem(
        name="Muffin",
        category="Bakery",
        price=Decimal("2.25"),
        description="Blueberry muffin",
        image_url="https://example.com/muffin.jpg",
    )


@pytest.fixture
def order_item() -> dict:
    """Fixture providing a stored order as returned by DynamoDB."""
    return {
        "order_id": Decimal("1"),
        "owner_login": "alice",
        "created_at": "2024-01-15T10:30:00.000000+00:00",
        "payment_status": "unpaid",
        "total": Decimal("3.50"),
        "line_count": Decimal("1"),
    }


@pytest.fixture
def line_item() -> dict:
    """Fixture providing a stored line item as returned by DynamoDB."""
    return {
        "order_id": Decimal("1"),
        "line_id": "line_0123456789ab",
        "item_name": "Latte",
        "unit_price": Decimal("3.50"),
        "status": "not_started",
        "attached_at": "2024-01-15T10:30:00.000000+00:00",
        "last_updated": "2024-01-15T10:30:00.000000+00:00",
    }
