"""In-memory doubles for the DynamoDB repositories and the menu catalog.

Each double applies its write conditions in one synchronous step, which is
atomic with respect to other coroutines on the event loop. That mirrors the
guarantees DynamoDB transactions give the real repositories.
"""

import asyncio
import itertools
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from cafe_order_service.errors import Forbidden, Locked, NotFound, OrderClosed
from cafe_order_service.models.menu_models import MenuItem
from cafe_order_service.models.order_models import (
    ItemStatus,
    LineItem,
    Order,
    PaymentStatus,
    Role,
    Session,
)
from cafe_order_service.services.order_service import OrderService


class InMemoryIdAllocator:
    def __init__(self) -> None:
        self._counter = itertools.count(1)

    def allocate(self) -> int:
        return next(self._counter)


class InMemoryLineItemRepository:
    def __init__(self, orders: dict[int, Order]) -> None:
        self.orders = orders
        self.lines: dict[tuple[int, str], LineItem] = {}

    def put(self, line: LineItem) -> None:
        self.lines[(line.order_id, line.line_id)] = line

    def list_for_order(self, order_id: int) -> list[LineItem]:
        lines = [line for (oid, _), line in self.lines.items() if oid == order_id]
        return sorted(lines, key=lambda line: (line.attached_at, line.line_id))

    def update_status(
        self, order_id: int, line_ids: list[str], status: ItemStatus, updated_at: datetime
    ) -> bool:
        targets = [self.lines[(order_id, line_id)] for line_id in line_ids]
        if any(line.last_updated > updated_at for line in targets):
            return False
        for line in targets:
            self.put(line.model_copy(update={"status": status, "last_updated": updated_at}))
        return True

    def update_comment(
        self, order_id: int, line_ids: list[str], comment: str, updated_at: datetime
    ) -> None:
        targets = [self.lines[(order_id, line_id)] for line_id in line_ids]
        if self.orders[order_id].is_paid or any(
            line.status != ItemStatus.NOT_STARTED for line in targets
        ):
            raise Locked(f"Comment on order {order_id} rejected")
        for line in targets:
            self.put(line.model_copy(update={"comment": comment, "last_updated": updated_at}))


class InMemoryOrderRepository:
    def __init__(self) -> None:
        self.orders: dict[int, Order] = {}
        self.line_items = InMemoryLineItemRepository(self.orders)

    def get_order(self, order_id: int) -> Order | None:
        return self.orders.get(order_id)

    def create_with_first_item(self, order: Order, line: LineItem) -> None:
        assert order.order_id not in self.orders
        self.orders[order.order_id] = order
        self.line_items.put(line)

    def attach_line(self, order_id: int, owner_login: str, line: LineItem) -> None:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        if order.owner_login != owner_login:
            raise Forbidden(f"Order {order_id} belongs to another customer")
        if order.is_paid:
            raise OrderClosed(f"Order {order_id} is already paid")
        self.line_items.put(line)
        self.orders[order_id] = order.model_copy(
            update={"total": order.total + line.unit_price, "line_count": order.line_count + 1}
        )

    def recompute_total(self, order_id: int) -> Decimal:
        if order_id not in self.orders:
            raise NotFound(f"Order {order_id} not found")
        total = sum(
            (line.unit_price for line in self.line_items.list_for_order(order_id)), Decimal("0")
        )
        self.orders[order_id] = self.orders[order_id].model_copy(update={"total": total})
        return total

    def set_payment_status(self, order_id: int, payment_status: PaymentStatus) -> Order:
        if order_id not in self.orders:
            raise NotFound(f"Order {order_id} not found")
        self.orders[order_id] = self.orders[order_id].model_copy(
            update={"payment_status": payment_status}
        )
        return self.orders[order_id]

    def list_orders_for_owner(self, owner_login: str, limit: int = 5) -> list[Order]:
        owned = [order for order in self.orders.values() if order.owner_login == owner_login]
        return sorted(owned, key=lambda order: order.order_id, reverse=True)[:limit]

    def list_open_orders(self, since: datetime) -> list[Order]:
        open_orders = [
            order
            for order in self.orders.values()
            if not order.is_paid and order.created_at >= since
        ]
        return sorted(open_orders, key=lambda order: order.created_at, reverse=True)


class InMemoryMenuCatalog:
    def __init__(self, items: list[MenuItem]) -> None:
        self.items = {item.name: item for item in items}

    async def lookup(self, item_name: str) -> MenuItem | None:
        # Yield so concurrent operations interleave at the network boundary
        await asyncio.sleep(0)
        return self.items.get(item_name)


class InMemoryUserDirectory:
    def __init__(self, roles: dict[str, Role]) -> None:
        self.roles = roles

    def role_of(self, login: str) -> Role | None:
        return self.roles.get(login)

    def exists(self, login: str) -> bool:
        return login in self.roles

    def session_for(self, login: str) -> Session:
        role = self.role_of(login)
        if role is None:
            raise NotFound(f"User {login} not found")
        return Session(login=login, role=role)


class SteppingClock:
    """Clock advancing one second per reading."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def order_repository() -> InMemoryOrderRepository:
    """Fixture providing an empty in-memory order store."""
    return InMemoryOrderRepository()


@pytest.fixture
def user_directory() -> InMemoryUserDirectory:
    """Fixture providing a directory with one user per role."""
    return InMemoryUserDirectory(
        {
            "alice": Role.CUSTOMER,
            "bob": Role.CUSTOMER,
            "erin": Role.EMPLOYEE,
            "mona": Role.MANAGER,
        }
    )


@pytest.fixture
def clock(fixed_now: datetime) -> SteppingClock:
    """Fixture providing a monotonically advancing clock."""
    return SteppingClock(fixed_now)


@pytest.fixture
def order_service(
    order_repository: InMemoryOrderRepository,
    user_directory: InMemoryUserDirectory,
    clock: SteppingClock,
    latte: MenuItem,
    muffin: MenuItem,
) -> OrderService:
    """Fixture providing an OrderService over the in-memory doubles."""
    return OrderService(
        order_repository=order_repository,  # type: ignore[arg-type]
        line_item_repository=order_repository.line_items,  # type: ignore[arg-type]
        id_allocator=InMemoryIdAllocator(),  # type: ignore[arg-type]
        menu_catalog=InMemoryMenuCatalog([latte, muffin]),  # type: ignore[arg-type]
        user_directory=user_directory,  # type: ignore[arg-type]
        clock=clock,
    )
