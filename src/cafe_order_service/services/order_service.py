"""Order service: the operation set exposed to front ends."""

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from cafe_order_service.errors import (
    Forbidden,
    InvalidInput,
    ItemNotFound,
    Locked,
    NotFound,
    OrderClosed,
    StorageUnavailable,
)
from cafe_order_service.models.menu_models import MenuItem
from cafe_order_service.models.order_models import (
    ItemStatus,
    LineItem,
    LineItemView,
    Order,
    PaymentStatus,
    PlacedOrder,
    Session,
)
from cafe_order_service.observability import metrics, traced
from cafe_order_service.repositories.order_repositories import (
    LineItemRepository,
    OrderIdAllocator,
    OrderRepository,
)
from cafe_order_service.repositories.user_directory import UserDirectoryRepository
from cafe_order_service.services.menu_catalog_client import MenuCatalogClient

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 5
DEFAULT_OPEN_ORDER_WINDOW_HOURS = 24


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _require_text(value: str | None, field: str) -> str:
    """Return value stripped, or raise InvalidInput if it is empty."""
    if value is None or not value.strip():
        raise InvalidInput(f"{field} must not be empty")
    return value.strip()


def _require_order_id(order_id: int) -> int:
    if order_id < 1:
        raise InvalidInput(f"Order id must be positive, got {order_id}")
    return order_id


class OrderService:
    """Service for placing orders and tracking their items and payment.

    Every operation takes the caller's Session explicitly. Authorization and
    validation run before any write; each write commits its order and line item
    changes together or not at all.
    """

    def __init__(
        self,
        order_repository: OrderRepository,
        line_item_repository: LineItemRepository,
        id_allocator: OrderIdAllocator,
        menu_catalog: MenuCatalogClient,
        user_directory: UserDirectoryRepository,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize the OrderService.

        Args:
            order_repository: Repository for order headers
            line_item_repository: Repository for line items
            id_allocator: Source of new order identifiers
            menu_catalog: Client for item validation and prices
            user_directory: Repository for user existence checks
            history_limit: Number of orders returned by view_history
            clock: Source of the current UTC time
        """
        self.order_repository = order_repository
        self.line_item_repository = line_item_repository
        self.id_allocator = id_allocator
        self.menu_catalog = menu_catalog
        self.user_directory = user_directory
        self.history_limit = history_limit
        self.clock = clock

    @traced("order.place_first_item")
    async def place_first_item(
        self, session: Session, owner_login: str, item_name: str
    ) -> PlacedOrder:
        """Create a new order holding its first item.

        The identifier is allocated first; the order header and its first line
        item are then written in one transaction keyed by that identifier.

        Args:
            session: Caller context
            owner_login: Login the order is placed for
            item_name: Menu item to order

        Returns:
            PlacedOrder with the new order id and its total

        Raises:
            InvalidInput: If owner_login or item_name is empty
            Forbidden: If a customer places an order for someone else
            NotFound: If staff place an order for an unknown login
            ItemNotFound: If the menu has no such item
            AllocationFailed: If no identifier could be allocated
        """
        owner_login = _require_text(owner_login, "Owner login")
        item_name = _require_text(item_name, "Item name")

        if owner_login != session.login:
            if not session.role.is_staff:
                raise Forbidden("Customers may only place orders for themselves")
            if not self.user_directory.exists(owner_login):
                raise NotFound(f"User {owner_login} not found")

        menu_item = await self._lookup_menu_item(item_name)

        order_id = self.id_allocator.allocate()
        now = self.clock()
        line = self._new_line(order_id, menu_item, now)
        order = Order(
            order_id=order_id,
            owner_login=owner_login,
            created_at=now,
            payment_status=PaymentStatus.UNPAID,
            total=line.unit_price,
            line_count=1,
        )

        self.order_repository.create_with_first_item(order, line)

        metrics.record_order_created()
        metrics.record_item_attached(menu_item.name, order.total)
        logger.info(f"Order {order_id} created for {owner_login} with {menu_item.name}")

        return PlacedOrder(order_id=order_id, total=order.total)

    @traced("order.add_item_to_open_order")
    async def add_item_to_open_order(
        self, session: Session, order_id: int, item_name: str
    ) -> Decimal:
        """Attach another item to one of the caller's unpaid orders.

        Once the attach has committed the call succeeds; a failed reconciliation
        afterwards is logged and the stored total is returned.

        Args:
            session: Caller context
            order_id: Order to extend
            item_name: Menu item to add

        Returns:
            Decimal: The recomputed order total

        Raises:
            InvalidInput: If item_name is empty
            NotFound: If the order does not exist
            Forbidden: If the caller does not own the order
            OrderClosed: If the order is already paid
            ItemNotFound: If the menu has no such item
        """
        _require_order_id(order_id)
        item_name = _require_text(item_name, "Item name")

        order = self._get_order(order_id)
        if not session.owns(order):
            raise Forbidden(f"Order {order_id} belongs to another customer")
        if order.is_paid:
            raise OrderClosed(f"Order {order_id} is already paid")

        menu_item = await self._lookup_menu_item(item_name)
        line = self._new_line(order_id, menu_item, self.clock())

        self.order_repository.attach_line(order_id, session.login, line)
        total = self._reconciled_total(order, line)

        metrics.record_item_attached(menu_item.name, total)
        logger.info(f"{menu_item.name} added to order {order_id}, total now {total}")

        return total

    @traced("order.recompute_total")
    async def recompute_total(self, session: Session, order_id: int) -> Decimal:
        """Recompute an order's total from its line items.

        Args:
            session: Caller context; the owner or staff
            order_id: Order to reconcile

        Returns:
            Decimal: The persisted total
        """
        _require_order_id(order_id)
        order = self._get_order(order_id)
        self._require_owner_or_staff(session, order)

        return self.order_repository.recompute_total(order_id)

    @traced("order.view_history")
    async def view_history(self, session: Session, owner_login: str) -> list[Order]:
        """List an owner's most recent orders, newest first.

        Args:
            session: Caller context
            owner_login: Whose orders to list

        Returns:
            list: At most history_limit orders

        Raises:
            Forbidden: If a customer asks for someone else's history
        """
        owner_login = _require_text(owner_login, "Owner login")
        if owner_login != session.login and not session.role.is_staff:
            raise Forbidden("Customers may only view their own order history")

        return self.order_repository.list_orders_for_owner(owner_login, limit=self.history_limit)

    @traced("order.view_status")
    async def view_status(self, session: Session, order_id: int) -> list[LineItemView]:
        """Show the preparation status of every item of an order.

        Customers see only their own orders; staff see any order.

        Args:
            session: Caller context
            order_id: Order to inspect

        Returns:
            list: Line item views ordered by attach time
        """
        _require_order_id(order_id)
        order = self._get_order(order_id)
        self._require_owner_or_staff(session, order)

        return [line.to_view() for line in self.line_item_repository.list_for_order(order_id)]

    @traced("order.view_open_orders")
    async def view_open_orders(
        self, session: Session, max_age_hours: float = DEFAULT_OPEN_ORDER_WINDOW_HOURS
    ) -> list[Order]:
        """List unpaid orders created within the trailing window.

        Args:
            session: Caller context; staff only
            max_age_hours: Size of the window in hours

        Returns:
            list: Unpaid orders, newest first
        """
        self._require_staff(session, "view open orders")
        if max_age_hours <= 0:
            raise InvalidInput(f"Window must be positive, got {max_age_hours} hours")

        since = self.clock() - timedelta(hours=max_age_hours)
        return self.order_repository.list_open_orders(since)

    @traced("order.set_payment_status")
    async def set_payment_status(self, session: Session, order_id: int, paid: bool) -> Order:
        """Mark an order paid, or reopen it as unpaid.

        Args:
            session: Caller context; staff only
            order_id: Order to update
            paid: True to settle the order, False to reopen it

        Returns:
            Order: The updated order

        Raises:
            Forbidden: If the caller is a customer
            NotFound: If the order does not exist
        """
        self._require_staff(session, "change payment status")
        _require_order_id(order_id)

        payment_status = PaymentStatus.PAID if paid else PaymentStatus.UNPAID
        order = self.order_repository.set_payment_status(order_id, payment_status)

        metrics.record_payment_change(payment_status.value)
        logger.info(f"Order {order_id} marked {payment_status.value} by {session.login}")

        return order

    @traced("order.set_item_status")
    async def set_item_status(
        self,
        session: Session,
        order_id: int,
        item_name: str,
        status: ItemStatus | str,
        line_id: str | None = None,
    ) -> list[LineItemView]:
        """Set the preparation status of an order's items.

        Any of the three statuses may be set at any time, in either direction.
        Without line_id every row carrying item_name is updated.

        Args:
            session: Caller context; staff only
            order_id: Order the items belong to
            item_name: Menu item name to update
            status: New status
            line_id: Restrict the update to a single line item

        Returns:
            list: Current views of the targeted line items

        Raises:
            Forbidden: If the caller is a customer
            NotFound: If the order or the line item does not exist
        """
        self._require_staff(session, "change item status")
        _require_order_id(order_id)
        item_name = _require_text(item_name, "Item name")
        try:
            new_status = ItemStatus(status)
        except ValueError as e:
            raise InvalidInput(f"Unknown item status {status!r}") from e

        self._get_order(order_id)
        targets = self._matching_lines(order_id, item_name, line_id)
        target_ids = [line.line_id for line in targets]

        applied = self.line_item_repository.update_status(
            order_id, target_ids, new_status, self.clock()
        )
        if applied:
            metrics.record_status_change(new_status.value, len(target_ids))
            logger.info(
                f"{item_name} on order {order_id} set to {new_status.value} by {session.login}"
            )

        return self._current_views(order_id, target_ids)

    @traced("order.set_comment")
    async def set_comment(
        self,
        session: Session,
        order_id: int,
        item_name: str,
        comment: str,
        line_id: str | None = None,
    ) -> list[LineItemView]:
        """Attach or overwrite the comment on an order's items.

        Only allowed while the order is unpaid and the items have not started.

        Args:
            session: Caller context; the owner or staff
            order_id: Order the items belong to
            item_name: Menu item name to comment on
            comment: Comment text
            line_id: Restrict the comment to a single line item

        Returns:
            list: Current views of the targeted line items

        Raises:
            Forbidden: If a customer comments on someone else's order
            NotFound: If the order or the line item does not exist
            Locked: If the order is paid or an item is already in preparation
        """
        _require_order_id(order_id)
        item_name = _require_text(item_name, "Item name")
        if comment is None:
            raise InvalidInput("Comment must be provided")

        order = self._get_order(order_id)
        self._require_owner_or_staff(session, order)
        if order.is_paid:
            raise Locked(f"Order {order_id} is already paid")

        targets = self._matching_lines(order_id, item_name, line_id)
        if any(line.status != ItemStatus.NOT_STARTED for line in targets):
            raise Locked(f"{item_name} on order {order_id} is already in preparation")

        target_ids = [line.line_id for line in targets]
        self.line_item_repository.update_comment(order_id, target_ids, comment, self.clock())
        logger.info(f"Comment on {item_name} of order {order_id} updated by {session.login}")

        return self._current_views(order_id, target_ids)

    async def _lookup_menu_item(self, item_name: str) -> MenuItem:
        menu_item = await self.menu_catalog.lookup(item_name)
        if menu_item is None:
            raise ItemNotFound(f"{item_name} is not on the menu")
        return menu_item

    def _new_line(self, order_id: int, menu_item: MenuItem, now: datetime) -> LineItem:
        return LineItem(
            order_id=order_id,
            line_id=f"line_{uuid.uuid4().hex[:12]}",
            item_name=menu_item.name,
            unit_price=menu_item.price,
            status=ItemStatus.NOT_STARTED,
            attached_at=now,
            last_updated=now,
        )

    def _reconciled_total(self, order: Order, attached: LineItem) -> Decimal:
        """Return an order's total after a committed attach.

        The attach has already added the price to the stored total, so a failed
        reconciliation falls back to the stored total instead of failing the
        operation.
        """
        try:
            return self.order_repository.recompute_total(order.order_id)
        except StorageUnavailable as e:
            logger.warning(f"Recompute of order {order.order_id} failed after attach: {e}")

        try:
            current = self.order_repository.get_order(order.order_id)
        except StorageUnavailable as e:
            logger.warning(f"Re-read of order {order.order_id} failed after attach: {e}")
            current = None

        if current is not None:
            return current.total
        # Last known total plus this attach
        return order.total + attached.unit_price

    def _get_order(self, order_id: int) -> Order:
        order = self.order_repository.get_order(order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    def _matching_lines(
        self, order_id: int, item_name: str, line_id: str | None
    ) -> list[LineItem]:
        """Return the rows of an order carrying item_name (and line_id, if given)."""
        lines = [
            line
            for line in self.line_item_repository.list_for_order(order_id)
            if line.item_name == item_name and (line_id is None or line.line_id == line_id)
        ]
        if not lines:
            raise NotFound(f"{item_name} is not on order {order_id}")
        return lines

    def _current_views(self, order_id: int, line_ids: list[str]) -> list[LineItemView]:
        wanted = set(line_ids)
        return [
            line.to_view()
            for line in self.line_item_repository.list_for_order(order_id)
            if line.line_id in wanted
        ]

    @staticmethod
    def _require_staff(session: Session, action: str) -> None:
        if not session.role.is_staff:
            raise Forbidden(f"Only employees and managers may {action}")

    @staticmethod
    def _require_owner_or_staff(session: Session, order: Order) -> None:
        if not session.role.is_staff and not session.owns(order):
            raise Forbidden(f"Order {order.order_id} belongs to another customer")
