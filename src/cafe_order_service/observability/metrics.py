"""Custom metrics for the cafe order service."""

from decimal import Decimal

from opentelemetry import metrics

meter = metrics.get_meter("cafe-order-svc")

orders_created_counter = meter.create_counter(
    name="orders_created_total",
    description="Total number of orders created",
    unit="1",
)

items_attached_counter = meter.create_counter(
    name="line_items_attached_total",
    description="Total number of line items attached to orders by item name",
    unit="1",
)

payment_changes_counter = meter.create_counter(
    name="order_payment_changes_total",
    description="Total number of payment status changes by target status",
    unit="1",
)

status_changes_counter = meter.create_counter(
    name="line_item_status_changes_total",
    description="Total number of line item status changes by target status",
    unit="1",
)

operation_failures_counter = meter.create_counter(
    name="order_operation_failures_total",
    description="Total number of failed order operations by operation and error kind",
    unit="1",
)

order_total_histogram = meter.create_histogram(
    name="order_total_amount",
    description="Order totals after each item attach",
    unit="1",
)


def record_order_created() -> None:
    """Record a newly created order."""
    orders_created_counter.add(1)


def record_item_attached(item_name: str, order_total: Decimal) -> None:
    """Record a line item attached to an order.

    Args:
        item_name: Menu item that was attached
        order_total: Order total after the attach
    """
    items_attached_counter.add(1, {"item_name": item_name})
    order_total_histogram.record(float(order_total))


def record_payment_change(payment_status: str) -> None:
    """Record an order payment status change.

    Args:
        payment_status: The status the order moved to
    """
    payment_changes_counter.add(1, {"payment_status": payment_status})


def record_status_change(status: str, line_count: int) -> None:
    """Record a line item status change.

    Args:
        status: The status the items moved to
        line_count: Number of line items updated
    """
    status_changes_counter.add(line_count, {"status": status})


def record_operation_failure(operation: str, error_kind: str) -> None:
    """Record a failed operation.

    Args:
        operation: Service operation name (e.g., "place_first_item")
        error_kind: Kind of the raised error (e.g., "order_closed")
    """
    operation_failures_counter.add(1, {"operation": operation, "error_kind": error_kind})
