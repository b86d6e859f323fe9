"""Order, line item and caller models.

These models represent orders and their line items for DynamoDB storage and
retrieval, plus the explicit caller session threaded through every service call.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f%z"


def format_timestamp(value: datetime) -> str:
    """Format a timestamp as a fixed-width UTC ISO-8601 string.

    ``datetime.isoformat`` drops the fraction when it is zero, which breaks
    lexicographic comparison in DynamoDB key and condition expressions.

    Args:
        value: Timezone-aware timestamp

    Returns:
        str: e.g. ``2024-01-15T10:30:00.000000+00:00``
    """
    stamp = value.astimezone(UTC).strftime(TIMESTAMP_FORMAT)
    return f"{stamp[:-2]}:{stamp[-2:]}"


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp written by ``format_timestamp``."""
    return datetime.fromisoformat(value)


class Role(str, Enum):
    """Enumeration of caller roles."""

    CUSTOMER = "customer"
    EMPLOYEE = "employee"
    MANAGER = "manager"

    @property
    def is_staff(self) -> bool:
        """Employees and managers may act on any order."""
        return self in (Role.EMPLOYEE, Role.MANAGER)


class PaymentStatus(str, Enum):
    """Enumeration of order payment states."""

    UNPAID = "unpaid"
    PAID = "paid"


class ItemStatus(str, Enum):
    """Enumeration of line item preparation states."""

    NOT_STARTED = "not_started"
    STARTED = "started"
    FINISHED = "finished"


class Session(BaseModel):
    """Identity of the caller for one service invocation."""

    model_config = ConfigDict(frozen=True)

    login: str = Field(..., description="Caller login", min_length=1)
    role: Role = Field(..., description="Caller role")

    def owns(self, order: "Order") -> bool:
        """Return True if the caller is the order's owner."""
        return order.owner_login == self.login


class Order(BaseModel):
    """Order header.

    Stored in DynamoDB with order_id as partition key. The running total is
    kept equal to the sum of the unit prices of the order's line items.
    """

    order_id: int = Field(..., description="Allocated order identifier", ge=1)
    owner_login: str = Field(..., description="Login of the customer who owns the order")
    created_at: datetime = Field(..., description="Order creation timestamp")
    payment_status: PaymentStatus = Field(
        default=PaymentStatus.UNPAID, description="Current payment status"
    )
    total: Decimal = Field(default=Decimal("0"), description="Running total", ge=0)
    line_count: int = Field(default=0, description="Number of attached line items", ge=0)

    @field_validator("total")
    @classmethod
    def validate_total(cls, v: Decimal) -> Decimal:
        """Validate that total is non-negative."""
        if v < 0:
            raise ValueError("total must be non-negative")
        return v

    @property
    def is_paid(self) -> bool:
        """Whether the order has been settled."""
        return self.payment_status == PaymentStatus.PAID

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        return {
            "order_id": self.order_id,
            "owner_login": self.owner_login,
            "created_at": format_timestamp(self.created_at),
            "payment_status": self.payment_status.value,
            "total": self.total,
            "line_count": self.line_count,
        }

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "Order":
        """Create Order from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Order: Parsed model instance
        """
        return cls(
            order_id=int(item["order_id"]),
            owner_login=item["owner_login"],
            created_at=parse_timestamp(item["created_at"]),
            payment_status=PaymentStatus(item["payment_status"]),
            total=Decimal(str(item.get("total", 0))),
            line_count=int(item.get("line_count", 0)),
        )


class LineItem(BaseModel):
    """One menu item attached to one order.

    Stored in DynamoDB with (order_id, line_id) as composite key. Attaching the
    same item name twice produces two rows, each tracked independently.
    """

    order_id: int = Field(..., description="Parent order identifier", ge=1)
    line_id: str = Field(..., description="Line identifier, unique within the order")
    item_name: str = Field(..., description="Menu item name")
    unit_price: Decimal = Field(..., description="Price captured when attached", ge=0)
    status: ItemStatus = Field(default=ItemStatus.NOT_STARTED, description="Preparation status")
    comment: str | None = Field(None, description="Free-text comment from customer or staff")
    attached_at: datetime = Field(..., description="When the item was attached")
    last_updated: datetime = Field(..., description="Last status or comment change")

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        item: dict[str, Any] = {
            "order_id": self.order_id,
            "line_id": self.line_id,
            "item_name": self.item_name,
            "unit_price": self.unit_price,
            "status": self.status.value,
            "attached_at": format_timestamp(self.attached_at),
            "last_updated": format_timestamp(self.last_updated),
        }

        if self.comment is not None:
            item["comment"] = self.comment

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "LineItem":
        """Create LineItem from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            LineItem: Parsed model instance
        """
        data: dict[str, Any] = {
            "order_id": int(item["order_id"]),
            "line_id": item["line_id"],
            "item_name": item["item_name"],
            "unit_price": Decimal(str(item["unit_price"])),
            "status": ItemStatus(item["status"]),
            "attached_at": parse_timestamp(item["attached_at"]),
            "last_updated": parse_timestamp(item["last_updated"]),
        }

        if "comment" in item:
            data["comment"] = item["comment"]

        return cls(**data)

    def to_view(self) -> "LineItemView":
        """Project the row onto the read model returned to callers."""
        return LineItemView(
            line_id=self.line_id,
            item_name=self.item_name,
            status=self.status,
            comment=self.comment,
            last_updated=self.last_updated,
        )


class LineItemView(BaseModel):
    """Status of one line item as shown to callers."""

    line_id: str
    item_name: str
    status: ItemStatus
    comment: str | None = None
    last_updated: datetime


class PlacedOrder(BaseModel):
    """Result of placing the first item of a new order."""

    order_id: int
    total: Decimal
