"""DynamoDB repository classes for orders and line items.

Unlike lookups that can simply miss, every mutation here must either commit
completely or not at all, so storage failures are raised as typed errors
instead of being reported through None/False return values. Writes that touch
both an order and its line items go through a single TransactWriteItems call.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError
from mypy_boto3_dynamodb.client import DynamoDBClient
from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource, Table

from cafe_order_service.errors import (
    AllocationFailed,
    Forbidden,
    InvalidInput,
    Locked,
    NotFound,
    OrderClosed,
    StorageUnavailable,
)
from cafe_order_service.models.order_models import (
    ItemStatus,
    LineItem,
    Order,
    PaymentStatus,
    format_timestamp,
)

logger = logging.getLogger(__name__)

PAYMENT_INDEX = "payment_status-created_at-index"

# Rounds of re-reading line items when a concurrent attach moves line_count
MAX_RECOMPUTE_ROUNDS = 5

# DynamoDB limit on actions in one TransactWriteItems call
MAX_TRANSACTION_ITEMS = 100

_serializer = TypeSerializer()


def _attribute_values(values: dict[str, Any]) -> dict[str, Any]:
    """Serialize plain Python values into low-level DynamoDB attribute values."""
    return {name: _serializer.serialize(value) for name, value in values.items()}


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def _cancellation_codes(error: ClientError) -> list[str]:
    """Return the per-item cancellation codes of a cancelled transaction."""
    reasons = error.response.get("CancellationReasons", [])
    return [reason.get("Code", "None") for reason in reasons]


def _is_condition_cancellation(error: ClientError) -> bool:
    return _error_code(error) == "TransactionCanceledException" and (
        "ConditionalCheckFailed" in _cancellation_codes(error)
    )


def _require_transaction_size(action_count: int, order_id: int) -> None:
    if action_count > MAX_TRANSACTION_ITEMS:
        raise InvalidInput(
            f"Update on order {order_id} targets too many line items; "
            "narrow it with line_id"
        )


class OrderIdAllocator:
    """Allocates order identifiers from an atomic counter.

    The counter lives in its own table keyed by counter_name. Each allocation is
    a single UpdateItem with ADD, so concurrent callers always receive distinct,
    increasing values.
    """

    def __init__(
        self,
        dynamodb_resource: DynamoDBServiceResource,
        table_name: str,
        counter_name: str = "order_id",
    ) -> None:
        """Initialize allocator.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            table_name: Name of the counters table
            counter_name: Key of the counter row to increment
        """
        self.dynamodb = dynamodb_resource
        self.table_name = table_name
        self.counter_name = counter_name
        self.table: Table = dynamodb_resource.Table(table_name)

    def allocate(self) -> int:
        """Allocate the next order identifier.

        Returns:
            int: A value no other caller has received

        Raises:
            AllocationFailed: If the counter could not be incremented
        """
        try:
            response = self.table.update_item(
                Key={"counter_name": self.counter_name},
                UpdateExpression="ADD current_value :one",
                ExpressionAttributeValues={":one": 1},
                ReturnValues="UPDATED_NEW",
            )
            return int(response["Attributes"]["current_value"])

        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to allocate order id: {e}")
            raise AllocationFailed("Order identifier could not be allocated") from e


class LineItemRepository:
    """Repository for line item reads and status/comment updates.

    Manages line item records in DynamoDB with composite key (order_id, line_id).
    """

    def __init__(
        self,
        dynamodb_resource: DynamoDBServiceResource,
        table_name: str,
        orders_table_name: str,
    ) -> None:
        """Initialize repository.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            table_name: Name of the line items table
            orders_table_name: Name of the orders table, checked by comment updates
        """
        self.dynamodb = dynamodb_resource
        self.table_name = table_name
        self.orders_table_name = orders_table_name
        self.table: Table = dynamodb_resource.Table(table_name)
        self.client: DynamoDBClient = dynamodb_resource.meta.client

    def list_for_order(self, order_id: int) -> list[LineItem]:
        """List every line item of an order.

        Uses a strongly consistent read so a total computed from the result
        reflects all committed attaches.

        Args:
            order_id: Order identifier

        Returns:
            list: Line items ordered by attach time (empty list if none)

        Raises:
            StorageUnavailable: If the query fails
        """
        query: dict[str, Any] = {
            "KeyConditionExpression": "order_id = :oid",
            "ExpressionAttributeValues": {":oid": order_id},
            "ConsistentRead": True,
        }
        lines: list[LineItem] = []

        try:
            while True:
                response = self.table.query(**query)
                lines.extend(LineItem.from_dynamodb_item(item) for item in response.get("Items", []))

                if "LastEvaluatedKey" not in response:
                    break
                query["ExclusiveStartKey"] = response["LastEvaluatedKey"]

        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to list line items for order {order_id}: {e}")
            raise StorageUnavailable(f"Line items for order {order_id} could not be read") from e

        return sorted(lines, key=lambda line: (line.attached_at, line.line_id))

    def update_status(
        self,
        order_id: int,
        line_ids: list[str],
        status: ItemStatus,
        updated_at: datetime,
    ) -> bool:
        """Set the status of one or more line items of an order.

        Every row is conditioned on its stored last_updated not being newer than
        updated_at, so of two racing writers the later timestamp wins and the
        earlier one changes nothing.

        Args:
            order_id: Order identifier
            line_ids: Line items to update
            status: New status
            updated_at: Timestamp of this write

        Returns:
            bool: True if applied, False if superseded by a newer write

        Raises:
            InvalidInput: If more rows are targeted than one transaction holds
            StorageUnavailable: If the transaction fails for any other reason
        """
        _require_transaction_size(len(line_ids), order_id)
        stamp = format_timestamp(updated_at)
        transact_items = [
            {
                "Update": {
                    "TableName": self.table_name,
                    "Key": _attribute_values({"order_id": order_id, "line_id": line_id}),
                    "UpdateExpression": "SET #status = :status, last_updated = :at",
                    "ConditionExpression": "attribute_exists(line_id) AND last_updated <= :at",
                    "ExpressionAttributeNames": {"#status": "status"},
                    "ExpressionAttributeValues": _attribute_values(
                        {":status": status.value, ":at": stamp}
                    ),
                }
            }
            for line_id in line_ids
        ]

        try:
            self.client.transact_write_items(TransactItems=transact_items)
            return True

        except ClientError as e:
            if _is_condition_cancellation(e):
                logger.info(
                    f"Status write for order {order_id} at {stamp} superseded by a newer update"
                )
                return False
            logger.error(f"Failed to update line item status for order {order_id}: {e}")
            raise StorageUnavailable(f"Status of order {order_id} could not be updated") from e

        except BotoCoreError as e:
            logger.error(f"Failed to update line item status for order {order_id}: {e}")
            raise StorageUnavailable(f"Status of order {order_id} could not be updated") from e

    def update_comment(
        self,
        order_id: int,
        line_ids: list[str],
        comment: str,
        updated_at: datetime,
    ) -> None:
        """Attach or overwrite the comment of one or more line items.

        The write only commits while every targeted row is still not started and
        the parent order is still unpaid.

        Args:
            order_id: Order identifier
            line_ids: Line items to update
            comment: Comment text
            updated_at: Timestamp of this write

        Raises:
            InvalidInput: If more rows are targeted than one transaction holds
            Locked: If an item entered preparation or the order was paid meanwhile
            StorageUnavailable: If the transaction fails for any other reason
        """
        # One slot is taken by the order condition check
        _require_transaction_size(len(line_ids) + 1, order_id)
        transact_items: list[dict[str, Any]] = [
            {
                "Update": {
                    "TableName": self.table_name,
                    "Key": _attribute_values({"order_id": order_id, "line_id": line_id}),
                    "UpdateExpression": "SET #comment = :comment, last_updated = :at",
                    "ConditionExpression": "attribute_exists(line_id) AND #status = :not_started",
                    "ExpressionAttributeNames": {"#comment": "comment", "#status": "status"},
                    "ExpressionAttributeValues": _attribute_values(
                        {
                            ":comment": comment,
                            ":at": format_timestamp(updated_at),
                            ":not_started": ItemStatus.NOT_STARTED.value,
                        }
                    ),
                }
            }
            for line_id in line_ids
        ]
        transact_items.append(
            {
                "ConditionCheck": {
                    "TableName": self.orders_table_name,
                    "Key": _attribute_values({"order_id": order_id}),
                    "ConditionExpression": "payment_status = :unpaid",
                    "ExpressionAttributeValues": _attribute_values(
                        {":unpaid": PaymentStatus.UNPAID.value}
                    ),
                }
            }
        )

        try:
            self.client.transact_write_items(TransactItems=transact_items)

        except ClientError as e:
            if _is_condition_cancellation(e):
                raise Locked(
                    f"Order {order_id} items can no longer be commented on"
                ) from e
            logger.error(f"Failed to update line item comment for order {order_id}: {e}")
            raise StorageUnavailable(f"Comment on order {order_id} could not be saved") from e

        except BotoCoreError as e:
            logger.error(f"Failed to update line item comment for order {order_id}: {e}")
            raise StorageUnavailable(f"Comment on order {order_id} could not be saved") from e


class OrderRepository:
    """Repository for order headers and the writes that span orders and items.

    Manages order records in DynamoDB with order_id as partition key and a
    Global Secondary Index on (payment_status, created_at). Each order also
    gets a row in the history table, keyed by (owner_login, order_id).
    """

    def __init__(
        self,
        dynamodb_resource: DynamoDBServiceResource,
        table_name: str,
        line_items: LineItemRepository,
        history_table_name: str,
    ) -> None:
        """Initialize repository.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            table_name: Name of the orders table
            line_items: Repository for the order's line items
            history_table_name: Name of the per-owner order history table
        """
        self.dynamodb = dynamodb_resource
        self.table_name = table_name
        self.line_items = line_items
        self.history_table_name = history_table_name
        self.table: Table = dynamodb_resource.Table(table_name)
        self.history_table: Table = dynamodb_resource.Table(history_table_name)
        self.client: DynamoDBClient = dynamodb_resource.meta.client

    def get_order(self, order_id: int) -> Order | None:
        """Retrieve an order by ID.

        Args:
            order_id: Order identifier

        Returns:
            Order if found, None otherwise

        Raises:
            StorageUnavailable: If the read fails
        """
        try:
            response = self.table.get_item(Key={"order_id": order_id}, ConsistentRead=True)

        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to get order {order_id}: {e}")
            raise StorageUnavailable(f"Order {order_id} could not be read") from e

        if "Item" not in response:
            return None

        return Order.from_dynamodb_item(response["Item"])

    def create_with_first_item(self, order: Order, line: LineItem) -> None:
        """Insert a new order together with its first line item and history row.

        Args:
            order: Order header; its total and line_count must already cover line
            line: First line item

        Raises:
            AllocationFailed: If the order id is already taken
            StorageUnavailable: If the transaction fails for any other reason
        """
        try:
            self.client.transact_write_items(
                TransactItems=[
                    {
                        "Put": {
                            "TableName": self.table_name,
                            "Item": _attribute_values(order.to_dynamodb_item()),
                            "ConditionExpression": "attribute_not_exists(order_id)",
                        }
                    },
                    {
                        "Put": {
                            "TableName": self.line_items.table_name,
                            "Item": _attribute_values(line.to_dynamodb_item()),
                            "ConditionExpression": "attribute_not_exists(line_id)",
                        }
                    },
                    {
                        "Put": {
                            "TableName": self.history_table_name,
                            "Item": _attribute_values(
                                {
                                    "owner_login": order.owner_login,
                                    "order_id": order.order_id,
                                    "created_at": format_timestamp(order.created_at),
                                }
                            ),
                            "ConditionExpression": "attribute_not_exists(order_id)",
                        }
                    },
                ]
            )

        except ClientError as e:
            if _is_condition_cancellation(e):
                logger.error(f"Order id {order.order_id} already in use")
                raise AllocationFailed(f"Order id {order.order_id} is already in use") from e
            logger.error(f"Failed to create order {order.order_id}: {e}")
            raise StorageUnavailable(f"Order {order.order_id} could not be created") from e

        except BotoCoreError as e:
            logger.error(f"Failed to create order {order.order_id}: {e}")
            raise StorageUnavailable(f"Order {order.order_id} could not be created") from e

    def attach_line(self, order_id: int, owner_login: str, line: LineItem) -> None:
        """Attach a line item to an open order and add its price to the total.

        The put and the atomic ADD on the order commit together and only while
        the order exists, is unpaid and is owned by owner_login.

        Args:
            order_id: Order identifier
            owner_login: Login the order must belong to
            line: Line item to attach

        Raises:
            NotFound: If the order does not exist
            Forbidden: If the order belongs to someone else
            OrderClosed: If the order has been paid
            StorageUnavailable: If the transaction fails for any other reason
        """
        try:
            self.client.transact_write_items(
                TransactItems=[
                    {
                        "Put": {
                            "TableName": self.line_items.table_name,
                            "Item": _attribute_values(line.to_dynamodb_item()),
                            "ConditionExpression": "attribute_not_exists(line_id)",
                        }
                    },
                    {
                        "Update": {
                            "TableName": self.table_name,
                            "Key": _attribute_values({"order_id": order_id}),
                            "UpdateExpression": "ADD #total :price, line_count :one",
                            "ConditionExpression": (
                                "attribute_exists(order_id) AND payment_status = :unpaid "
                                "AND owner_login = :owner"
                            ),
                            "ExpressionAttributeNames": {"#total": "total"},
                            "ExpressionAttributeValues": _attribute_values(
                                {
                                    ":price": line.unit_price,
                                    ":one": 1,
                                    ":unpaid": PaymentStatus.UNPAID.value,
                                    ":owner": owner_login,
                                }
                            ),
                        }
                    },
                ]
            )

        except ClientError as e:
            if _is_condition_cancellation(e):
                self._raise_attach_rejection(order_id, owner_login, e)
            logger.error(f"Failed to attach {line.item_name} to order {order_id}: {e}")
            raise StorageUnavailable(f"Item could not be attached to order {order_id}") from e

        except BotoCoreError as e:
            logger.error(f"Failed to attach {line.item_name} to order {order_id}: {e}")
            raise StorageUnavailable(f"Item could not be attached to order {order_id}") from e

    def _raise_attach_rejection(self, order_id: int, owner_login: str, error: ClientError) -> None:
        """Work out which order condition rejected an attach and raise it."""
        order = self.get_order(order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found") from error
        if order.owner_login != owner_login:
            raise Forbidden(f"Order {order_id} belongs to another customer") from error
        if order.is_paid:
            raise OrderClosed(f"Order {order_id} is already paid") from error
        logger.error(f"Attach to order {order_id} cancelled without a failing order condition")
        raise StorageUnavailable(f"Item could not be attached to order {order_id}") from error

    def recompute_total(self, order_id: int) -> Decimal:
        """Recompute and persist an order's total from its line items.

        The write is conditioned on line_count still matching the rows summed;
        if a concurrent attach lands in between, the rows are read again.

        Args:
            order_id: Order identifier

        Returns:
            Decimal: The persisted total

        Raises:
            NotFound: If the order does not exist
            StorageUnavailable: If storage fails or the count never settles
        """
        for _ in range(MAX_RECOMPUTE_ROUNDS):
            lines = self.line_items.list_for_order(order_id)
            total = sum((line.unit_price for line in lines), Decimal("0"))

            try:
                self.table.update_item(
                    Key={"order_id": order_id},
                    UpdateExpression="SET #total = :total",
                    ConditionExpression="attribute_exists(order_id) AND line_count = :count",
                    ExpressionAttributeNames={"#total": "total"},
                    ExpressionAttributeValues={":total": total, ":count": len(lines)},
                )
                return total

            except ClientError as e:
                if _error_code(e) != "ConditionalCheckFailedException":
                    logger.error(f"Failed to recompute total for order {order_id}: {e}")
                    raise StorageUnavailable(
                        f"Total of order {order_id} could not be recomputed"
                    ) from e
                if self.get_order(order_id) is None:
                    raise NotFound(f"Order {order_id} not found") from e
                logger.info(f"Line count of order {order_id} moved during recompute, re-reading")

            except BotoCoreError as e:
                logger.error(f"Failed to recompute total for order {order_id}: {e}")
                raise StorageUnavailable(f"Total of order {order_id} could not be recomputed") from e

        logger.error(f"Total of order {order_id} did not settle after {MAX_RECOMPUTE_ROUNDS} rounds")
        raise StorageUnavailable(f"Total of order {order_id} could not be recomputed")

    def set_payment_status(self, order_id: int, payment_status: PaymentStatus) -> Order:
        """Set the payment status of an order.

        Args:
            order_id: Order identifier
            payment_status: New payment status

        Returns:
            Order: The updated order

        Raises:
            NotFound: If the order does not exist
            StorageUnavailable: If the update fails
        """
        try:
            response = self.table.update_item(
                Key={"order_id": order_id},
                UpdateExpression="SET payment_status = :status",
                ConditionExpression="attribute_exists(order_id)",
                ExpressionAttributeValues={":status": payment_status.value},
                ReturnValues="ALL_NEW",
            )
            return Order.from_dynamodb_item(response["Attributes"])

        except ClientError as e:
            if _error_code(e) == "ConditionalCheckFailedException":
                raise NotFound(f"Order {order_id} not found") from e
            logger.error(f"Failed to update payment status of order {order_id}: {e}")
            raise StorageUnavailable(f"Payment status of order {order_id} could not be updated") from e

        except BotoCoreError as e:
            logger.error(f"Failed to update payment status of order {order_id}: {e}")
            raise StorageUnavailable(f"Payment status of order {order_id} could not be updated") from e

    def list_orders_for_owner(self, owner_login: str, limit: int = 5) -> list[Order]:
        """List an owner's most recent orders.

        Reads the history table keyed by (owner_login, order_id) with a strongly
        consistent query, so an order is listed as soon as its creating
        transaction has committed. Each order is then read from the orders table
        for its current payment status and total.

        Args:
            owner_login: Owner login
            limit: Maximum number of orders to return

        Returns:
            list: Orders, most recent first (empty list if none found)

        Raises:
            StorageUnavailable: If a read fails
        """
        try:
            response = self.history_table.query(
                KeyConditionExpression="owner_login = :owner",
                ExpressionAttributeValues={":owner": owner_login},
                Limit=limit,
                ScanIndexForward=False,  # Highest order id first
                ConsistentRead=True,
            )

        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to list orders for {owner_login}: {e}")
            raise StorageUnavailable(f"Orders of {owner_login} could not be read") from e

        history: list[Order] = []
        for entry in response.get("Items", []):
            order_id = int(entry["order_id"])
            order = self.get_order(order_id)
            if order is None:
                logger.warning(f"History of {owner_login} lists missing order {order_id}")
                continue
            history.append(order)

        return history

    def list_open_orders(self, since: datetime) -> list[Order]:
        """List unpaid orders created at or after a point in time.

        Uses a Global Secondary Index on (payment_status, created_at).

        Args:
            since: Earliest creation time to include

        Returns:
            list: Unpaid orders, newest first (empty list if none found)

        Raises:
            StorageUnavailable: If the query fails
        """
        query: dict[str, Any] = {
            "IndexName": PAYMENT_INDEX,
            "KeyConditionExpression": "payment_status = :unpaid AND created_at >= :since",
            "ExpressionAttributeValues": {
                ":unpaid": PaymentStatus.UNPAID.value,
                ":since": format_timestamp(since),
            },
            "ScanIndexForward": False,
        }
        orders: list[Order] = []

        try:
            while True:
                response = self.table.query(**query)
                orders.extend(Order.from_dynamodb_item(item) for item in response.get("Items", []))

                if "LastEvaluatedKey" not in response:
                    break
                query["ExclusiveStartKey"] = response["LastEvaluatedKey"]

        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to list open orders: {e}")
            raise StorageUnavailable("Open orders could not be read") from e

        return orders
