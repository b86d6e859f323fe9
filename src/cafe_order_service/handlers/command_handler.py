"""Direct-invocation handler dispatching order commands to the OrderService."""

import logging
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cafe_order_service.errors import OrderServiceError
from cafe_order_service.models.order_models import ItemStatus, Session
from cafe_order_service.observability import metrics
from cafe_order_service.repositories.user_directory import UserDirectoryRepository
from cafe_order_service.services.order_service import (
    DEFAULT_OPEN_ORDER_WINDOW_HOURS,
    OrderService,
)

logger = logging.getLogger(__name__)

Operation = Literal[
    "place_first_item",
    "add_item_to_open_order",
    "recompute_total",
    "view_history",
    "view_status",
    "view_open_orders",
    "set_payment_status",
    "set_item_status",
    "set_comment",
]


class OrderCommand(BaseModel):
    """Model for one order command sent by a front end.

    Attributes:
        operation: Name of the OrderService operation to run
        caller_login: Login of the authenticated caller
        arguments: Operation arguments
    """

    operation: Operation
    caller_login: str = Field(..., min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)


class _Arguments(BaseModel):
    model_config = ConfigDict(extra="forbid")


class PlaceFirstItemArguments(_Arguments):
    item_name: str
    owner_login: str | None = None


class AddItemArguments(_Arguments):
    order_id: int
    item_name: str


class OrderArguments(_Arguments):
    order_id: int


class HistoryArguments(_Arguments):
    owner_login: str | None = None


class OpenOrdersArguments(_Arguments):
    max_age_hours: float = DEFAULT_OPEN_ORDER_WINDOW_HOURS


class PaymentArguments(_Arguments):
    order_id: int
    paid: bool


class ItemStatusArguments(_Arguments):
    order_id: int
    item_name: str
    status: ItemStatus
    line_id: str | None = None


class CommentArguments(_Arguments):
    order_id: int
    item_name: str
    comment: str
    line_id: str | None = None


ARGUMENT_MODELS: dict[str, type[_Arguments]] = {
    "place_first_item": PlaceFirstItemArguments,
    "add_item_to_open_order": AddItemArguments,
    "recompute_total": OrderArguments,
    "view_history": HistoryArguments,
    "view_status": OrderArguments,
    "view_open_orders": OpenOrdersArguments,
    "set_payment_status": PaymentArguments,
    "set_item_status": ItemStatusArguments,
    "set_comment": CommentArguments,
}


def serialize_result(result: Any) -> Any:
    """Convert an OrderService result into JSON-compatible data."""
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, list):
        return [serialize_result(entry) for entry in result]
    if isinstance(result, Decimal):
        return str(result)
    return result


def error_response(kind: str, message: str) -> dict[str, Any]:
    return {"ok": False, "error": {"kind": kind, "message": message}}


class CommandHandler:
    """Handler turning command payloads into OrderService calls.

    Resolves the caller's session from the user directory, validates the
    operation's arguments and reports every domain failure as a typed error
    response so callers can decide whether to retry.
    """

    def __init__(
        self,
        order_service: OrderService,
        user_directory: UserDirectoryRepository,
    ) -> None:
        """Initialize the command handler.

        Args:
            order_service: Service the commands are dispatched to
            user_directory: Repository used to resolve the caller's role
        """
        self.order_service = order_service
        self.user_directory = user_directory

    async def handle(self, command: OrderCommand) -> dict[str, Any]:
        """Run one command.

        Args:
            command: The command to run

        Returns:
            {"ok": True, "result": ...} or {"ok": False, "error": {"kind", "message"}}
        """
        try:
            arguments = ARGUMENT_MODELS[command.operation](**command.arguments)
        except ValidationError as e:
            logger.warning(f"Invalid arguments for {command.operation}: {e}")
            metrics.record_operation_failure(command.operation, "invalid_input")
            return error_response("invalid_input", str(e))

        try:
            session = self.user_directory.session_for(command.caller_login)
            result = await self._dispatch(command.operation, session, arguments)

        except OrderServiceError as e:
            logger.warning(f"{command.operation} by {command.caller_login} failed: {e.kind}: {e}")
            metrics.record_operation_failure(command.operation, e.kind)
            return error_response(e.kind, e.message)

        return {"ok": True, "result": serialize_result(result)}

    async def _dispatch(self, operation: str, session: Session, arguments: _Arguments) -> Any:
        kwargs = arguments.model_dump()

        # Front ends omit owner_login when callers act on their own orders
        if "owner_login" in kwargs and kwargs["owner_login"] is None:
            kwargs["owner_login"] = session.login

        method = getattr(self.order_service, operation)
        return await method(session, **kwargs)

    async def handle_event(self, event: dict[str, Any]) -> dict[str, Any]:
        """Parse a raw invocation payload and run it.

        Args:
            event: Payload with operation, caller_login and arguments

        Returns:
            Response dictionary, see handle()
        """
        try:
            command = OrderCommand(**event)
        except (ValidationError, TypeError) as e:
            logger.warning(f"Received invalid command payload: {e}")
            return error_response("invalid_input", f"Invalid command payload: {e}")

        logger.info(f"Processing {command.operation} for {command.caller_login}")
        return await self.handle(command)
