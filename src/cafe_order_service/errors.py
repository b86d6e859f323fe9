"""Typed failures raised by the order core.

Every operation either returns its result or raises one of these. Callers
(command handler, CLI, scheduled jobs) decide whether to retry or re-prompt;
the core never retries on their behalf.
"""


class OrderServiceError(Exception):
    """Base class for all order core failures."""

    kind = "order_service_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(OrderServiceError):
    """A required field was empty or malformed."""

    kind = "invalid_input"


class ItemNotFound(OrderServiceError):
    """The menu catalog has no item with the requested name."""

    kind = "item_not_found"


class NotFound(OrderServiceError):
    """The order, line item or user does not exist."""

    kind = "not_found"


class Forbidden(OrderServiceError):
    """The caller's role or ownership does not permit the operation."""

    kind = "forbidden"


class OrderClosed(OrderServiceError):
    """The order is paid and can no longer be extended."""

    kind = "order_closed"


class Locked(OrderServiceError):
    """The line item is already in preparation or its order is settled."""

    kind = "locked"


class AllocationFailed(OrderServiceError):
    """No order identifier could be allocated."""

    kind = "allocation_failed"


class StorageUnavailable(OrderServiceError):
    """A storage or catalog round-trip failed; nothing was committed."""

    kind = "storage_unavailable"
