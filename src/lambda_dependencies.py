"""Shared dependency factory for the Lambda handler.

This module provides cached dependency initialization to optimize Lambda cold starts.
Dependencies are created once and reused across invocations within the same Lambda container.
"""

import logging
import os
from typing import Any

import boto3

from cafe_order_service.handlers.command_handler import CommandHandler
from cafe_order_service.observability import configure_logging, setup_observability
from cafe_order_service.repositories.order_repositories import (
    LineItemRepository,
    OrderIdAllocator,
    OrderRepository,
)
from cafe_order_service.repositories.user_directory import UserDirectoryRepository
from cafe_order_service.services.menu_catalog_client import MenuCatalogClient
from cafe_order_service.services.order_service import DEFAULT_HISTORY_LIMIT, OrderService

logger = logging.getLogger(__name__)

# Module-level caches for Lambda container reuse
_dynamodb_resource: Any | None = None
_user_directory: UserDirectoryRepository | None = None
_order_service: OrderService | None = None
_command_handler: CommandHandler | None = None


def get_dynamodb_resource() -> Any:
    """Create or retrieve cached DynamoDB resource.

    Returns:
        Boto3 DynamoDB resource configured for environment
    """
    global _dynamodb_resource

    if _dynamodb_resource is not None:
        return _dynamodb_resource

    endpoint_url = os.getenv("DYNAMODB_ENDPOINT")
    region = os.getenv("AWS_REGION", "us-east-1")

    if endpoint_url:
        # Local DynamoDB - use environment variables
        access_key = os.getenv("AWS_ACCESS_KEY_ID")
        secret_key = os.getenv("AWS_SECRET_ACCESS_KEY")
        logger.info(f"Using local DynamoDB at {endpoint_url}")
        _dynamodb_resource = boto3.resource(
            "dynamodb",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
        )
    else:
        logger.info(f"Using AWS DynamoDB in region {region}")
        _dynamodb_resource = boto3.resource("dynamodb", region_name=region)

    return _dynamodb_resource


def get_user_directory() -> UserDirectoryRepository:
    """Create or retrieve cached user directory repository.

    Returns:
        Configured UserDirectoryRepository instance
    """
    global _user_directory

    if _user_directory is not None:
        return _user_directory

    users_table = os.getenv("DYNAMODB_USERS_TABLE", "cafe-users")
    _user_directory = UserDirectoryRepository(
        dynamodb_resource=get_dynamodb_resource(), table_name=users_table
    )
    return _user_directory


def get_menu_catalog_client() -> MenuCatalogClient:
    """Create a menu catalog client from environment variables.

    Returns:
        Configured MenuCatalogClient instance

    Raises:
        ValueError: If required configuration is missing
    """
    menu_service_url = os.getenv("MENU_SERVICE_BASE_URL")
    menu_service_api_key = os.getenv("MENU_SERVICE_API_KEY")

    if not menu_service_url or not menu_service_api_key:
        raise ValueError(
            "MENU_SERVICE_BASE_URL and MENU_SERVICE_API_KEY must be set in environment"
        )

    timeout = float(os.getenv("MENU_SERVICE_TIMEOUT_SECONDS", "5"))
    return MenuCatalogClient(
        base_url=menu_service_url, api_key=menu_service_api_key, timeout_seconds=timeout
    )


def get_order_service() -> OrderService:
    """Create or retrieve cached order service.

    Returns:
        Configured OrderService instance
    """
    global _order_service

    if _order_service is not None:
        return _order_service

    dynamodb_resource = get_dynamodb_resource()

    orders_table = os.getenv("DYNAMODB_ORDERS_TABLE", "cafe-orders")
    line_items_table = os.getenv("DYNAMODB_LINE_ITEMS_TABLE", "cafe-order-line-items")
    counters_table = os.getenv("DYNAMODB_COUNTERS_TABLE", "cafe-counters")
    history_table = os.getenv("DYNAMODB_ORDER_HISTORY_TABLE", "cafe-order-history")

    line_item_repository = LineItemRepository(
        dynamodb_resource=dynamodb_resource,
        table_name=line_items_table,
        orders_table_name=orders_table,
    )
    order_repository = OrderRepository(
        dynamodb_resource=dynamodb_resource,
        table_name=orders_table,
        line_items=line_item_repository,
        history_table_name=history_table,
    )
    id_allocator = OrderIdAllocator(dynamodb_resource=dynamodb_resource, table_name=counters_table)

    logger.info(
        f"Repositories configured - orders: {orders_table}, line items: {line_items_table}, "
        f"counters: {counters_table}, history: {history_table}"
    )

    history_limit = int(os.getenv("ORDER_HISTORY_LIMIT", str(DEFAULT_HISTORY_LIMIT)))
    _order_service = OrderService(
        order_repository=order_repository,
        line_item_repository=line_item_repository,
        id_allocator=id_allocator,
        menu_catalog=get_menu_catalog_client(),
        user_directory=get_user_directory(),
        history_limit=history_limit,
    )

    logger.info("Order service initialized")
    return _order_service


def get_command_handler() -> CommandHandler:
    """Create or retrieve cached command handler.

    Returns:
        Configured CommandHandler instance
    """
    global _command_handler

    if _command_handler is not None:
        return _command_handler

    _command_handler = CommandHandler(
        order_service=get_order_service(),
        user_directory=get_user_directory(),
    )

    logger.info("Command handler initialized")
    return _command_handler


def initialize_lambda_environment() -> None:
    """Initialize Lambda environment with logging and observability.

    Should be called once during Lambda cold start.
    """
    log_level = os.getenv("LOG_LEVEL", "INFO")
    configure_logging(log_level)
    setup_observability()

    logger.info("Lambda environment initialized")
