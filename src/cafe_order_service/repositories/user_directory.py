"""Read-only access to the user directory.

Registration, login and profile editing belong to the identity service that
owns this table; the order core only resolves a login to its role.
"""

import logging

from botocore.exceptions import BotoCoreError, ClientError
from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource, Table

from cafe_order_service.errors import Forbidden, NotFound, StorageUnavailable
from cafe_order_service.models.order_models import Role, Session

logger = logging.getLogger(__name__)


class UserDirectoryRepository:
    """Repository for user role lookups.

    Reads user records in DynamoDB with login as partition key.
    """

    def __init__(self, dynamodb_resource: DynamoDBServiceResource, table_name: str) -> None:
        """Initialize repository.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            table_name: Name of the users table
        """
        self.dynamodb = dynamodb_resource
        self.table_name = table_name
        self.table: Table = dynamodb_resource.Table(table_name)

    def _stored_type(self, login: str) -> str | None:
        """Return the stored user type with padding removed, or None if unregistered."""
        try:
            response = self.table.get_item(
                Key={"login": login}, ProjectionExpression="#type", ExpressionAttributeNames={"#type": "type"}
            )

        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to look up user {login}: {e}")
            raise StorageUnavailable(f"User {login} could not be read") from e

        if "Item" not in response:
            return None

        # Legacy rows store fixed-width values such as "Manager "
        return str(response["Item"].get("type", "")).strip()

    def role_of(self, login: str) -> Role | None:
        """Look up the role of a user.

        Args:
            login: User login

        Returns:
            Role if the user exists, None otherwise

        Raises:
            Forbidden: If the stored user type is not a known role
            StorageUnavailable: If the read fails
        """
        stored_type = self._stored_type(login)
        if stored_type is None:
            return None

        try:
            return Role(stored_type.lower())
        except ValueError as e:
            logger.warning(f"User {login} has unknown user type {stored_type!r}")
            raise Forbidden(f"User {login} has no recognized role") from e

    def exists(self, login: str) -> bool:
        """Return True if the login is registered."""
        return self._stored_type(login) is not None

    def session_for(self, login: str) -> Session:
        """Build the caller session for a login.

        Args:
            login: User login

        Returns:
            Session carrying the user's role

        Raises:
            NotFound: If the login is not registered
            Forbidden: If the stored user type is not a known role
        """
        role = self.role_of(login)
        if role is None:
            raise NotFound(f"User {login} not found")
        return Session(login=login, role=role)
