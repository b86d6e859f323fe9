"""Unit tests for UserDirectoryRepository."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from cafe_order_service.errors import Forbidden, NotFound, StorageUnavailable
from cafe_order_service.models.order_models import Role
from cafe_order_service.repositories.user_directory import UserDirectoryRepository


@pytest.mark.unit
class TestUserDirectoryRepository:
    """Test suite for UserDirectoryRepository."""

    @pytest.fixture
    def mock_dynamodb(self) -> MagicMock:
        """Create a mock DynamoDB resource."""
        return MagicMock()

    @pytest.fixture
    def directory(self, mock_dynamodb: MagicMock) -> UserDirectoryRepository:
        """Create a UserDirectoryRepository with mocked DynamoDB."""
        return UserDirectoryRepository(dynamodb_resource=mock_dynamodb, table_name="test-users")

    def test_role_of_existing_user(
        self, directory: UserDirectoryRepository, mock_dynamodb: MagicMock
    ) -> None:
        """Test that a stored role is parsed regardless of case."""
        mock_dynamodb.Table.return_value.get_item.return_value = {"Item": {"type": "Manager"}}

        assert directory.role_of("mona") == Role.MANAGER

    def test_role_of_unknown_user(
        self, directory: UserDirectoryRepository, mock_dynamodb: MagicMock
    ) -> None:
        """Test that an unknown login has no role."""
        mock_dynamodb.Table.return_value.get_item.return_value = {}

        assert directory.role_of("nobody") is None
        assert directory.exists("nobody") is False

    def test_exists(self, directory: UserDirectoryRepository, mock_dynamodb: MagicMock) -> None:
        """Test that a registered login exists."""
        mock_dynamodb.Table.return_value.get_item.return_value = {"Item": {"type": "customer"}}

        assert directory.exists("alice") is True

    def test_session_for(self, directory: UserDirectoryRepository, mock_dynamodb: MagicMock) -> None:
        """Test building a session from the directory."""
        mock_dynamodb.Table.return_value.get_item.return_value = {"Item": {"type": "employee"}}

        session = directory.session_for("erin")

        assert session.login == "erin"
        assert session.role == Role.EMPLOYEE

    def test_session_for_unknown_user(
        self, directory: UserDirectoryRepository, mock_dynamodb: MagicMock
    ) -> None:
        """Test that an unknown login raises NotFound."""
        mock_dynamodb.Table.return_value.get_item.return_value = {}

        with pytest.raises(NotFound):
            directory.session_for("nobody")

    def test_storage_error(self, directory: UserDirectoryRepository, mock_dynamodb: MagicMock) -> None:
        """Test that read failures raise StorageUnavailable."""
        mock_dynamodb.Table.return_value.get_item.side_effect = ClientError(
            {"Error": {"Code": "InternalServerError", "Message": "Server error"}}, "GetItem"
        )

        with pytest.raises(StorageUnavailable):
            directory.role_of("alice")

    @pytest.mark.parametrize(
        ("stored_type", "expected"),
        [("Manager ", Role.MANAGER), ("Employee  ", Role.EMPLOYEE), (" customer", Role.CUSTOMER)],
    )
    def test_role_of_padded_type(
        self,
        directory: UserDirectoryRepository,
        mock_dynamodb: MagicMock,
        stored_type: str,
        expected: Role,
    ) -> None:
        """Test that fixed-width stored types are trimmed before parsing."""
        mock_dynamodb.Table.return_value.get_item.return_value = {"Item": {"type": stored_type}}

        assert directory.role_of("mona") == expected
        assert directory.session_for("mona").role == expected

    def test_unknown_type_is_forbidden(
        self, directory: UserDirectoryRepository, mock_dynamodb: MagicMock
    ) -> None:
        """Test that an unrecognized user type raises Forbidden instead of ValueError."""
        mock_dynamodb.Table.return_value.get_item.return_value = {"Item": {"type": "Barista"}}

        with pytest.raises(Forbidden):
            directory.role_of("bea")
        with pytest.raises(Forbidden):
            directory.session_for("bea")

    def test_user_with_unknown_type_still_exists(
        self, directory: UserDirectoryRepository, mock_dynamodb: MagicMock
    ) -> None:
        """Test that existence does not depend on the role being recognized."""
        mock_dynamodb.Table.return_value.get_item.return_value = {"Item": {"type": "Barista"}}

        assert directory.exists("bea") is True
