"""Client for looking up items in the Menu Service catalog."""

import logging
from decimal import Decimal, InvalidOperation
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from cafe_order_service.errors import StorageUnavailable
from cafe_order_service.models.menu_models import MenuItem

logger = logging.getLogger(__name__)


class MenuCatalogClient:
    """HTTP client for validating item names and fetching prices.

    The catalog is owned by the Menu Service; this client only reads from it
    using service-to-service authentication.
    """

    def __init__(self, base_url: str, api_key: str, timeout_seconds: float = 5.0) -> None:
        """Initialize the Menu Catalog client.

        Args:
            base_url: Base URL of the Menu Service API (e.g., "https://api.example.com")
            api_key: API key for service-to-service authentication
            timeout_seconds: Per-request timeout
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    async def lookup(self, item_name: str) -> MenuItem | None:
        """Look up a menu item by its exact name.

        Args:
            item_name: The item name to look up

        Returns:
            MenuItem if the catalog has the item, None if it does not

        Raises:
            StorageUnavailable: If the catalog cannot be reached, answers with an error
                or returns an item that cannot be parsed
        """
        url = f"{self.base_url}/menu/items/{quote(item_name, safe='')}"
        headers = {"X-API-Key": self.api_key}

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(url, headers=headers)
                if response.status_code == 404:
                    return None

                response.raise_for_status()
                data = response.json()

                # Convert price string to Decimal
                data["price"] = Decimal(str(data["price"]))
                return MenuItem(**data)

        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            logger.error(f"Failed to look up menu item {item_name}: {e}")
            raise StorageUnavailable(f"Menu catalog lookup for {item_name} failed") from e

        except (KeyError, TypeError, ValueError, InvalidOperation, ValidationError) as e:
            logger.error(f"Menu catalog returned a malformed item for {item_name}: {e}")
            raise StorageUnavailable(f"Menu catalog lookup for {item_name} failed") from e
