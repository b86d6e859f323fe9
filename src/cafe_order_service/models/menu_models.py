"""Menu data models.

The menu catalog is owned by the menu service; the order core only reads
items from it to validate names and capture prices.
"""

from decimal import Decimal

from pydantic import BaseModel, Field


class MenuItem(BaseModel):
    """Menu item model."""

    name: str = Field(..., description="Item name, unique across the menu", min_length=1)
    category: str | None = Field(None, description="Item category (e.g., 'Drinks')")
    price: Decimal = Field(..., description="Unit price", ge=0)
    description: str | None = Field(None, description="Item description")
    image_url: str | None = Field(None, description="URL to item image")
