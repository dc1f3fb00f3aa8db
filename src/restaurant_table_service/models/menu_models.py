"""Menu data models.

The customer terminal polls the menu and categories on a slow cadence so
newly unavailable items disappear from the ordering view.
"""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MenuItem(BaseModel):
    """Menu item model."""

    model_config = ConfigDict(json_encoders={Decimal: str})

    id: str = Field(..., description="Unique identifier for the menu item")
    name: str = Field(..., description="Item name")
    description: str | None = Field(None, description="Item description")
    price: Decimal = Field(..., description="Item price", ge=0)
    category_id: str | None = Field(None, description="Category this item belongs to")
    available: bool = Field(default=True, description="Whether item is currently available")

    @classmethod
    def from_api_item(cls, item: dict[str, Any]) -> "MenuItem":
        return cls(
            id=str(item["id"]),
            name=item["name"],
            description=item.get("description"),
            price=Decimal(str(item["price"])),
            category_id=str(item["category"]) if item.get("category") is not None else None,
            available=item.get("available", True),
        )


class Category(BaseModel):
    """Menu category model."""

    id: str = Field(..., description="Unique identifier for the category")
    name: str = Field(..., description="Category name")
    description: str | None = Field(None, description="Category description")

    @classmethod
    def from_api_item(cls, item: dict[str, Any]) -> "Category":
        return cls(id=str(item["id"]), name=item["name"], description=item.get("description"))
