"""
Stock location and stock item models.

A stock location holds one stock item per variant. Moving stock only
changes counts for variants whose inventory is tracked.
"""

import uuid
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.core.logging import get_logger
from storefront.database.base import BaseModel, create_table_args

if TYPE_CHECKING:
    from storefront.database.models.variant import Variant

logger = get_logger(__name__)


class StockLocation(BaseModel):
    """
    Warehouse or store that ships inventory.

    Attributes:
        name: Location name
        active: Inactive locations are skipped when packing shipments
        backorderable_default: Backorder flag given to new stock items
    """

    __tablename__ = "stock_locations"
    __table_args__ = create_table_args(comment="Locations holding inventory")

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    backorderable_default: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    stock_items: Mapped[list["StockItem"]] = relationship(
        "StockItem",
        back_populates="stock_location",
        cascade="all, delete-orphan",
    )

    def stock_item(self, variant: "Variant") -> Optional["StockItem"]:
        for item in self.stock_items:
            if item.variant is variant:
                return item
        return None

    def stock_item_or_create(self, variant: "Variant") -> "StockItem":
        item = self.stock_item(variant)
        if item is None:
            item = StockItem(
                variant=variant,
                count_on_hand=0,
                backorderable=self.backorderable_default,
            )
            self.stock_items.append(item)
        return item

    def count_on_hand(self, variant: "Variant") -> int:
        item = self.stock_item(variant)
        return item.count_on_hand if item else 0

    def backorderable(self, variant: "Variant") -> bool:
        item = self.stock_item(variant)
        return bool(item and item.backorderable)

    def unstock(self, variant: "Variant", quantity: int) -> None:
        """Decrease stock for a variant leaving this location."""
        self.move(variant, -quantity)

    def restock(self, variant: "Variant", quantity: int) -> None:
        """Return stock for a variant to this location."""
        self.move(variant, quantity)

    def move(self, variant: "Variant", quantity: int) -> None:
        if not variant.should_track_inventory or quantity == 0:
            return

        item = self.stock_item_or_create(variant)
        item.count_on_hand += quantity

        logger.debug(
            "Stock moved",
            stock_location=self.name,
            sku=variant.sku,
            quantity=quantity,
            count_on_hand=item.count_on_hand,
        )

    def __repr__(self) -> str:
        return f"<StockLocation(id={self.id}, name={self.name!r})>"


class StockItem(BaseModel):
    """Count of one variant held at one stock location."""

    __tablename__ = "stock_items"

    stock_location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("stock_locations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    variant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("variants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    count_on_hand: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    backorderable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    stock_location: Mapped["StockLocation"] = relationship(
        "StockLocation",
        back_populates="stock_items",
    )

    variant: Mapped["Variant"] = relationship("Variant", back_populates="stock_items")

    __table_args__ = (
        UniqueConstraint(
            "stock_location_id",
            "variant_id",
            name="uq_stock_items_location_variant",
        ),
        {"comment": "Per-location variant stock counts"},
    )

    def __repr__(self) -> str:
        return (
            f"<StockItem(id={self.id}, stock_location_id={self.stock_location_id}, "
            f"variant_id={self.variant_id}, count_on_hand={self.count_on_hand})>"
        )
