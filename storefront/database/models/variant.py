"""
Variant model: the purchasable unit of a product.

Variants are soft deleted so historic line items keep their reference; an
order holding a deleted variant cannot complete checkout.
"""

from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database.base import SoftDeleteModel

if TYPE_CHECKING:
    from storefront.database.models.stock import StockItem


class Variant(SoftDeleteModel):
    """
    Purchasable product variant.

    Attributes:
        sku: Stock keeping unit
        name: Display name
        price: Current unit price copied to new line items
        track_inventory: Whether stock levels limit availability
    """

    __tablename__ = "variants"

    sku: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
        comment="Stock keeping unit",
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Display name",
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Current unit price",
    )

    track_inventory: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether stock levels limit availability",
    )

    stock_items: Mapped[list["StockItem"]] = relationship(
        "StockItem",
        back_populates="variant",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_variants_price_non_negative"),
        {"comment": "Purchasable product variants"},
    )

    @property
    def should_track_inventory(self) -> bool:
        from storefront.core.config import get_settings

        return bool(self.track_inventory) and get_settings().track_inventory_levels

    def __repr__(self) -> str:
        return f"<Variant(id={self.id}, sku={self.sku!r}, price={self.price})>"
