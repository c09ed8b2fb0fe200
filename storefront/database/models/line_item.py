"""
Line item model: a quantity of one variant within an order.
"""

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.core.money import Money
from storefront.database.base import BaseModel, create_table_args

if TYPE_CHECKING:
    from storefront.database.models.order import Order
    from storefront.database.models.variant import Variant


class LineItem(BaseModel):
    """
    Order line for one variant.

    Attributes:
        quantity: Units ordered
        price: Unit price captured when the line was added
        pre_tax_amount: Line amount before included taxes
        adjustment_total: Sum of adjustments targeting this line
        options: Extra attributes compared by line item comparison hooks
    """

    __tablename__ = "line_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    variant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("variants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)

    pre_tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=4),
        nullable=False,
        default=Decimal("0.00"),
    )

    adjustment_total: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    options: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="line_items")

    variant: Mapped["Variant"] = relationship("Variant")

    __table_args__ = create_table_args(
        CheckConstraint("quantity >= 0", name="ck_line_items_quantity_non_negative"),
        comment="Variant quantities within orders",
    )

    @property
    def amount(self) -> Decimal:
        return (self.price or Decimal("0")) * (self.quantity or 0)

    @property
    def display_amount(self) -> Money:
        return Money(self.amount, self.currency or "")

    @property
    def sufficient_stock(self) -> bool:
        from storefront.services.stock.quantifier import StockQuantifier

        return StockQuantifier(self.variant).can_supply(self.quantity)

    @property
    def insufficient_stock(self) -> bool:
        return not self.sufficient_stock

    def same_variant(self, variant: "Variant") -> bool:
        """Match by identity, or by id once both rows are persisted."""
        if self.variant is variant:
            return True
        return (
            variant is not None
            and variant.id is not None
            and self.variant_id == variant.id
        )

    def __repr__(self) -> str:
        return (
            f"<LineItem(id={self.id}, variant_id={self.variant_id}, "
            f"quantity={self.quantity}, price={self.price})>"
        )
