"""
Adjustment model for taxes, promotions and manual corrections.

Adjustments always belong to an order and may additionally target one of its
line items or shipments. Closed adjustments are no longer recalculated.
"""

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database.base import BaseModel, create_table_args, state_enum
from storefront.services.orders.enums import AdjustmentSource, AdjustmentState

if TYPE_CHECKING:
    from storefront.database.models.line_item import LineItem
    from storefront.database.models.order import Order
    from storefront.database.models.shipment import Shipment


class Adjustment(BaseModel):
    """
    Amount added to or taken from an order total.

    Attributes:
        label: Text shown to the customer
        source_type: What produced the adjustment
        amount: Signed amount
        included: Whether the amount is already part of the item price
        eligible: Ineligible adjustments do not count towards totals
        state: open or closed
    """

    __tablename__ = "adjustments"
    __table_args__ = create_table_args(comment="Order, line item and shipment adjustments")

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    line_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("line_items.id", ondelete="CASCADE"),
        nullable=True,
    )

    shipment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("shipments.id", ondelete="CASCADE"),
        nullable=True,
    )

    label: Mapped[str] = mapped_column(String(255), nullable=False)

    source_type: Mapped[AdjustmentSource] = mapped_column(
        state_enum(AdjustmentSource, "adjustment_source"),
        nullable=False,
        default=AdjustmentSource.MANUAL,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    included: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    state: Mapped[AdjustmentState] = mapped_column(
        state_enum(AdjustmentState, "adjustment_state"),
        nullable=False,
        default=AdjustmentState.OPEN,
    )

    order: Mapped["Order"] = relationship("Order", back_populates="adjustments")

    line_item: Mapped[Optional["LineItem"]] = relationship("LineItem")

    shipment: Mapped[Optional["Shipment"]] = relationship("Shipment")

    @property
    def closed(self) -> bool:
        return self.state == AdjustmentState.CLOSED

    @property
    def is_promotion(self) -> bool:
        return self.source_type == AdjustmentSource.PROMOTION

    @property
    def is_shipping(self) -> bool:
        return self.source_type == AdjustmentSource.SHIPPING

    def close(self) -> None:
        self.state = AdjustmentState.CLOSED

    def __repr__(self) -> str:
        return f"<Adjustment(id={self.id}, label={self.label!r}, amount={self.amount})>"
