"""
Free shipping promotion and shipment adjustment totals.

When a free shipping threshold is configured and the order's item total
reaches it, every shipment gets a promotion adjustment cancelling its cost.
"""

from decimal import Decimal
from typing import Optional

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.database.models.adjustment import Adjustment
from storefront.database.models.order import Order
from storefront.database.models.shipment import Shipment
from storefront.services.orders.enums import AdjustmentSource

logger = get_logger(__name__)

FREE_SHIPPING_LABEL = "Promotion (Free shipping)"


class FreeShippingHandler:
    """Applies the free shipping promotion to an order's shipments."""

    def __init__(self, order: Order, threshold: Optional[Decimal] = None):
        self.order = order
        self.threshold = threshold if threshold is not None else get_settings().free_shipping_threshold

    @property
    def eligible(self) -> bool:
        if self.threshold is None:
            return False
        return (self.order.item_total or Decimal("0")) >= self.threshold

    def activate(self) -> list[Adjustment]:
        """
        Add one free shipping adjustment per shipment that lacks one.

        Returns:
            The adjustments created by this call
        """
        if not self.eligible:
            return []

        created = []
        for shipment in self.order.shipments:
            if any(adj.is_promotion and adj.label == FREE_SHIPPING_LABEL for adj in shipment.adjustments):
                continue
            adjustment = Adjustment(
                shipment=shipment,
                label=FREE_SHIPPING_LABEL,
                source_type=AdjustmentSource.PROMOTION,
                amount=-(shipment.cost or Decimal("0")),
                eligible=True,
            )
            self.order.adjustments.append(adjustment)
            created.append(adjustment)

        if created:
            logger.info(
                "Free shipping applied",
                order_number=self.order.number,
                shipments=len(created),
            )
        return created


class ShipmentAdjustments:
    """Recomputes a shipment's adjustment totals."""

    def __init__(self, shipment: Shipment):
        self.shipment = shipment

    def update(self) -> None:
        eligible = [adj for adj in self.shipment.adjustments if adj.eligible]
        promotions = [adj for adj in eligible if adj.is_promotion]

        # Free shipping never discounts more than the shipment costs
        cost = self.shipment.cost or Decimal("0")
        for adjustment in promotions:
            if adjustment.label == FREE_SHIPPING_LABEL and not adjustment.closed:
                adjustment.amount = -cost

        self.shipment.promo_total = sum((adj.amount for adj in promotions), Decimal("0"))
        self.shipment.adjustment_total = sum(
            (adj.amount for adj in eligible if not adj.included),
            Decimal("0"),
        )
