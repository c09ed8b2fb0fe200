"""
Adding and removing variants on an order.
"""

from typing import Any, Optional

from sqlalchemy.orm import Session, object_session

from storefront.core.logging import get_logger
from storefront.database.models.line_item import LineItem
from storefront.database.models.order import Order
from storefront.database.models.variant import Variant
from storefront.services.orders.updater import OrderUpdater

logger = get_logger(__name__)


class OrderContentsError(Exception):
    """Raised when a line item change cannot be applied."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderContents:
    """
    Line item changes on one order, each followed by an updater run.

    A variant added with options merges into an existing line item only when
    every line item comparison hook accepts the options.
    """

    def __init__(self, order: Order, db_session: Optional[Session] = None):
        self.order = order
        self.db = db_session or object_session(order)
        self.updater = OrderUpdater(order, self.db)

    def add(
        self,
        variant: Variant,
        quantity: int = 1,
        options: Optional[dict[str, Any]] = None,
    ) -> LineItem:
        if quantity <= 0:
            raise OrderContentsError(
                "Quantity must be positive",
                sku=variant.sku,
                quantity=quantity,
            )

        line_item = self.order.find_line_item_by_variant(variant, options)
        if line_item is not None:
            line_item.quantity += quantity
        else:
            line_item = LineItem(
                variant=variant,
                quantity=quantity,
                price=variant.price,
                currency=self.order.currency,
                options=options,
            )
            self.order.line_items.append(line_item)

        line_item.pre_tax_amount = line_item.amount
        self.updater.update()

        logger.info(
            "Variant added to order",
            order_number=self.order.number,
            sku=variant.sku,
            quantity=quantity,
            line_item_quantity=line_item.quantity,
        )
        return line_item

    def remove(
        self,
        variant: Variant,
        quantity: int = 1,
        options: Optional[dict[str, Any]] = None,
    ) -> LineItem:
        line_item = self.order.find_line_item_by_variant(variant, options)
        if line_item is None:
            raise OrderContentsError(
                "Line item not found for variant",
                order_number=self.order.number,
                sku=variant.sku,
            )

        line_item.quantity -= quantity
        if line_item.quantity <= 0:
            self.order.line_items.remove(line_item)
        else:
            line_item.pre_tax_amount = line_item.amount
        self.updater.update()

        logger.info(
            "Variant removed from order",
            order_number=self.order.number,
            sku=variant.sku,
            quantity=quantity,
        )
        return line_item
