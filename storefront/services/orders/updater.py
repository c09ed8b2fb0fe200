"""
Order updater recomputing totals and summary states.

Order totals are never maintained by hand: every change to line items,
shipments, adjustments or payments is followed by an updater run that
recomputes the stored totals and, for completed orders, the payment and
shipment states.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session, object_session

from storefront.core.logging import get_logger
from storefront.database.models.order import Order
from storefront.services.orders.enums import (
    AdjustmentSource,
    OrderPaymentState,
    OrderShipmentState,
    OrderState,
    PaymentState,
    ShipmentState,
)

logger = get_logger(__name__)

ZERO = Decimal("0.00")


class OrderUpdater:
    """
    Recomputes an order's stored totals and summary states.

    Attributes:
        order: Order being updated
    """

    def __init__(self, order: Order, db_session: Optional[Session] = None):
        self.order = order
        self._db = db_session

    @property
    def db(self) -> Optional[Session]:
        return self._db or object_session(self.order)

    def update(self) -> None:
        """Recompute everything and persist the totals."""
        self.update_totals()
        if self.order.completed:
            self.update_payment_state()
            self.update_shipments()
            self.update_shipment_state()
        self.run_hooks()
        self.persist_totals()

        logger.debug(
            "Order updated",
            order_number=self.order.number,
            total=str(self.order.total),
            payment_state=_value(self.order.payment_state),
            shipment_state=_value(self.order.shipment_state),
        )

    def run_hooks(self) -> None:
        for hook in Order.update_hooks:
            hook(self.order)

    def update_totals(self) -> None:
        self.update_payment_total()
        self.update_item_count()
        self.update_item_total()
        self.update_shipment_total()
        self.update_adjustment_total()

    def update_payment_total(self) -> None:
        self.order.payment_total = sum(
            (
                payment.amount
                for payment in self.order.payments
                if payment.state == PaymentState.COMPLETED
            ),
            ZERO,
        )

    def update_item_count(self) -> None:
        self.order.item_count = self.order.quantity

    def update_item_total(self) -> None:
        self.order.item_total = sum(
            (line_item.amount for line_item in self.order.line_items),
            ZERO,
        )
        self.update_order_total()

    def update_shipment_total(self) -> None:
        self.order.shipment_total = sum(
            (shipment.cost or ZERO for shipment in self.order.shipments),
            ZERO,
        )
        self.update_order_total()

    def update_adjustment_total(self) -> None:
        eligible = [adjustment for adjustment in self.order.adjustments if adjustment.eligible]

        self.order.adjustment_total = sum(
            (adjustment.amount for adjustment in eligible if not adjustment.included),
            ZERO,
        )
        self.order.promo_total = sum(
            (adjustment.amount for adjustment in eligible if adjustment.is_promotion),
            ZERO,
        )
        self.order.included_tax_total = sum(
            (
                adjustment.amount
                for adjustment in eligible
                if adjustment.source_type == AdjustmentSource.TAX and adjustment.included
            ),
            ZERO,
        )
        self.order.additional_tax_total = sum(
            (
                adjustment.amount
                for adjustment in eligible
                if adjustment.source_type == AdjustmentSource.TAX and not adjustment.included
            ),
            ZERO,
        )
        self.update_order_total()

    def update_order_total(self) -> None:
        self.order.total = (
            (self.order.item_total or ZERO)
            + (self.order.shipment_total or ZERO)
            + (self.order.adjustment_total or ZERO)
        )

    def update_payment_state(self) -> OrderPaymentState:
        """
        Summarise payments on the order.

        Returns:
            The new payment state
        """
        previous = self.order.payment_state
        payments = self.order.payments

        if payments and not any(payment.valid for payment in payments):
            new_state = OrderPaymentState.FAILED
        elif self.order.state == OrderState.CANCELED and (self.order.payment_total or ZERO) == 0:
            new_state = OrderPaymentState.VOID
        else:
            balance = self.order.outstanding_balance
            if balance > 0:
                new_state = OrderPaymentState.BALANCE_DUE
            elif balance < 0:
                new_state = OrderPaymentState.CREDIT_OWED
            else:
                new_state = OrderPaymentState.PAID

        if _value(previous) != new_state.value:
            self.order.payment_state = new_state
            self.order.state_changed("payment")
        return new_state

    def update_shipments(self) -> None:
        for shipment in self.order.shipments:
            if shipment.state in (ShipmentState.SHIPPED, ShipmentState.CANCELED):
                continue
            shipment.refresh_state(self.order)

    def update_shipment_state(self) -> Optional[OrderShipmentState]:
        """
        Summarise shipment states on the order.

        Returns:
            The new shipment state, or None without shipments
        """
        previous = self.order.shipment_state

        if self.order.backordered:
            new_state: Optional[OrderShipmentState] = OrderShipmentState.BACKORDER
        else:
            states = {_value(shipment.state) for shipment in self.order.shipments}
            if len(states) > 1:
                new_state = OrderShipmentState.PARTIAL
            elif states:
                new_state = OrderShipmentState(states.pop())
            else:
                new_state = None

        if _value(previous) != _value(new_state):
            self.order.shipment_state = new_state
            self.order.state_changed("shipment")
        return new_state

    def persist_totals(self) -> None:
        """Write the recomputed columns when the order is already stored."""
        session = self.db
        if session is not None and self.order in session:
            session.flush()


def _value(state) -> Optional[str]:
    return getattr(state, "value", state)
