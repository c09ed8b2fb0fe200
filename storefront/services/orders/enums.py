"""Order, payment and shipment state enums for the order lifecycle.

This module defines the state vocabularies stored on orders, shipments,
inventory units, adjustments and payments, together with the event
transition table consumed by the order state machine.
"""

from enum import Enum
from typing import Dict, Optional, Set


class OrderState(str, Enum):
    """Order lifecycle state.

    Checkout states run cart -> address -> delivery -> payment -> confirm ->
    complete; which of the middle steps apply depends on the order. After
    completion an order may be canceled, resumed, returned or flagged risky.
    """

    CART = "cart"
    ADDRESS = "address"
    DELIVERY = "delivery"
    PAYMENT = "payment"
    CONFIRM = "confirm"
    COMPLETE = "complete"
    CANCELED = "canceled"
    AWAITING_RETURN = "awaiting_return"
    RETURNED = "returned"
    RESUMED = "resumed"
    CONSIDERED_RISKY = "considered_risky"

    def can_ship(self) -> bool:
        """Check if shipments of an order in this state may be dispatched."""
        return self in {
            OrderState.COMPLETE,
            OrderState.RESUMED,
            OrderState.AWAITING_RETURN,
            OrderState.RETURNED,
        }


class OrderPaymentState(str, Enum):
    """Payment state summarised on the order by the updater."""

    BALANCE_DUE = "balance_due"
    PAID = "paid"
    CREDIT_OWED = "credit_owed"
    FAILED = "failed"
    VOID = "void"

    def is_paid(self) -> bool:
        return self in {OrderPaymentState.PAID, OrderPaymentState.CREDIT_OWED}


class OrderShipmentState(str, Enum):
    """Shipment state summarised on the order by the updater."""

    PENDING = "pending"
    READY = "ready"
    PARTIAL = "partial"
    SHIPPED = "shipped"
    BACKORDER = "backorder"
    CANCELED = "canceled"

    def allows_cancel(self) -> bool:
        """Orders can still be canceled while nothing has left the warehouse."""
        return self in {
            OrderShipmentState.PENDING,
            OrderShipmentState.READY,
            OrderShipmentState.BACKORDER,
        }


class ShipmentState(str, Enum):
    """State of an individual shipment."""

    PENDING = "pending"
    READY = "ready"
    SHIPPED = "shipped"
    CANCELED = "canceled"


class InventoryUnitState(str, Enum):
    """State of a single unit of a variant within a shipment."""

    ON_HAND = "on_hand"
    BACKORDERED = "backordered"
    SHIPPED = "shipped"
    RETURNED = "returned"


class PaymentState(str, Enum):
    """State of a payment record."""

    CHECKOUT = "checkout"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    VOID = "void"
    INVALID = "invalid"

    def is_valid(self) -> bool:
        """Failed and invalid payments do not count towards the order."""
        return self not in {PaymentState.FAILED, PaymentState.INVALID}


class AdjustmentState(str, Enum):
    """Open adjustments are recalculated, closed ones are frozen."""

    OPEN = "open"
    CLOSED = "closed"


class AdjustmentSource(str, Enum):
    """What produced an adjustment."""

    TAX = "tax"
    PROMOTION = "promotion"
    SHIPPING = "shipping"
    MANUAL = "manual"


class OrderEvent(str, Enum):
    """Events accepted by the order state machine."""

    NEXT = "next"
    CANCEL = "cancel"
    RETURN = "return"
    RESUME = "resume"
    AUTHORIZE_RETURN = "authorize_return"
    CONSIDERED_RISKY = "considered_risky"
    APPROVE = "approve"


# Static event transitions; NEXT is computed from the order's checkout steps
ORDER_EVENT_TRANSITIONS: Dict[OrderEvent, tuple[Set[OrderState], OrderState]] = {
    OrderEvent.CANCEL: (
        {
            OrderState.COMPLETE,
            OrderState.RESUMED,
            OrderState.AWAITING_RETURN,
            OrderState.CONSIDERED_RISKY,
        },
        OrderState.CANCELED,
    ),
    OrderEvent.RETURN: (
        {OrderState.COMPLETE, OrderState.AWAITING_RETURN, OrderState.CANCELED},
        OrderState.RETURNED,
    ),
    OrderEvent.RESUME: (
        {OrderState.CANCELED},
        OrderState.RESUMED,
    ),
    OrderEvent.AUTHORIZE_RETURN: (
        {OrderState.COMPLETE, OrderState.RESUMED},
        OrderState.AWAITING_RETURN,
    ),
    OrderEvent.CONSIDERED_RISKY: (
        {OrderState.COMPLETE},
        OrderState.CONSIDERED_RISKY,
    ),
    OrderEvent.APPROVE: (
        {OrderState.CONSIDERED_RISKY},
        OrderState.COMPLETE,
    ),
}


def get_event_target(
    event: OrderEvent,
    current: OrderState,
) -> Optional[OrderState]:
    """Get the target state of a static event from the current state.

    Returns:
        Target state, or None if the event is not accepted from current
    """
    sources, target = ORDER_EVENT_TRANSITIONS.get(event, (set(), None))
    if current in sources:
        return target
    return None


def get_allowed_events(current: OrderState) -> Set[OrderEvent]:
    """Get the static events accepted from the current state."""
    return {
        event
        for event, (sources, _) in ORDER_EVENT_TRANSITIONS.items()
        if current in sources
    }
