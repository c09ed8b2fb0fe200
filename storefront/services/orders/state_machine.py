"""Order state machine with guards, side effects and a state change log.

This module implements the OrderStateMachine class driving orders through
checkout (``next``) and the post-checkout events (cancel, return, resume,
authorize_return, considered_risky, approve). The checkout path is computed
per order from its checkout steps; the other events follow the static
transition table in ``enums``.
"""

from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from storefront.core.logging import bound_order, get_logger
from storefront.database.models.order import Order
from storefront.services.orders.enums import (
    OrderEvent,
    OrderState,
    get_allowed_events,
    get_event_target,
)

if TYPE_CHECKING:
    from storefront.services.orders.service import OrderService

logger = get_logger(__name__)


class StateTransitionError(Exception):
    """Raised when an event cannot be fired from the order's current state."""

    def __init__(
        self,
        message: str,
        current_state: Optional[OrderState],
        event: OrderEvent,
        **context: Any,
    ):
        super().__init__(message)
        self.current_state = current_state
        self.event = event
        self.context = context


def checkout_steps(order: Order) -> list[OrderState]:
    """Checkout states the order passes through after the cart."""
    return [OrderState(step) for step in order.checkout_steps]


def next_checkout_state(order: Order) -> Optional[OrderState]:
    """
    State reached by firing ``next`` from the order's current state.

    Returns:
        Target state, or None when the order is outside checkout or at its
        last step
    """
    steps = checkout_steps(order)
    current = OrderState(order.state)

    if current == OrderState.CART:
        return steps[0]
    if current not in steps:
        return None

    position = steps.index(current)
    if position + 1 >= len(steps):
        return None
    return steps[position + 1]


class OrderStateMachine:
    """State machine for the order lifecycle.

    Guards veto a transition and may leave messages on ``order.errors``.
    Side effects run after the new state is set and before the change is
    committed; any exception rolls the session back and propagates.
    """

    def __init__(self, db_session: Session, service: "OrderService"):
        """Initialize state machine.

        Args:
            db_session: SQLAlchemy session for persistence
            service: Order service providing checkout and cancel side effects
        """
        self.db = db_session
        self.service = service
        self._enter_guards: Dict[OrderState, Callable[[Order], bool]] = {
            OrderState.COMPLETE: self._guard_complete,
        }
        self._event_guards: Dict[OrderEvent, Callable[[Order], bool]] = {
            OrderEvent.CANCEL: self._guard_cancel,
            OrderEvent.RETURN: self._guard_returned,
        }
        self._before_enter: Dict[OrderState, Callable[[Order], None]] = {
            OrderState.DELIVERY: self._before_delivery,
        }

    def target_for(self, order: Order, event: OrderEvent) -> Optional[OrderState]:
        if order.state is None:
            return None
        if event == OrderEvent.NEXT:
            return next_checkout_state(order)
        return get_event_target(event, OrderState(order.state))

    def allowed_events(self, order: Order) -> set[OrderEvent]:
        events = set(get_allowed_events(OrderState(order.state)))
        if next_checkout_state(order) is not None:
            events.add(OrderEvent.NEXT)
        return events

    def can_fire(self, order: Order, event: OrderEvent) -> bool:
        """Whether ``fire`` would accept the event. Leaves the order untouched."""
        event = OrderEvent(event)
        target = self.target_for(order, event)
        if target is None:
            return False
        if event == OrderEvent.NEXT and order.state == OrderState.CART and not order.checkout_allowed:
            return False
        event_guard = self._event_guards.get(event)
        if event_guard is not None and not event_guard(order):
            return False
        if event == OrderEvent.NEXT and target == OrderState.COMPLETE:
            return not order.deleted_variant_lines and not order.insufficient_stock_lines
        return True

    def fire(self, order: Order, event: OrderEvent) -> bool:
        """Fire an event.

        Returns:
            True when the order moved to the event's target state
        """
        with bound_order(order.number):
            return self._fire(order, OrderEvent(event))

    def _fire(self, order: Order, event: OrderEvent) -> bool:
        current = OrderState(order.state) if order.state is not None else None
        target = self.target_for(order, event)

        if target is None:
            logger.info(
                "Event not accepted from current state",
                order_number=order.number,
                order_event=event.value,
                current_state=current.value if current else None,
            )
            order.errors.add("state", f"cannot transition via {event.value}")
            return False

        if not self._guards_pass(order, event, target):
            logger.info(
                "Transition guard failed",
                order_number=order.number,
                order_event=event.value,
                transition=f"{current.value}->{target.value}",
                errors=order.errors.full_messages,
            )
            order.errors.add("state", f"cannot transition via {event.value}")
            return False

        self._apply(order, event, current, target)
        return True

    def fire_strict(self, order: Order, event: OrderEvent) -> None:
        """Fire an event, raising when it is rejected.

        Raises:
            StateTransitionError: If the event is not accepted or a guard fails
        """
        event = OrderEvent(event)
        current = OrderState(order.state) if order.state is not None else None
        if not self.fire(order, event):
            raise StateTransitionError(
                f"Cannot transition order via {event.value} from "
                f"{current.value if current else None}",
                current_state=current,
                event=event,
                order_number=order.number,
                errors=order.errors.to_dict(),
            )

    def _guards_pass(self, order: Order, event: OrderEvent, target: OrderState) -> bool:
        if event == OrderEvent.NEXT and order.state == OrderState.CART:
            if not order.checkout_allowed:
                order.errors.add("base", "There are no items for this order.")
                return False

        event_guard = self._event_guards.get(event)
        if event_guard is not None and not event_guard(order):
            return False

        if event == OrderEvent.NEXT:
            enter_guard = self._enter_guards.get(target)
            if enter_guard is not None and not enter_guard(order):
                return False

        return True

    def _apply(
        self,
        order: Order,
        event: OrderEvent,
        current: Optional[OrderState],
        target: OrderState,
    ) -> None:
        transition = f"{current.value if current else None}->{target.value}"
        try:
            before = self._before_enter.get(target)
            if before is not None and event == OrderEvent.NEXT:
                before(order)

            order.state = target
            order.record_state_change("order", current, target)

            self._after_enter(order, event, target)

            self.db.commit()

            logger.info(
                "Order transition applied",
                order_number=order.number,
                order_event=event.value,
                transition=transition,
            )

        except Exception as e:
            self.db.rollback()
            logger.error(
                "Order transition failed",
                order_number=order.number,
                order_event=event.value,
                transition=transition,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise

    def _after_enter(self, order: Order, event: OrderEvent, target: OrderState) -> None:
        if target == OrderState.COMPLETE and event == OrderEvent.NEXT:
            self.service.finalize(order)
        elif target == OrderState.CANCELED:
            self.service.after_cancel(order)
        elif target == OrderState.RESUMED:
            self.service.after_resume(order)

    # Guards

    def _guard_complete(self, order: Order) -> bool:
        return self.service.ensure_line_item_variants_are_not_deleted(
            order
        ) and self.service.ensure_line_items_are_in_stock(order)

    def _guard_cancel(self, order: Order) -> bool:
        return order.allow_cancel

    def _guard_returned(self, order: Order) -> bool:
        return order.all_inventory_units_returned

    # Side effects

    def _before_delivery(self, order: Order) -> None:
        self.service.create_proposed_shipments(order)
        self.service.set_shipments_cost(order)
