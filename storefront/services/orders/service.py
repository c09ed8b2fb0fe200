"""
Order service orchestrating the order lifecycle.

This module implements the OrderService class: order creation, checkout
progression and its guards, finalization, cancellation and approval,
merging carts, shipment recalculation and user association. Totals always
go through the order updater. Methods that persist commit on success and
roll the session back on failure.
"""

from contextlib import contextmanager
from typing import Any, Iterator, Optional, Type

from sqlalchemy import inspect, or_, select, update
from sqlalchemy.orm import Session

from storefront.core.config import get_settings
from storefront.core.logging import get_logger, log_performance
from storefront.database.base import utcnow
from storefront.database.models.order import Order, generate_guest_token
from storefront.database.models.payment import PaymentMethod
from storefront.database.models.shipment import Shipment
from storefront.database.models.user import User
from storefront.services.notifications.mailer import OrderMailer
from storefront.services.orders.contents import OrderContents
from storefront.services.orders.enums import OrderEvent, OrderState
from storefront.services.orders.repository import OrderRepository
from storefront.services.orders.state_machine import OrderStateMachine
from storefront.services.orders.updater import OrderUpdater
from storefront.services.promotions.free_shipping import (
    FreeShippingHandler,
    ShipmentAdjustments,
)
from storefront.services.stock.coordinator import StockCoordinator

logger = get_logger(__name__)

DELETED_VARIANTS_PRESENT = (
    "Some line items in this order have products that are no longer available."
)
INSUFFICIENT_STOCK_LINES_PRESENT = (
    "Some line items in this order have insufficient quantity."
)


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderStateError(OrderServiceError):
    """Raised when an operation is not allowed in the order's state."""

    pass


class OrderMergeError(OrderServiceError):
    """Raised when two orders cannot be merged."""

    pass


class OrderService:
    """
    Order service orchestrating business logic and collaborators.

    Attributes:
        repository: Order repository for data access
        state_machine: State machine for order lifecycle management
        mailer: Builds order confirmation and cancellation emails
        coordinator_class: Builds proposed shipments for an order
    """

    def __init__(
        self,
        session: Session,
        mailer: Optional[OrderMailer] = None,
        coordinator_class: Type[StockCoordinator] = StockCoordinator,
    ):
        """
        Initialize order service.

        Args:
            session: Database session
            mailer: Optional mailer instance
            coordinator_class: Stock coordinator used for proposed shipments
        """
        self.db = session
        self.repository = OrderRepository(session)
        self.state_machine = OrderStateMachine(session, self)
        self.mailer = mailer or OrderMailer(session)
        self.coordinator_class = coordinator_class

    # ========================================================================
    # Collaborators
    # ========================================================================

    def updater(self, order: Order) -> OrderUpdater:
        return OrderUpdater(order, self.db)

    def contents(self, order: Order) -> OrderContents:
        return OrderContents(order, self.db)

    def _commit(self, operation: str, order: Order) -> None:
        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(
                "Order operation failed",
                operation=operation,
                order_number=order.number,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise

    @contextmanager
    def with_lock(self, order: Order) -> Iterator[Order]:
        """
        Hold a row lock on the order for the duration of the block.

        The order is reloaded with ``SELECT ... FOR UPDATE``; the block's
        changes are committed on success and rolled back on error.
        """
        try:
            self.db.refresh(order, with_for_update=True)
            yield order
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(
                "Locked order operation failed",
                order_number=order.number,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    # ========================================================================
    # Creation and users
    # ========================================================================

    def create_order(
        self,
        email: Optional[str] = None,
        user: Optional[User] = None,
        currency: Optional[str] = None,
    ) -> Order:
        """
        Create an empty cart order.

        The order number is assigned on insert; the guest token is assigned
        immediately.
        """
        order = Order(email=email, currency=currency, guest_token=generate_guest_token())
        if user is not None:
            self.associate_user(order, user, override_email=email is None)

        self.db.add(order)
        self._commit("create_order", order)

        logger.info(
            "Order created",
            order_id=str(order.id),
            order_number=order.number,
            user_id=str(user.id) if user else None,
        )
        return order

    def associate_user(self, order: Order, user: User, override_email: bool = True) -> Order:
        """
        Assign a user to the order and copy their defaults.

        For stored orders only the user, email, creator and address ids are
        written, so an incomplete address assigned to the order stays
        unsaved. The caller's transaction decides when the write commits.
        """
        with self.db.no_autoflush:
            order.user = user
            if override_email or not order.email:
                order.email = user.email
            if order.created_by is None:
                order.created_by = user
            if order.bill_address is None:
                order.bill_address = user.bill_address
            if order.ship_address is None:
                order.ship_address = user.ship_address

            if inspect(order).persistent:
                values = {
                    "user_id": user.id,
                    "email": order.email,
                    "created_by_id": order.created_by.id if order.created_by else None,
                }
                for name in ("bill_address", "ship_address"):
                    address = getattr(order, name)
                    if address is not None and address.id is not None:
                        values[f"{name}_id"] = address.id
                self.db.execute(update(Order).where(Order.id == order.id).values(**values))

        logger.info(
            "User associated with order",
            order_number=order.number,
            user_id=str(user.id),
        )
        return order

    # ========================================================================
    # Checkout
    # ========================================================================

    def next(self, order: Order) -> bool:
        return self.state_machine.fire(order, OrderEvent.NEXT)

    def restart_checkout_flow(self, order: Order) -> None:
        """Send the order back to the cart and on to the first checkout step."""
        order.state = OrderState.CART
        self._commit("restart_checkout_flow", order)

        logger.info("Checkout flow restarted", order_number=order.number)

        if order.line_items:
            self.state_machine.fire_strict(order, OrderEvent.NEXT)

    def ensure_line_item_variants_are_not_deleted(self, order: Order) -> bool:
        if order.deleted_variant_lines:
            order.errors.add("base", DELETED_VARIANTS_PRESENT)
            self.restart_checkout_flow(order)
            return False
        return True

    def ensure_line_items_are_in_stock(self, order: Order) -> bool:
        if order.insufficient_stock_lines:
            order.errors.add("base", INSUFFICIENT_STOCK_LINES_PRESENT)
            self.restart_checkout_flow(order)
            return False
        return True

    def available_payment_methods(self, order: Order) -> list[PaymentMethod]:
        """Active front end payment methods for the current environment."""
        environment = get_settings().environment
        stmt = select(PaymentMethod).where(
            PaymentMethod.active.is_(True),
            or_(
                PaymentMethod.environment == environment,
                PaymentMethod.environment.is_(None),
                PaymentMethod.environment == "",
            ),
        )
        methods = [method for method in self.db.scalars(stmt) if method.available_on_front_end]
        return list(dict.fromkeys(methods))

    # ========================================================================
    # Shipments
    # ========================================================================

    def _destroy_shipments(self, order: Order) -> None:
        for shipment in list(order.shipments):
            for adjustment in shipment.adjustments:
                order.adjustments.remove(adjustment)
            order.shipments.remove(shipment)

    def create_proposed_shipments(self, order: Order) -> list[Shipment]:
        """Replace the order's shipments with freshly packed ones."""
        for adjustment in order.shipping_adjustments:
            order.adjustments.remove(adjustment)
        self._destroy_shipments(order)

        order.shipments = self.coordinator_class(order).shipments()

        logger.info(
            "Proposed shipments created",
            order_number=order.number,
            shipment_count=len(order.shipments),
        )
        return order.shipments

    def set_shipments_cost(self, order: Order) -> None:
        for shipment in order.shipments:
            shipment.update_amounts()

        updater = self.updater(order)
        updater.update_shipment_total()
        updater.persist_totals()
        self._commit("set_shipments_cost", order)

    def apply_free_shipping_promotions(self, order: Order) -> None:
        FreeShippingHandler(order).activate()
        for shipment in order.shipments:
            ShipmentAdjustments(shipment).update()

        updater = self.updater(order)
        updater.update_shipment_total()
        updater.persist_totals()
        self._commit("apply_free_shipping_promotions", order)

    def ensure_updated_shipments(self, order: Order) -> None:
        """Drop shipments of an incomplete order and restart its checkout."""
        if not order.shipments or order.completed:
            return

        self._destroy_shipments(order)
        order.shipment_total = 0
        self._commit("ensure_updated_shipments", order)

        logger.info("Shipments discarded for checkout restart", order_number=order.number)
        self.restart_checkout_flow(order)

    # ========================================================================
    # Totals and contents
    # ========================================================================

    def update(self, order: Order) -> Order:
        self.updater(order).update()
        self._commit("update", order)
        return order

    def empty(self, order: Order) -> Order:
        """
        Remove every line item, adjustment and shipment.

        Raises:
            OrderStateError: If the order is completed
        """
        if order.completed:
            raise OrderStateError(
                "Cannot empty a completed order",
                order_number=order.number,
                state=getattr(order.state, "value", order.state),
            )

        order.adjustments.clear()
        self._destroy_shipments(order)
        order.line_items.clear()

        updater = self.updater(order)
        updater.update_totals()
        updater.persist_totals()
        self._commit("empty", order)

        logger.info("Order emptied", order_number=order.number)
        return order

    def merge(self, order: Order, other: Order, user: Optional[User] = None) -> Order:
        """
        Move the other order's line items into this order and delete it.

        Line items for the same variant whose options all comparison hooks
        accept are combined; the rest are moved over. Line items in another
        currency are dropped with the other order.

        Raises:
            OrderMergeError: If the orders cannot be merged
        """
        if other is order or (other.id is not None and other.id == order.id):
            raise OrderMergeError("Cannot merge an order into itself", order_number=order.number)
        if order.completed or other.completed:
            raise OrderMergeError(
                "Cannot merge completed orders",
                order_number=order.number,
                other_number=other.number,
            )

        with log_performance(
            logger, "order_merge", order_number=order.number, other_number=other.number
        ):
            try:
                for other_line_item in list(other.line_items):
                    if (other_line_item.currency or other.currency) != order.currency:
                        continue

                    current = order.find_line_item_by_variant(
                        other_line_item.variant,
                        dict(other_line_item.options or {}),
                    )
                    if current is not None:
                        current.quantity += other_line_item.quantity
                        current.pre_tax_amount = current.amount
                    else:
                        order.line_items.append(other_line_item)

                if order.user is None and user is not None:
                    self.associate_user(order, user)

                updater = self.updater(order)
                updater.update_item_count()
                updater.update_item_total()
                updater.persist_totals()

                self.db.delete(other)
                self.db.commit()

            except Exception as e:
                self.db.rollback()
                logger.error(
                    "Order merge failed",
                    order_number=order.number,
                    other_number=other.number,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                raise

        return order

    # ========================================================================
    # Completion
    # ========================================================================

    def finalize(self, order: Order) -> Order:
        """
        Finish a completed checkout.

        Freezes adjustments, settles payment and shipment states, takes
        inventory out of stock, sends the confirmation email once and flags
        risky orders for review.
        """
        with log_performance(logger, "order_finalize", order_number=order.number):
            try:
                for adjustment in order.all_adjustments:
                    adjustment.close()

                updater = self.updater(order)
                updater.update_payment_state()
                for shipment in order.shipments:
                    shipment.refresh_state(order)
                    shipment.finalize()
                updater.update_shipment_state()
                updater.run_hooks()

                order.completed_at = utcnow()
                self.db.flush()

                if not order.confirmation_delivered:
                    self.deliver_order_confirmation_email(order)

                self.db.commit()

            except Exception as e:
                self.db.rollback()
                logger.error(
                    "Order finalize failed",
                    order_number=order.number,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                raise

        self.consider_risk(order)
        return order

    def deliver_order_confirmation_email(self, order: Order) -> None:
        if not order.email:
            logger.warning("Order has no email, confirmation skipped", order_number=order.number)
            return
        self.mailer.confirm_email(order.id).deliver()
        order.confirmation_delivered = True

    def send_cancel_email(self, order: Order) -> None:
        if not order.email:
            logger.warning("Order has no email, cancel email skipped", order_number=order.number)
            return
        self.mailer.cancel_email(order.id).deliver()

    def consider_risk(self, order: Order) -> None:
        if order.is_risky and not order.approved:
            order.considered_risky = True
            self.state_machine.fire(order, OrderEvent.CONSIDERED_RISKY)

    # ========================================================================
    # Cancellation, resumption and approval
    # ========================================================================

    def cancel(self, order: Order) -> Order:
        """
        Cancel a completed order.

        Raises:
            StateTransitionError: If the order cannot be canceled
        """
        self.state_machine.fire_strict(order, OrderEvent.CANCEL)
        return order

    def canceled_by(self, order: Order, user: User) -> Order:
        with self.with_lock(order):
            self.cancel(order)
            order.canceler = user
            order.canceled_at = utcnow()

        logger.info(
            "Order canceled by user",
            order_number=order.number,
            canceler_id=str(user.id),
        )
        return order

    def resume(self, order: Order) -> Order:
        self.state_machine.fire_strict(order, OrderEvent.RESUME)
        return order

    def approved_by(self, order: Order, user: User) -> Order:
        with self.with_lock(order):
            order.approver = user
            order.approved_at = utcnow()
            if order.state == OrderState.CONSIDERED_RISKY:
                self.state_machine.fire_strict(order, OrderEvent.APPROVE)

        logger.info(
            "Order approved",
            order_number=order.number,
            approver_id=str(user.id),
        )
        return order

    def after_cancel(self, order: Order) -> None:
        for shipment in order.shipments:
            shipment.cancel()
        for payment in order.payments:
            if payment.completed:
                payment.cancel()

        self.send_cancel_email(order)
        self.updater(order).update()

    def after_resume(self, order: Order) -> None:
        for shipment in order.shipments:
            shipment.resume(order)
        self.updater(order).update()
