"""
Test suite for OrderService.

Tests cover order creation and user association, checkout restarts,
finalization, cancellation and approval, merging carts, emptying orders,
shipment recalculation and payment method availability.
"""

from decimal import Decimal
from unittest.mock import Mock

import pytest
from sqlalchemy import inspect, select

from storefront.database.models import (
    Address,
    Adjustment,
    Order,
    Payment,
    PaymentMethod,
)
from storefront.services.notifications.errors import MailDeliveryError
from storefront.services.orders.enums import (
    AdjustmentSource,
    OrderEvent,
    OrderPaymentState,
    OrderShipmentState,
    OrderState,
    PaymentState,
    ShipmentState,
)
from storefront.services.orders.service import OrderMergeError, OrderStateError
from storefront.services.orders.state_machine import StateTransitionError


# ============================================================================
# Helpers
# ============================================================================


def advance_to(order_service, order: Order, state: OrderState) -> Order:
    while order.state != state:
        assert order_service.next(order), order.errors.to_dict()
    return order


def stored_columns(db_session, order: Order, *names: str):
    """Read columns straight from the connection, bypassing the identity map."""
    table = Order.__table__
    query = select(*(table.c[name] for name in names)).where(table.c.id == order.id)
    return db_session.connection().execute(query).one()


# ============================================================================
# Creation and Users
# ============================================================================


class TestCreateOrder:
    """Test creation of cart orders."""

    def test_creates_numbered_cart(self, order_service) -> None:
        """Test new orders get a number and guest token on creation."""
        order = order_service.create_order(email="guest@example.com")

        assert order.id is not None
        assert order.number.startswith("R")
        assert order.guest_token
        assert order.state == OrderState.CART
        assert order.total == Decimal("0.00")

    def test_numbers_are_unique(self, order_service) -> None:
        first = order_service.create_order()
        second = order_service.create_order()

        assert first.number != second.number

    def test_user_defaults_copied(self, order_service, make_user) -> None:
        user = make_user(email="buyer@example.com", with_addresses=True)

        order = order_service.create_order(user=user)

        assert order.user is user
        assert order.email == "buyer@example.com"
        assert order.created_by is user
        assert order.bill_address is user.bill_address
        assert order.ship_address is user.ship_address

    def test_explicit_email_kept(self, order_service, make_user) -> None:
        user = make_user(email="account@example.com")

        order = order_service.create_order(email="other@example.com", user=user)

        assert order.email == "other@example.com"
        assert order.user is user


class TestAssociateUser:
    """Test associating a user with an order."""

    def test_stored_order_gets_user_columns(
        self, db_session, order_service, make_order, make_user
    ) -> None:
        """Test user, email and creator are written for stored orders."""
        order = make_order(email=None)
        user = make_user(email="linked@example.com")

        order_service.associate_user(order, user)
        db_session.commit()

        user_id, email, created_by_id = stored_columns(
            db_session, order, "user_id", "email", "created_by_id"
        )
        assert user_id == user.id
        assert email == "linked@example.com"
        assert created_by_id == user.id

    def test_incomplete_address_is_not_saved(
        self, db_session, order_service, make_order, make_user
    ) -> None:
        """Test an invalid address on the order stays unsaved."""
        order = make_order()
        user = make_user(email="linked@example.com")
        incomplete = Address(firstname="Only")
        order.bill_address = incomplete

        order_service.associate_user(order, user)

        (user_id,) = stored_columns(db_session, order, "user_id")
        assert user_id == user.id
        assert inspect(incomplete).persistent is False
        assert order.bill_address is incomplete

    def test_keeps_existing_email_without_override(self, order_service, make_user) -> None:
        user = make_user(email="account@example.com")
        order = Order(email="typed@example.com")

        order_service.associate_user(order, user, override_email=False)

        assert order.email == "typed@example.com"
        assert order.user is user

    def test_keeps_existing_creator(self, order_service, make_user) -> None:
        admin = make_user(admin=True)
        customer = make_user()
        order = Order(created_by=admin)

        order_service.associate_user(order, customer)

        assert order.created_by is admin


# ============================================================================
# Checkout
# ============================================================================


class TestCheckoutRestart:
    """Test restarting checkout and shipment resets."""

    def test_restart_returns_to_address(
        self, order_service, make_variant, make_order
    ) -> None:
        order = make_order(lines=((make_variant(), 1),))
        advance_to(order_service, order, OrderState.PAYMENT)

        order_service.restart_checkout_flow(order)

        assert order.state == OrderState.ADDRESS

    def test_restart_from_delivery_with_default_steps(
        self, order_service, make_variant, make_order
    ) -> None:
        """Test a free order lists confirm by default and restarts to address."""
        order = make_order(lines=((make_variant(price="0.00"), 1),))
        advance_to(order_service, order, OrderState.DELIVERY)

        assert order.checkout_steps == ["address", "delivery", "confirm", "complete"]

        order_service.restart_checkout_flow(order)

        assert order.state == OrderState.ADDRESS

    def test_restart_of_empty_order_stays_in_cart(self, order_service, make_order) -> None:
        order = make_order(state=OrderState.DELIVERY)

        order_service.restart_checkout_flow(order)

        assert order.state == OrderState.CART

    def test_ensure_updated_shipments_discards_shipments(
        self, settings, order_service, make_variant, make_order
    ) -> None:
        """Test changing an order mid-checkout drops its shipments."""
        settings.flat_shipping_rate = Decimal("5.00")
        order = make_order(lines=((make_variant(), 1),))
        advance_to(order_service, order, OrderState.PAYMENT)
        assert order.shipments

        order_service.ensure_updated_shipments(order)

        assert order.shipments == []
        assert order.shipment_total == 0
        assert order.state == OrderState.ADDRESS

    def test_ensure_updated_shipments_leaves_completed_orders(
        self, order_service, completed_order
    ) -> None:
        shipments = list(completed_order.shipments)

        order_service.ensure_updated_shipments(completed_order)

        assert completed_order.shipments == shipments
        assert completed_order.state == OrderState.COMPLETE

    def test_ensure_updated_shipments_without_shipments(
        self, order_service, make_variant, make_order
    ) -> None:
        order = make_order(lines=((make_variant(), 1),), state=OrderState.ADDRESS)

        order_service.ensure_updated_shipments(order)

        assert order.state == OrderState.ADDRESS


class TestAvailablePaymentMethods:
    """Test payment methods offered at checkout."""

    def test_filters_by_activity_display_and_environment(
        self, db_session, order_service, make_order
    ) -> None:
        db_session.add_all(
            [
                PaymentMethod(name="Card", active=True, display_on="both", environment="test"),
                PaymentMethod(name="Check", active=True, display_on="front_end", environment=None),
                PaymentMethod(
                    name="Store Credit", active=True, display_on="back_end", environment="test"
                ),
                PaymentMethod(name="Old Card", active=False, display_on="both", environment="test"),
                PaymentMethod(name="Live Card", active=True, display_on="both", environment="production"),
            ]
        )
        db_session.commit()
        order = make_order()

        methods = order_service.available_payment_methods(order)

        assert sorted(method.name for method in methods) == ["Card", "Check"]


# ============================================================================
# Finalization
# ============================================================================


class TestFinalize:
    """Test side effects of completing checkout."""

    def test_closes_adjustments(self, db_session, make_variant, make_order, checkout) -> None:
        order = make_order(lines=((make_variant(), 2),))
        adjustment = Adjustment(
            label="Promotion",
            source_type=AdjustmentSource.PROMOTION,
            amount=Decimal("-1.00"),
            eligible=True,
        )
        order.adjustments.append(adjustment)
        db_session.commit()

        checkout(order)

        assert adjustment.closed is True

    def test_takes_units_out_of_stock(self, completed_order) -> None:
        variant = completed_order.line_items[0].variant

        assert variant.stock_items[0].count_on_hand == 8
        assert all(not unit.pending for unit in completed_order.inventory_units)

    def test_runs_update_hooks(self, make_variant, make_order, checkout) -> None:
        hook = Mock()
        Order.register_update_hook(hook)
        order = make_order(lines=((make_variant(), 1),))

        checkout(order)

        hook.assert_any_call(order)

    def test_sends_confirmation_once(self, order_service, completed_order, outbox) -> None:
        """Test the confirmation is not sent again on a second finalize."""
        assert len(outbox.sent_emails) == 1
        assert outbox.sent_emails[0]["to"] == "customer@example.com"

        order_service.finalize(completed_order)

        assert len(outbox.sent_emails) == 1

    def test_no_email_address_skips_confirmation(
        self, make_variant, make_order, checkout, outbox
    ) -> None:
        order = make_order(lines=((make_variant(), 1),), email=None)

        checkout(order)

        assert order.completed is True
        assert order.confirmation_delivered is False
        assert outbox.sent_emails == []

    def test_delivery_failure_rolls_back_completion(
        self, order_service, make_variant, make_order, outbox
    ) -> None:
        """Test a rejected confirmation email leaves the order in confirm."""
        order = make_order(lines=((make_variant(), 1),))
        advance_to(order_service, order, OrderState.CONFIRM)
        outbox.configure(should_succeed=False)

        with pytest.raises(MailDeliveryError):
            order_service.next(order)

        assert order.state == OrderState.CONFIRM
        assert order.completed_at is None

    def test_approved_order_not_flagged(
        self, db_session, order_service, make_user, make_variant, make_order
    ) -> None:
        order = make_order(lines=((make_variant(), 1),))
        advance_to(order_service, order, OrderState.CONFIRM)
        order.payments.append(
            Payment(amount=order.total, state=PaymentState.COMPLETED, cvv_response_code="N")
        )
        order.approver = make_user(admin=True)
        order.approved_at = order.created_at
        db_session.commit()

        order_service.next(order)

        assert order.state == OrderState.COMPLETE


# ============================================================================
# Cancellation and Approval
# ============================================================================


class TestCancellation:
    """Test canceling and resuming orders."""

    def test_canceled_by_records_canceler(
        self, order_service, completed_order, make_user
    ) -> None:
        admin = make_user(admin=True)

        order_service.canceled_by(completed_order, admin)

        assert completed_order.state == OrderState.CANCELED
        assert completed_order.canceler is admin
        assert completed_order.canceled_at is not None
        assert completed_order.payment_state == OrderPaymentState.VOID

    def test_cancel_voids_completed_payments(
        self, db_session, order_service, completed_order
    ) -> None:
        payment = Payment(amount=completed_order.total, state=PaymentState.COMPLETED)
        completed_order.payments.append(payment)
        db_session.commit()

        order_service.cancel(completed_order)

        assert payment.state == PaymentState.VOID

    def test_cancel_of_incomplete_order_raises(
        self, order_service, make_variant, make_order, make_user
    ) -> None:
        order = make_order(lines=((make_variant(), 1),))

        with pytest.raises(StateTransitionError):
            order_service.canceled_by(order, make_user(admin=True))

        assert order.state == OrderState.CART
        assert order.canceled_at is None
        assert order.canceler is None

    def test_resume(self, order_service, completed_order) -> None:
        order_service.cancel(completed_order)

        order_service.resume(completed_order)

        assert completed_order.state == OrderState.RESUMED
        assert completed_order.payment_state == OrderPaymentState.BALANCE_DUE

    def test_resume_requires_canceled_order(self, order_service, completed_order) -> None:
        with pytest.raises(StateTransitionError):
            order_service.resume(completed_order)


class TestApproval:
    """Test approving orders held for review."""

    def test_approved_by_releases_risky_order(
        self, db_session, order_service, completed_order, make_user
    ) -> None:
        """Test approval moves a risky order back to complete."""
        order_service.state_machine.fire(completed_order, OrderEvent.CONSIDERED_RISKY)
        approver = make_user(admin=True)

        order_service.approved_by(completed_order, approver)

        assert completed_order.state == OrderState.COMPLETE
        assert completed_order.approver is approver
        assert completed_order.approved_at is not None
        assert completed_order.approved is True

    def test_approved_by_on_complete_order(
        self, order_service, completed_order, make_user
    ) -> None:
        approver = make_user(admin=True)

        order_service.approved_by(completed_order, approver)

        assert completed_order.state == OrderState.COMPLETE
        assert completed_order.approver is approver


# ============================================================================
# Totals and Contents
# ============================================================================


class TestUpdate:
    """Test recomputation through the service."""

    def test_full_payment_marks_order_paid(
        self, db_session, order_service, completed_order
    ) -> None:
        completed_order.payments.append(
            Payment(amount=completed_order.total, state=PaymentState.COMPLETED)
        )
        db_session.commit()

        order_service.update(completed_order)

        assert completed_order.payment_total == completed_order.total
        assert completed_order.payment_state == OrderPaymentState.PAID
        assert completed_order.shipment_state == OrderShipmentState.READY
        assert all(
            shipment.state == ShipmentState.READY for shipment in completed_order.shipments
        )


class TestEmpty:
    """Test emptying orders."""

    def test_empty_removes_contents(self, order_service, make_variant, make_order) -> None:
        order = make_order(lines=((make_variant(), 2), (make_variant(), 1)))
        advance_to(order_service, order, OrderState.DELIVERY)

        order_service.empty(order)

        assert order.line_items == []
        assert order.shipments == []
        assert order.adjustments == []
        assert order.item_count == 0
        assert order.item_total == Decimal("0.00")
        assert order.total == Decimal("0.00")

    def test_empty_completed_order_raises(self, order_service, completed_order) -> None:
        with pytest.raises(OrderStateError):
            order_service.empty(completed_order)

        assert len(completed_order.line_items) == 1


class TestMerge:
    """Test merging another order into the current one."""

    def test_same_variant_quantities_combined(
        self, db_session, order_service, make_variant, make_order
    ) -> None:
        """Test line items for the same variant are combined."""
        variant = make_variant(price="10.00")
        order = make_order(lines=((variant, 1),))
        other = make_order(lines=((variant, 2),))
        other_id = other.id

        order_service.merge(order, other)

        assert len(order.line_items) == 1
        assert order.line_items[0].quantity == 3
        assert order.item_count == 3
        assert order.item_total == Decimal("30.00")
        assert db_session.get(Order, other_id) is None

    def test_different_variants_moved(self, order_service, make_variant, make_order) -> None:
        first = make_variant(price="10.00")
        second = make_variant(price="5.00")
        order = make_order(lines=((first, 1),))
        other = make_order(lines=((second, 2),))

        order_service.merge(order, other)

        assert {line_item.variant.sku for line_item in order.line_items} == {
            first.sku,
            second.sku,
        }
        assert order.item_total == Decimal("20.00")

    def test_hooks_keep_differing_options_apart(
        self, db_session, order_service, make_variant, make_order
    ) -> None:
        """Test a comparison hook stops line items with other options merging."""
        variant = make_variant()
        order = make_order(lines=((variant, 1),))
        other = make_order(lines=((variant, 1),))
        order.line_items[0].options = {"gift_wrap": False}
        other.line_items[0].options = {"gift_wrap": True}
        db_session.commit()
        Order.register_line_item_comparison_hook(
            lambda order, line_item, options: (line_item.options or {}).get("gift_wrap")
            == options.get("gift_wrap")
        )

        order_service.merge(order, other)

        assert sorted(line_item.quantity for line_item in order.line_items) == [1, 1]
        assert order.item_count == 2

    def test_other_currency_items_dropped(
        self, order_service, make_variant, make_order
    ) -> None:
        variant = make_variant()
        order = make_order(lines=((variant, 1),), currency="USD")
        other = make_order(lines=((make_variant(), 1),), currency="EUR")

        order_service.merge(order, other)

        assert len(order.line_items) == 1
        assert order.item_count == 1

    def test_user_assigned_to_anonymous_order(
        self, order_service, make_variant, make_order, make_user
    ) -> None:
        user = make_user(email="shopper@example.com")
        order = make_order(lines=((make_variant(), 1),))
        other = make_order(lines=((make_variant(), 1),))

        order_service.merge(order, other, user=user)

        assert order.user is user

    def test_merge_into_itself_raises(self, order_service, make_variant, make_order) -> None:
        order = make_order(lines=((make_variant(), 1),))

        with pytest.raises(OrderMergeError):
            order_service.merge(order, order)

    def test_merge_completed_order_raises(
        self, order_service, completed_order, make_variant, make_order
    ) -> None:
        other = make_order(lines=((make_variant(), 1),))

        with pytest.raises(OrderMergeError):
            order_service.merge(completed_order, other)


# ============================================================================
# Shipments and Locking
# ============================================================================


class TestShipmentCosts:
    """Test shipment cost and promotion recalculation."""

    def test_set_shipments_cost_uses_selected_rate(
        self, order_service, make_variant, make_order
    ) -> None:
        order = make_order(lines=((make_variant(), 1),))
        advance_to(order_service, order, OrderState.DELIVERY)
        shipment = order.shipments[0]
        shipment.shipping_rates[0].cost = Decimal("7.50")

        order_service.set_shipments_cost(order)

        assert shipment.cost == Decimal("7.50")
        assert order.shipment_total == Decimal("7.50")

    def test_apply_free_shipping_promotions(
        self, settings, order_service, make_variant, make_order
    ) -> None:
        settings.flat_shipping_rate = Decimal("5.00")
        settings.free_shipping_threshold = Decimal("10.00")
        order = make_order(lines=((make_variant(price="10.00"), 1),))
        advance_to(order_service, order, OrderState.DELIVERY)

        order_service.apply_free_shipping_promotions(order)

        shipment = order.shipments[0]
        assert shipment.promo_total == Decimal("-5.00")
        assert shipment.adjustment_total == Decimal("-5.00")
        assert order.shipment_total == Decimal("5.00")
        assert [adj.label for adj in order.adjustments] == ["Promotion (Free shipping)"]


class TestWithLock:
    """Test running changes under a row lock."""

    def test_changes_committed(self, db_session, order_service, make_order) -> None:
        order = make_order()

        with order_service.with_lock(order) as locked:
            locked.special_instructions = "Leave at the door"

        (instructions,) = stored_columns(db_session, order, "special_instructions")
        assert instructions == "Leave at the door"

    def test_error_rolls_back(self, db_session, order_service, make_order) -> None:
        order = make_order()

        with pytest.raises(ValueError):
            with order_service.with_lock(order) as locked:
                locked.special_instructions = "Never saved"
                raise ValueError("abort")

        assert order.special_instructions is None
