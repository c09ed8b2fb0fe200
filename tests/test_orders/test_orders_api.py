"""
Integration tests for order management API endpoints.

Requests run against the test database session through a dependency
override, so orders built with the fixtures are visible to the API and
changes made by the API are visible to the test.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi import status

from storefront.services.orders.enums import OrderEvent, OrderState


def order_url(number: str, action: str = "") -> str:
    url = f"/api/v1/orders/{number}"
    return f"{url}/{action}" if action else url


@pytest.fixture
def cart_order(make_variant, make_order):
    return make_order(lines=((make_variant(price="10.00"), 2),))


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@example.com", admin=True)


# ============================================================================
# Show and Checkout
# ============================================================================


class TestGetOrder:
    """Test GET /orders/{number}."""

    def test_returns_order(self, client, cart_order) -> None:
        response = client.get(order_url(cart_order.number))

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["number"] == cart_order.number
        assert data["state"] == "cart"
        assert data["item_count"] == 2
        assert Decimal(data["total"]) == Decimal("20.00")
        assert data["checkout_steps"] == ["address", "delivery", "payment", "confirm", "complete"]
        assert len(data["line_items"]) == 1
        assert Decimal(data["line_items"][0]["amount"]) == Decimal("20.00")

    def test_unknown_number_is_404(self, client) -> None:
        response = client.get(order_url("R000000000"))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"] == "Order R000000000 not found"


class TestAdvanceOrder:
    """Test POST /orders/{number}/next."""

    def test_moves_to_next_step(self, client, cart_order) -> None:
        response = client.post(order_url(cart_order.number, "next"))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["state"] == "address"

    def test_delivery_step_returns_shipments(self, client, cart_order) -> None:
        client.post(order_url(cart_order.number, "next"))

        response = client.post(order_url(cart_order.number, "next"))

        data = response.json()
        assert data["state"] == "delivery"
        assert len(data["shipments"]) == 1
        assert data["shipments"][0]["state"] == "pending"

    def test_empty_cart_is_422_with_errors(self, client, make_order) -> None:
        """Test a refused step reports the order's errors."""
        order = make_order()

        response = client.post(order_url(order.number, "next"))

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        detail = response.json()["detail"]
        assert detail["errors"]["base"] == ["There are no items for this order."]
        assert "next" in detail["errors"]["state"][0]


# ============================================================================
# Cancellation and Approval
# ============================================================================


class TestCancelOrder:
    """Test POST /orders/{number}/cancel."""

    def test_cancels_completed_order(
        self, client, completed_order, admin, global_outbox
    ) -> None:
        response = client.post(
            order_url(completed_order.number, "cancel"),
            json={"user_id": str(admin.id)},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["state"] == "canceled"
        assert data["payment_state"] == "void"
        assert data["canceled_at"] is not None
        assert completed_order.canceler is admin
        assert "Cancellation" in global_outbox.sent_emails[-1]["subject"]

    def test_cart_order_is_409(self, client, cart_order, admin) -> None:
        response = client.post(
            order_url(cart_order.number, "cancel"),
            json={"user_id": str(admin.id)},
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert cart_order.state == OrderState.CART

    def test_unknown_user_is_404(self, client, completed_order) -> None:
        response = client.post(
            order_url(completed_order.number, "cancel"),
            json={"user_id": str(uuid4())},
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_malformed_user_id_is_validation_error(self, client, completed_order) -> None:
        response = client.post(
            order_url(completed_order.number, "cancel"),
            json={"user_id": "not-a-uuid"},
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        data = response.json()
        assert data["error"] == "Validation Error"
        assert data["details"][0]["loc"][-1] == "user_id"


class TestResumeOrder:
    """Test POST /orders/{number}/resume."""

    def test_resumes_canceled_order(self, client, order_service, completed_order) -> None:
        order_service.cancel(completed_order)

        response = client.post(order_url(completed_order.number, "resume"))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["state"] == "resumed"

    def test_completed_order_is_409(self, client, completed_order) -> None:
        response = client.post(order_url(completed_order.number, "resume"))

        assert response.status_code == status.HTTP_409_CONFLICT


class TestApproveOrder:
    """Test POST /orders/{number}/approve."""

    def test_releases_risky_order(self, client, order_service, completed_order, admin) -> None:
        order_service.state_machine.fire(completed_order, OrderEvent.CONSIDERED_RISKY)

        response = client.post(
            order_url(completed_order.number, "approve"),
            json={"user_id": str(admin.id)},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["state"] == "complete"
        assert data["approved_at"] is not None


# ============================================================================
# Contents
# ============================================================================


class TestEmptyOrder:
    """Test POST /orders/{number}/empty."""

    def test_empties_cart(self, client, cart_order) -> None:
        response = client.post(order_url(cart_order.number, "empty"))

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["line_items"] == []
        assert Decimal(data["total"]) == 0

    def test_completed_order_is_409(self, client, completed_order) -> None:
        response = client.post(order_url(completed_order.number, "empty"))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert len(completed_order.line_items) == 1


class TestMergeOrders:
    """Test POST /orders/{number}/merge."""

    def test_merges_other_cart(self, client, db_session, make_variant, make_order) -> None:
        variant = make_variant(price="10.00")
        order = make_order(lines=((variant, 1),))
        other = make_order(lines=((variant, 2),))
        other_number = other.number

        response = client.post(
            order_url(order.number, "merge"),
            json={"other_number": other_number},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["item_count"] == 3
        assert data["line_items"][0]["quantity"] == 3
        assert client.get(order_url(other_number)).status_code == status.HTTP_404_NOT_FOUND

    def test_merge_associates_user(self, client, make_variant, make_order, make_user) -> None:
        user = make_user(email="returning@example.com")
        order = make_order(lines=((make_variant(), 1),), email=None)
        other = make_order(lines=((make_variant(), 1),))

        response = client.post(
            order_url(order.number, "merge"),
            json={"other_number": other.number, "user_id": str(user.id)},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["email"] == "returning@example.com"
        assert order.user is user

    def test_unknown_other_order_is_404(self, client, cart_order) -> None:
        response = client.post(
            order_url(cart_order.number, "merge"),
            json={"other_number": "R000000000"},
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_merge_with_itself_is_422(self, client, cart_order) -> None:
        response = client.post(
            order_url(cart_order.number, "merge"),
            json={"other_number": cart_order.number},
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["detail"] == "Cannot merge an order into itself"


# ============================================================================
# Checkout Maintenance
# ============================================================================


class TestCheckoutMaintenance:
    """Test restart, shipment refresh and free shipping endpoints."""

    def test_restart_checkout(self, client, order_service, cart_order) -> None:
        for _ in range(3):
            order_service.next(cart_order)
        assert cart_order.state == OrderState.PAYMENT

        response = client.post(order_url(cart_order.number, "restart_checkout"))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["state"] == "address"

    def test_ensure_shipments_discards_shipments(
        self, client, order_service, cart_order
    ) -> None:
        for _ in range(2):
            order_service.next(cart_order)

        response = client.post(order_url(cart_order.number, "ensure_shipments"))

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["shipments"] == []
        assert data["state"] == "address"

    def test_free_shipping(self, client, settings, order_service, cart_order) -> None:
        settings.flat_shipping_rate = Decimal("4.00")
        settings.free_shipping_threshold = Decimal("15.00")
        for _ in range(2):
            order_service.next(cart_order)

        response = client.post(order_url(cart_order.number, "free_shipping"))

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert [adj["label"] for adj in data["adjustments"]] == ["Promotion (Free shipping)"]
        assert Decimal(data["shipments"][0]["promo_total"]) == Decimal("-4.00")
