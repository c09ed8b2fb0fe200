"""
Tests for application health endpoints and request correlation.
"""

from unittest.mock import patch

from fastapi import status

from storefront.services.orders.repository import OrderRepositoryError


class TestHealthEndpoints:
    """Test liveness and readiness endpoints."""

    def test_health(self, client) -> None:
        response = client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "healthy"

    def test_ready_with_database(self, client) -> None:
        response = client.get("/ready")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["database"] == "healthy"

    def test_not_ready_without_database(self, client) -> None:
        with patch("storefront.main.check_database_health", return_value=False):
            response = client.get("/ready")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["status"] == "not_ready"


class TestRequestCorrelation:
    """Test the X-Request-ID header."""

    def test_request_id_echoed(self, client) -> None:
        response = client.get("/health", headers={"X-Request-ID": "abc-123"})

        assert response.headers["X-Request-ID"] == "abc-123"

    def test_request_id_generated(self, client) -> None:
        response = client.get("/health")

        assert len(response.headers["X-Request-ID"]) == 36

    def test_validation_error_carries_request_id(self, client, completed_order) -> None:
        response = client.post(
            f"/api/v1/orders/{completed_order.number}/cancel",
            json={},
            headers={"X-Request-ID": "req-422"},
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["request_id"] == "req-422"


class TestErrorHandlers:
    """Test application-wide error responses."""

    def test_storage_failure_is_service_unavailable(self, client) -> None:
        with patch(
            "storefront.services.orders.repository.OrderRepository.get_by_number",
            side_effect=OrderRepositoryError("Failed to get order", order_number="R1"),
        ):
            response = client.get("/api/v1/orders/R1", headers={"X-Request-ID": "req-503"})

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json() == {
            "error": "Service Unavailable",
            "message": "Order storage is unavailable",
            "request_id": "req-503",
        }
