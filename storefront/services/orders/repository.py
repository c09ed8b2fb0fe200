"""
Order data access repository.

This module implements the OrderRepository class providing lookups by id and
number, state and exchange queries, and deletion, with database failures
wrapped in repository errors and logged.
"""

import uuid
from typing import Any, Sequence

from sqlalchemy import exists, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from storefront.core.logging import get_logger
from storefront.database.models.order import Order
from storefront.database.models.shipment import Shipment
from storefront.services.orders.enums import OrderState

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderNotFoundError(OrderRepositoryError):
    """Raised when order is not found."""

    pass


class OrderRepository:
    """
    Repository for order data access operations.

    Orders are loaded with their line items and shipments eagerly, since
    nearly every order operation walks both.
    """

    def __init__(self, session: Session):
        """
        Initialize order repository.

        Args:
            session: Database session
        """
        self.session = session

    def _load_options(self) -> list:
        return [
            selectinload(Order.line_items),
            selectinload(Order.shipments).selectinload(Shipment.inventory_units),
            selectinload(Order.adjustments),
            selectinload(Order.payments),
        ]

    def get_by_id(self, order_id: uuid.UUID) -> Order:
        """
        Get order by ID.

        Raises:
            OrderNotFoundError: If no order has this id
            OrderRepositoryError: If query fails
        """
        try:
            logger.debug("Fetching order by ID", order_id=str(order_id))
            stmt = select(Order).where(Order.id == order_id).options(*self._load_options())
            order = self.session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", order_id=str(order_id), error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch order",
                order_id=str(order_id),
                error=str(e),
            ) from e

        if order is None:
            logger.debug("Order not found", order_id=str(order_id))
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        return order

    def get_by_number(self, number: str) -> Order:
        """
        Get order by its public number.

        Raises:
            OrderNotFoundError: If no order has this number
            OrderRepositoryError: If query fails
        """
        try:
            logger.debug("Fetching order by number", order_number=number)
            stmt = select(Order).where(Order.number == number).options(*self._load_options())
            order = self.session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order by number", order_number=number, error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch order by number",
                order_number=number,
                error=str(e),
            ) from e

        if order is None:
            logger.debug("Order not found", order_number=number)
            raise OrderNotFoundError("Order not found", order_number=number)
        return order

    def exists_number(self, number: str) -> bool:
        stmt = select(exists().where(Order.number == number))
        return bool(self.session.execute(stmt).scalar())

    def list_by_state(self, state: OrderState, limit: int = 100) -> Sequence[Order]:
        stmt = (
            select(Order)
            .where(Order.state == OrderState(state))
            .order_by(Order.created_at.desc())
            .limit(limit)
        )
        return self.session.execute(stmt).scalars().all()

    def list_unreturned_exchanges(self) -> Sequence[Order]:
        """Orders holding a shipment created before the order itself."""
        stmt = (
            select(Order)
            .join(Shipment, Shipment.order_id == Order.id)
            .where(Shipment.created_at < Order.created_at)
            .distinct()
        )
        orders = self.session.execute(stmt).scalars().all()
        logger.debug("Unreturned exchanges listed", count=len(orders))
        return orders

    def delete(self, order: Order) -> None:
        """Delete an order with everything it owns."""
        try:
            self.session.delete(order)
            self.session.flush()
            logger.info("Order deleted", order_id=str(order.id), order_number=order.number)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to delete order",
                order_id=str(order.id),
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to delete order",
                order_id=str(order.id),
                error=str(e),
            ) from e
