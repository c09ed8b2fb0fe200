"""
FastAPI dependencies for database sessions, services and record lookup.
"""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from storefront.core.logging import get_logger
from storefront.database.connection import get_db
from storefront.database.models.user import User
from storefront.services.orders.repository import OrderNotFoundError
from storefront.services.orders.service import OrderService

logger = get_logger(__name__)

DatabaseSession = Annotated[Session, Depends(get_db)]


def get_order_service(db: DatabaseSession) -> OrderService:
    return OrderService(db)


OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]


def get_order_or_404(number: str, service: OrderServiceDep):
    """
    Load the order named in the path.

    Raises:
        HTTPException: 404 if no order has this number
    """
    try:
        return service.repository.get_by_number(number)
    except OrderNotFoundError as e:
        logger.warning("Order lookup failed", order_number=number)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order {number} not found",
        ) from e


def get_user_or_404(db: Session, user_id: UUID) -> User:
    user = db.get(User, user_id)
    if user is None:
        logger.warning("User lookup failed", user_id=str(user_id))
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id} not found",
        )
    return user
