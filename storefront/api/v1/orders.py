"""
Order management API endpoints.

This module implements the FastAPI router for the order lifecycle: showing an
order, advancing checkout, cancellation, resumption and approval, emptying
and merging carts, and shipment maintenance. Service errors are mapped to
HTTP status codes: missing records to 404, disallowed state changes to 409
and rejected merges to 422.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from storefront.api.deps import (
    DatabaseSession,
    OrderServiceDep,
    get_order_or_404,
    get_user_or_404,
)
from storefront.core.logging import get_logger
from storefront.database.models.order import Order
from storefront.schemas.orders import MergeRequest, OrderResponse, UserActionRequest
from storefront.services.orders.repository import OrderNotFoundError
from storefront.services.orders.service import OrderMergeError, OrderStateError
from storefront.services.orders.state_machine import StateTransitionError

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

CurrentOrder = Annotated[Order, Depends(get_order_or_404)]


def _conflict(order: Order, operation: str, error: Exception) -> HTTPException:
    logger.warning(
        "Order operation rejected",
        operation=operation,
        order_number=order.number,
        error=str(error),
        context=getattr(error, "context", {}),
    )
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))


@router.get(
    "/{number}",
    response_model=OrderResponse,
    summary="Get order",
    description="Get an order with its line items, shipments and adjustments",
)
def get_order(order: CurrentOrder) -> OrderResponse:
    return OrderResponse.model_validate(order)


@router.post(
    "/{number}/next",
    response_model=OrderResponse,
    summary="Advance checkout",
    description="Move the order to its next checkout step",
)
def advance_order(order: CurrentOrder, service: OrderServiceDep) -> OrderResponse:
    """
    Fire the checkout ``next`` event.

    Raises:
        HTTPException: 422 with the order's errors when the step is refused
    """
    logger.info("Advancing order", order_number=order.number, state=order.state)

    if not service.next(order):
        logger.warning(
            "Order could not advance",
            order_number=order.number,
            errors=order.errors.to_dict(),
        )
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "message": "Order could not transition to the next step",
                "errors": order.errors.to_dict(),
            },
        )

    return OrderResponse.model_validate(order)


@router.post(
    "/{number}/cancel",
    response_model=OrderResponse,
    summary="Cancel order",
    description="Cancel a completed order on behalf of a user",
)
def cancel_order(
    order: CurrentOrder,
    request: UserActionRequest,
    service: OrderServiceDep,
    db: DatabaseSession,
) -> OrderResponse:
    user = get_user_or_404(db, request.user_id)
    try:
        service.canceled_by(order, user)
    except StateTransitionError as e:
        raise _conflict(order, "cancel", e) from e

    logger.info("Order canceled", order_number=order.number, user_id=str(user.id))
    return OrderResponse.model_validate(order)


@router.post(
    "/{number}/resume",
    response_model=OrderResponse,
    summary="Resume order",
    description="Resume a canceled order",
)
def resume_order(order: CurrentOrder, service: OrderServiceDep) -> OrderResponse:
    try:
        service.resume(order)
    except StateTransitionError as e:
        raise _conflict(order, "resume", e) from e

    return OrderResponse.model_validate(order)


@router.post(
    "/{number}/approve",
    response_model=OrderResponse,
    summary="Approve order",
    description="Record an approval and release an order held for risk review",
)
def approve_order(
    order: CurrentOrder,
    request: UserActionRequest,
    service: OrderServiceDep,
    db: DatabaseSession,
) -> OrderResponse:
    user = get_user_or_404(db, request.user_id)
    try:
        service.approved_by(order, user)
    except StateTransitionError as e:
        raise _conflict(order, "approve", e) from e

    return OrderResponse.model_validate(order)


@router.post(
    "/{number}/empty",
    response_model=OrderResponse,
    summary="Empty order",
    description="Remove all line items, adjustments and shipments from an incomplete order",
)
def empty_order(order: CurrentOrder, service: OrderServiceDep) -> OrderResponse:
    try:
        service.empty(order)
    except OrderStateError as e:
        raise _conflict(order, "empty", e) from e

    return OrderResponse.model_validate(order)


@router.post(
    "/{number}/restart_checkout",
    response_model=OrderResponse,
    summary="Restart checkout",
    description="Send the order back to the cart and on to the first checkout step",
)
def restart_checkout(order: CurrentOrder, service: OrderServiceDep) -> OrderResponse:
    try:
        service.restart_checkout_flow(order)
    except StateTransitionError as e:
        raise _conflict(order, "restart_checkout", e) from e

    return OrderResponse.model_validate(order)


@router.post(
    "/{number}/merge",
    response_model=OrderResponse,
    summary="Merge orders",
    description="Merge another order's line items into this order and delete the other order",
)
def merge_orders(
    order: CurrentOrder,
    request: MergeRequest,
    service: OrderServiceDep,
    db: DatabaseSession,
) -> OrderResponse:
    """
    Merge ``other_number`` into the order.

    Raises:
        HTTPException: 404 if either order or the user is missing,
            422 if the orders cannot be merged
    """
    try:
        other = service.repository.get_by_number(request.other_number)
    except OrderNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order {request.other_number} not found",
        ) from e

    user = get_user_or_404(db, request.user_id) if request.user_id else None

    try:
        service.merge(order, other, user=user)
    except OrderMergeError as e:
        logger.warning(
            "Order merge rejected",
            order_number=order.number,
            other_number=request.other_number,
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e

    return OrderResponse.model_validate(order)


@router.post(
    "/{number}/ensure_shipments",
    response_model=OrderResponse,
    summary="Refresh shipments",
    description="Discard the shipments of an incomplete order and restart its checkout",
)
def ensure_shipments(order: CurrentOrder, service: OrderServiceDep) -> OrderResponse:
    try:
        service.ensure_updated_shipments(order)
    except StateTransitionError as e:
        raise _conflict(order, "ensure_shipments", e) from e

    return OrderResponse.model_validate(order)


@router.post(
    "/{number}/free_shipping",
    response_model=OrderResponse,
    summary="Apply free shipping",
    description="Apply the free shipping promotion when the order qualifies",
)
def apply_free_shipping(order: CurrentOrder, service: OrderServiceDep) -> OrderResponse:
    service.apply_free_shipping_promotions(order)
    return OrderResponse.model_validate(order)
