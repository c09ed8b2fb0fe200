"""
Order Pydantic schemas for API request/response validation.

Responses are built straight from the ORM objects (``from_attributes``);
requests carry only identifiers, since every order operation works on
stored records.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from storefront.services.orders.enums import (
    OrderPaymentState,
    OrderShipmentState,
    OrderState,
    ShipmentState,
)


class LineItemResponse(BaseModel):
    """Line item as shown to API clients."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    variant_id: UUID
    quantity: int = Field(..., ge=0)
    price: Decimal
    amount: Decimal
    currency: Optional[str] = None
    options: Optional[dict[str, Any]] = None


class ShipmentResponse(BaseModel):
    """Shipment summary."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    number: str
    state: ShipmentState
    cost: Decimal
    adjustment_total: Decimal
    promo_total: Decimal
    shipped_at: Optional[datetime] = None


class AdjustmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    label: str
    amount: Decimal
    eligible: bool
    included: bool
    shipment_id: Optional[UUID] = None


class OrderResponse(BaseModel):
    """Order with its totals, line items, shipments and adjustments."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    number: str
    email: Optional[str] = None
    state: OrderState
    payment_state: Optional[OrderPaymentState] = None
    shipment_state: Optional[OrderShipmentState] = None
    currency: str
    item_count: int
    item_total: Decimal
    adjustment_total: Decimal
    shipment_total: Decimal
    promo_total: Decimal
    payment_total: Decimal
    total: Decimal
    checkout_steps: list[str]
    completed_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    considered_risky: bool = False
    created_at: datetime
    updated_at: datetime
    line_items: list[LineItemResponse] = Field(default_factory=list)
    shipments: list[ShipmentResponse] = Field(default_factory=list)
    adjustments: list[AdjustmentResponse] = Field(default_factory=list)


class UserActionRequest(BaseModel):
    """Identifies the user canceling or approving an order."""

    user_id: UUID = Field(..., description="Acting user")


class MergeRequest(BaseModel):
    """Merge another cart into the order."""

    other_number: str = Field(
        ...,
        min_length=1,
        max_length=32,
        description="Number of the order to merge in and delete",
    )
    user_id: Optional[UUID] = Field(
        None,
        description="User to associate when the order has none",
    )
