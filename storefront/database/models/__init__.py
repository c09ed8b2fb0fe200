"""
Database models package initialization.

This module exports all database models for SQLAlchemy and Alembic.
Models are imported here to ensure they are registered with the Base metadata
for migration generation and relationship resolution.
"""

from storefront.database.base import (
    Base,
    BaseModel,
    SoftDeleteModel,
    TimestampMixin,
    UUIDMixin,
    SoftDeleteMixin,
    create_table_args,
)
from storefront.database.models.address import Address
from storefront.database.models.user import User
from storefront.database.models.variant import Variant
from storefront.database.models.stock import StockItem, StockLocation
from storefront.database.models.line_item import LineItem
from storefront.database.models.shipment import InventoryUnit, Shipment, ShippingRate
from storefront.database.models.adjustment import Adjustment
from storefront.database.models.payment import Payment, PaymentMethod, Refund
from storefront.database.models.order import Order, StateChange

__all__ = [
    "Base",
    "BaseModel",
    "SoftDeleteModel",
    "TimestampMixin",
    "UUIDMixin",
    "SoftDeleteMixin",
    "create_table_args",
    "Address",
    "User",
    "Variant",
    "StockItem",
    "StockLocation",
    "LineItem",
    "InventoryUnit",
    "Shipment",
    "ShippingRate",
    "Adjustment",
    "Payment",
    "PaymentMethod",
    "Refund",
    "Order",
    "StateChange",
]
