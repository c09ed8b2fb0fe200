"""
Shipment, shipping rate and inventory unit models.

A shipment packs inventory units from one stock location. Its state follows
the order: shipments of orders that cannot ship yet stay pending, and a
shipment only becomes ready once the order is paid.
"""

import secrets
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.database.base import BaseModel, create_table_args, state_enum, utcnow
from storefront.services.orders.enums import (
    InventoryUnitState,
    OrderState,
    ShipmentState,
)

if TYPE_CHECKING:
    from storefront.database.models.adjustment import Adjustment
    from storefront.database.models.line_item import LineItem
    from storefront.database.models.order import Order
    from storefront.database.models.stock import StockLocation
    from storefront.database.models.variant import Variant

logger = get_logger(__name__)


def generate_shipment_number() -> str:
    return "H" + "".join(secrets.choice("0123456789") for _ in range(11))


@dataclass
class ManifestItem:
    """Units of one variant on one line item, counted per unit state."""

    line_item: "LineItem"
    variant: "Variant"
    quantity: int = 0
    states: Counter = field(default_factory=Counter)


class Shipment(BaseModel):
    """
    Fulfilment unit of an order.

    Attributes:
        number: Public shipment number
        state: Shipment state
        cost: Shipping cost from the selected rate
        adjustment_total: Sum of adjustments targeting this shipment
        promo_total: Promotion part of adjustment_total
        shipped_at: When the shipment left the stock location
    """

    __tablename__ = "shipments"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    stock_location_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("stock_locations.id", ondelete="SET NULL"),
        nullable=True,
    )

    number: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        default=generate_shipment_number,
    )

    state: Mapped[ShipmentState] = mapped_column(
        state_enum(ShipmentState, "shipment_state"),
        nullable=False,
        default=ShipmentState.PENDING,
    )

    cost: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    adjustment_total: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    promo_total: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    shipped_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="shipments")

    stock_location: Mapped[Optional["StockLocation"]] = relationship("StockLocation")

    inventory_units: Mapped[list["InventoryUnit"]] = relationship(
        "InventoryUnit",
        back_populates="shipment",
        cascade="all, delete-orphan",
    )

    shipping_rates: Mapped[list["ShippingRate"]] = relationship(
        "ShippingRate",
        back_populates="shipment",
        cascade="all, delete-orphan",
        order_by="ShippingRate.cost",
    )

    __table_args__ = create_table_args(comment="Order shipments")

    @property
    def adjustments(self) -> list["Adjustment"]:
        if self.order is None:
            return []
        return [adj for adj in self.order.adjustments if adj.shipment is self]

    @property
    def backordered(self) -> bool:
        return any(
            unit.state == InventoryUnitState.BACKORDERED for unit in self.inventory_units
        )

    @property
    def shipped(self) -> bool:
        return self.state == ShipmentState.SHIPPED

    @property
    def canceled(self) -> bool:
        return self.state == ShipmentState.CANCELED

    @property
    def manifest(self) -> list[ManifestItem]:
        items: dict[tuple[int, int], ManifestItem] = {}
        for unit in self.inventory_units:
            key = (id(unit.line_item), id(unit.variant))
            item = items.get(key)
            if item is None:
                item = items[key] = ManifestItem(line_item=unit.line_item, variant=unit.variant)
            item.quantity += 1
            item.states[unit.state] += 1
        return list(items.values())

    @property
    def selected_shipping_rate(self) -> Optional["ShippingRate"]:
        for rate in self.shipping_rates:
            if rate.selected:
                return rate
        return None

    def select_cheapest_rate(self) -> Optional["ShippingRate"]:
        if not self.shipping_rates:
            return None
        cheapest = min(self.shipping_rates, key=lambda rate: rate.cost)
        for rate in self.shipping_rates:
            rate.selected = rate is cheapest
        return cheapest

    def update_amounts(self) -> bool:
        """Copy the selected rate's cost onto the shipment."""
        rate = self.selected_shipping_rate
        if rate is None or rate.cost == self.cost:
            return False
        self.cost = rate.cost
        return True

    def determine_state(self, order: "Order") -> ShipmentState:
        if order.state == OrderState.CANCELED:
            return ShipmentState.CANCELED
        if not order.can_ship:
            return ShipmentState.PENDING
        if any(unit.state == InventoryUnitState.BACKORDERED for unit in self.inventory_units):
            return ShipmentState.PENDING
        if self.shipped:
            return ShipmentState.SHIPPED
        if order.paid or get_settings().auto_capture_on_dispatch:
            return ShipmentState.READY
        return ShipmentState.PENDING

    def refresh_state(self, order: "Order") -> ShipmentState:
        """Move the shipment to the state its order now implies."""
        new_state = self.determine_state(order)
        if new_state != self.state:
            logger.debug(
                "Shipment state changed",
                shipment_number=self.number,
                from_state=getattr(self.state, "value", self.state),
                to_state=new_state.value,
            )
            self.state = new_state
            if new_state == ShipmentState.SHIPPED and self.shipped_at is None:
                self.shipped_at = utcnow()
        return new_state

    def finalize(self) -> None:
        """Confirm pending units and take them out of stock."""
        for unit in self.inventory_units:
            unit.pending = False

        if self.stock_location is None:
            return
        for item in self.manifest:
            self.stock_location.unstock(item.variant, item.quantity)

    def cancel(self) -> None:
        """Cancel the shipment and return its confirmed units to stock."""
        if self.stock_location is not None:
            returned = Counter()
            for unit in self.inventory_units:
                if not unit.pending:
                    returned[id(unit.variant)] += 1
            variants = {id(unit.variant): unit.variant for unit in self.inventory_units}
            for key, quantity in returned.items():
                self.stock_location.restock(variants[key], quantity)

        self.state = ShipmentState.CANCELED
        logger.info("Shipment canceled", shipment_number=self.number)

    def resume(self, order: "Order") -> None:
        """Reinstate a canceled shipment and take its units out of stock again."""
        if self.state != ShipmentState.CANCELED:
            return

        if self.stock_location is not None:
            for item in self.manifest:
                self.stock_location.unstock(item.variant, item.quantity)

        self.state = self.determine_state(order)
        logger.info(
            "Shipment resumed",
            shipment_number=self.number,
            state=self.state.value,
        )

    def ship(self) -> None:
        self.state = ShipmentState.SHIPPED
        self.shipped_at = utcnow()
        for unit in self.inventory_units:
            if unit.state == InventoryUnitState.ON_HAND:
                unit.state = InventoryUnitState.SHIPPED

    def __repr__(self) -> str:
        return f"<Shipment(id={self.id}, number={self.number!r}, state={self.state})>"


class ShippingRate(BaseModel):
    """Priced shipping option offered for a shipment."""

    __tablename__ = "shipping_rates"

    shipment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("shipments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    cost: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    selected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    shipment: Mapped["Shipment"] = relationship("Shipment", back_populates="shipping_rates")


class InventoryUnit(BaseModel):
    """
    One unit of a variant packed into a shipment.

    Pending units belong to an order that has not been finalized and have
    not been taken out of stock yet.
    """

    __tablename__ = "inventory_units"

    shipment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("shipments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    line_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("line_items.id", ondelete="SET NULL"),
        nullable=True,
    )

    variant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("variants.id", ondelete="RESTRICT"),
        nullable=False,
    )

    state: Mapped[InventoryUnitState] = mapped_column(
        state_enum(InventoryUnitState, "inventory_unit_state"),
        nullable=False,
        default=InventoryUnitState.ON_HAND,
    )

    pending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    shipment: Mapped["Shipment"] = relationship("Shipment", back_populates="inventory_units")

    line_item: Mapped[Optional["LineItem"]] = relationship("LineItem")

    variant: Mapped["Variant"] = relationship("Variant")

    @property
    def returned(self) -> bool:
        return self.state == InventoryUnitState.RETURNED

    def __repr__(self) -> str:
        return f"<InventoryUnit(id={self.id}, variant_id={self.variant_id}, state={self.state})>"
