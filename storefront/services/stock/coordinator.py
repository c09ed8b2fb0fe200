"""
Stock coordinator building proposed shipments for an order.

Line items are packed into one package per active stock location. On-hand
stock is used first, in location order; whatever remains is backordered at
the first location that allows backorders. Variants whose inventory is not
tracked are packed on hand at the first location.
"""

from collections import defaultdict
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, object_session

from storefront.core.logging import get_logger
from storefront.database.models.line_item import LineItem
from storefront.database.models.order import Order
from storefront.database.models.shipment import InventoryUnit, Shipment
from storefront.database.models.stock import StockLocation
from storefront.services.orders.enums import InventoryUnitState, ShipmentState
from storefront.services.stock.estimator import FlatRateEstimator, RateEstimator

logger = get_logger(__name__)


class StockCoordinator:
    """
    Packs an order's line items into proposed shipments.

    Args:
        order: Order to pack
        stock_locations: Locations to pack from; defaults to every active
            location in the order's session
        estimator: Rate estimator; defaults to the flat-rate estimator
    """

    def __init__(
        self,
        order: Order,
        stock_locations: Optional[Sequence[StockLocation]] = None,
        estimator: Optional[RateEstimator] = None,
    ):
        self.order = order
        self.estimator = estimator or FlatRateEstimator()
        if stock_locations is None:
            stock_locations = self._active_locations(object_session(order))
        self.stock_locations = [location for location in stock_locations if location.active]

    @staticmethod
    def _active_locations(session: Optional[Session]) -> list[StockLocation]:
        if session is None:
            return []
        query = (
            select(StockLocation)
            .where(StockLocation.active.is_(True))
            .order_by(StockLocation.created_at, StockLocation.name)
        )
        return list(session.scalars(query))

    def shipments(self) -> list[Shipment]:
        """Build unsaved shipments with inventory units and a selected rate."""
        if not self.stock_locations:
            logger.warning(
                "No active stock locations to pack order",
                order_number=self.order.number,
            )
            return []

        packages = self._pack()
        shipments = []
        for location in self.stock_locations:
            units = packages.get(id(location))
            if not units:
                continue

            shipment = Shipment(
                stock_location=location,
                state=ShipmentState.PENDING,
            )
            shipment.inventory_units = [
                InventoryUnit(
                    line_item=line_item,
                    variant=line_item.variant,
                    state=state,
                    pending=True,
                )
                for line_item, state in units
            ]
            shipment.shipping_rates = self.estimator.estimate(shipment)
            shipment.select_cheapest_rate()
            shipments.append(shipment)

        logger.info(
            "Proposed shipments built",
            order_number=self.order.number,
            shipment_count=len(shipments),
        )
        return shipments

    def _pack(self) -> dict[int, list[tuple[LineItem, InventoryUnitState]]]:
        packages: dict[int, list[tuple[LineItem, InventoryUnitState]]] = defaultdict(list)
        allocated: dict[tuple[int, int], int] = defaultdict(int)

        for line_item in self.order.line_items:
            variant = line_item.variant
            remaining = line_item.quantity or 0

            if not variant.should_track_inventory:
                first = self.stock_locations[0]
                packages[id(first)].extend([(line_item, InventoryUnitState.ON_HAND)] * remaining)
                continue

            for location in self.stock_locations:
                if remaining <= 0:
                    break
                key = (id(location), id(variant))
                available = max(location.count_on_hand(variant) - allocated[key], 0)
                taken = min(available, remaining)
                if taken:
                    allocated[key] += taken
                    packages[id(location)].extend(
                        [(line_item, InventoryUnitState.ON_HAND)] * taken
                    )
                    remaining -= taken

            if remaining <= 0:
                continue

            backorder_location = next(
                (location for location in self.stock_locations if location.backorderable(variant)),
                None,
            )
            if backorder_location is None:
                logger.warning(
                    "Insufficient stock to pack line item",
                    order_number=self.order.number,
                    sku=variant.sku,
                    missing=remaining,
                )
                continue

            packages[id(backorder_location)].extend(
                [(line_item, InventoryUnitState.BACKORDERED)] * remaining
            )

        return packages
