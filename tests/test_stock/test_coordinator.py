"""
Tests for StockCoordinator packing and rate estimation.
"""

from decimal import Decimal

from storefront.database.models import StockItem, StockLocation
from storefront.services.orders.enums import ShipmentState
from storefront.services.stock.coordinator import StockCoordinator
from storefront.services.stock.estimator import FlatRateEstimator


def unit_states(shipment) -> list[str]:
    return sorted(unit.state.value for unit in shipment.inventory_units)


class TestStockCoordinator:
    """Test building proposed shipments."""

    def test_packs_on_hand_units(self, make_variant, make_order, stock_location) -> None:
        variant = make_variant(count_on_hand=5)
        order = make_order(lines=((variant, 3),))

        shipments = StockCoordinator(order).shipments()

        assert len(shipments) == 1
        shipment = shipments[0]
        assert shipment.stock_location is stock_location
        assert shipment.state == ShipmentState.PENDING
        assert unit_states(shipment) == ["on_hand"] * 3
        assert all(unit.pending for unit in shipment.inventory_units)
        assert all(unit.line_item is order.line_items[0] for unit in shipment.inventory_units)

    def test_backorders_what_is_missing(self, make_variant, make_order) -> None:
        variant = make_variant(count_on_hand=1, backorderable=True)
        order = make_order(lines=((variant, 3),))

        (shipment,) = StockCoordinator(order).shipments()

        assert unit_states(shipment) == ["backordered", "backordered", "on_hand"]
        assert shipment.backordered is True

    def test_unsupplied_units_are_left_out(self, make_variant, make_order) -> None:
        variant = make_variant(count_on_hand=1, backorderable=False)
        order = make_order(lines=((variant, 3),))

        (shipment,) = StockCoordinator(order).shipments()

        assert len(shipment.inventory_units) == 1

    def test_untracked_variants_packed_on_hand(self, make_variant, make_order) -> None:
        variant = make_variant(count_on_hand=0, track_inventory=False)
        order = make_order(lines=((variant, 2),))

        (shipment,) = StockCoordinator(order).shipments()

        assert unit_states(shipment) == ["on_hand", "on_hand"]

    def test_splits_across_locations(
        self, db_session, make_variant, make_order, stock_location
    ) -> None:
        """Test stock is drawn from each location in turn."""
        variant = make_variant(count_on_hand=2)
        second = StockLocation(name="Overflow", active=True, backorderable_default=False)
        second.stock_items.append(StockItem(variant=variant, count_on_hand=5, backorderable=False))
        db_session.add(second)
        db_session.commit()
        order = make_order(lines=((variant, 4),))

        shipments = StockCoordinator(order, stock_locations=[stock_location, second]).shipments()

        assert [len(shipment.inventory_units) for shipment in shipments] == [2, 2]
        assert [shipment.stock_location for shipment in shipments] == [stock_location, second]

    def test_inactive_locations_skipped(
        self, db_session, make_variant, make_order, stock_location
    ) -> None:
        stock_location.active = False
        db_session.commit()
        order = make_order(lines=((make_variant(), 1),))

        assert StockCoordinator(order).shipments() == []

    def test_cheapest_rate_selected(self, make_variant, make_order) -> None:
        order = make_order(lines=((make_variant(), 1),))
        estimator = FlatRateEstimator(Decimal("6.00"))

        (shipment,) = StockCoordinator(order, estimator=estimator).shipments()

        rate = shipment.selected_shipping_rate
        assert rate.name == "Flat Rate"
        assert rate.cost == Decimal("6.00")
        assert shipment.update_amounts() is True
        assert shipment.cost == Decimal("6.00")
