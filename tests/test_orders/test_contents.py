"""
Tests for adding and removing variants on an order.
"""

from decimal import Decimal

import pytest

from storefront.database.models import Order
from storefront.services.orders.contents import OrderContents, OrderContentsError


@pytest.fixture
def contents(make_order):
    return OrderContents(make_order())


class TestAdd:
    """Test adding variants."""

    def test_add_creates_line_item(self, contents, make_variant) -> None:
        variant = make_variant(price="12.00")

        line_item = contents.add(variant, 2)

        order = contents.order
        assert line_item in order.line_items
        assert line_item.price == Decimal("12.00")
        assert line_item.currency == order.currency
        assert order.item_count == 2
        assert order.item_total == Decimal("24.00")
        assert order.total == Decimal("24.00")

    def test_add_same_variant_increases_quantity(self, contents, make_variant) -> None:
        variant = make_variant()
        contents.add(variant, 1)

        line_item = contents.add(variant, 2)

        assert len(contents.order.line_items) == 1
        assert line_item.quantity == 3
        assert line_item.pre_tax_amount == Decimal("30.00")

    def test_add_with_rejected_options_creates_new_line(self, contents, make_variant) -> None:
        """Test comparison hooks decide whether options share a line item."""
        Order.register_line_item_comparison_hook(
            lambda order, line_item, options: (line_item.options or {}).get("engraving")
            == options.get("engraving")
        )
        variant = make_variant()
        contents.add(variant, 1, options={"engraving": "A"})

        contents.add(variant, 1, options={"engraving": "B"})
        contents.add(variant, 1, options={"engraving": "A"})

        quantities = {
            line_item.options["engraving"]: line_item.quantity
            for line_item in contents.order.line_items
        }
        assert quantities == {"A": 2, "B": 1}

    def test_non_positive_quantity_rejected(self, contents, make_variant) -> None:
        with pytest.raises(OrderContentsError):
            contents.add(make_variant(), 0)


class TestRemove:
    """Test removing variants."""

    def test_remove_decreases_quantity(self, contents, make_variant) -> None:
        variant = make_variant()
        contents.add(variant, 3)

        line_item = contents.remove(variant, 1)

        assert line_item.quantity == 2
        assert contents.order.item_total == Decimal("20.00")

    def test_remove_last_unit_drops_line(self, contents, make_variant) -> None:
        variant = make_variant()
        contents.add(variant, 1)

        contents.remove(variant, 1)

        assert contents.order.line_items == []
        assert contents.order.total == Decimal("0.00")

    def test_remove_missing_variant_raises(self, contents, make_variant) -> None:
        with pytest.raises(OrderContentsError) as exc_info:
            contents.remove(make_variant())

        assert exc_info.value.context["order_number"] == contents.order.number
