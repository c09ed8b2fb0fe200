"""
Stock availability for a single variant across active stock locations.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from storefront.database.models.variant import Variant


class StockQuantifier:
    """
    Answers whether a variant can supply a requested quantity.

    Only stock items at active locations count. Untracked variants, and all
    variants when inventory tracking is off globally, can always supply.
    """

    def __init__(self, variant: "Variant"):
        self.variant = variant
        self.stock_items = [
            item
            for item in variant.stock_items
            if item.stock_location is not None and item.stock_location.active
        ]

    @property
    def total_on_hand(self) -> int:
        if not self.variant.should_track_inventory:
            return 0
        return sum(item.count_on_hand for item in self.stock_items)

    @property
    def backorderable(self) -> bool:
        return any(item.backorderable for item in self.stock_items)

    def can_supply(self, required: int = 1) -> bool:
        if not self.variant.should_track_inventory:
            return True
        return self.backorderable or self.total_on_hand >= required
