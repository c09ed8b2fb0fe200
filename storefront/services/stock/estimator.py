"""
Shipping rate estimation for proposed shipments.
"""

from decimal import Decimal
from typing import Optional, Protocol

from storefront.core.config import get_settings
from storefront.database.models.shipment import Shipment, ShippingRate


class RateEstimator(Protocol):
    """Produces shipping rates for a packed shipment."""

    def estimate(self, shipment: Shipment) -> list[ShippingRate]:
        ...


class FlatRateEstimator:
    """Offers a single flat-rate option for every shipment."""

    def __init__(self, rate: Optional[Decimal] = None, name: str = "Flat Rate"):
        self.rate = get_settings().flat_shipping_rate if rate is None else Decimal(rate)
        self.name = name

    def estimate(self, shipment: Shipment) -> list[ShippingRate]:
        return [ShippingRate(name=self.name, cost=self.rate, selected=False)]
