# storefront/services/shipping_service.py
import logging
from dataclasses import dataclass
from decimal import Decimal

from ..utils.money import D, ZERO, round_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Destination:
    city: str
    district: str | None = None
    ward: str | None = None
    address: str | None = None


class ShippingCalculator:
    """Flat fee, waived once the subtotal reaches ``free_threshold``."""

    def __init__(self, free_threshold=500000, default_fee=30000):
        self.free_threshold = D(free_threshold)
        self.default_fee = D(default_fee)

    def quote(self, subtotal, destination: Destination | None = None) -> Decimal:
        if D(subtotal) >= self.free_threshold:
            return ZERO
        return round_money(self.default_fee)
