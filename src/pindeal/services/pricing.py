"""Storage pricing: size x duration -> price in FIL."""

from __future__ import annotations

from decimal import Decimal

from pindeal.models.config import PricingConfig
from pindeal.models.snapshots import PriceQuote

BYTES_PER_GIB = Decimal(2**30)
DAYS_PER_MONTH = Decimal(30)
CURRENCY = "FIL"


class PricingCalculator:
    """Computes the price of storing content.

    ``price = size_gb * months * base * (1 + markup / 100)``, where content
    smaller than ``minimum_deal_size`` is charged at least the un-marked-up
    price of a minimum-size deal.
    """

    def __init__(self, config: PricingConfig | None = None) -> None:
        self._config = config or PricingConfig()

    @property
    def config(self) -> PricingConfig:
        return self._config

    def calculate_price(self, size_bytes: int, duration_days: int) -> Decimal:
        size = Decimal(max(size_bytes, 0))
        months = Decimal(max(duration_days, 0)) / DAYS_PER_MONTH
        base_rate = self._config.base_price_per_gb_per_month

        base = size / BYTES_PER_GIB * months * base_rate
        total = base * (1 + self._config.markup_percentage / Decimal(100))

        if size_bytes < self._config.minimum_deal_size:
            floor = Decimal(self._config.minimum_deal_size) / BYTES_PER_GIB * months * base_rate
            total = max(total, floor)

        return max(total, Decimal(0))

    def quote(self, size_bytes: int, duration_days: int) -> PriceQuote:
        return PriceQuote(
            size_bytes=size_bytes,
            duration_days=duration_days,
            price=self.calculate_price(size_bytes, duration_days),
            currency=CURRENCY,
            base_price_per_gb_per_month=self._config.base_price_per_gb_per_month,
            markup_percentage=self._config.markup_percentage,
            minimum_deal_size=self._config.minimum_deal_size,
        )

    def pricing_info(self) -> dict:
        return {
            "base_price_per_gb_per_month": str(self._config.base_price_per_gb_per_month),
            "markup_percentage": str(self._config.markup_percentage),
            "minimum_deal_size": self._config.minimum_deal_size,
            "currency": CURRENCY,
        }
