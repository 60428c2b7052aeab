"""
Retail Entities — typed records handed to the analytics engine.

The engine never reads a store or a database. Callers build these records
from whatever source they own and pass them in; pydantic rejects malformed
shapes at the boundary so the analytics never see half-typed data.
"""

from datetime import date

from pydantic import BaseModel, Field

_RECORD_CONFIG = {"frozen": True, "extra": "ignore"}


# ─── Catalog ────────────────────────────────────────────────────────────────


class Variant(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = ""
    price: float = Field(0.0, ge=0)
    cost: float = Field(0.0, ge=0)

    model_config = _RECORD_CONFIG


class Product(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = ""
    category: str = ""
    price: float = Field(0.0, ge=0)
    cost: float = Field(0.0, ge=0)
    variants: tuple[Variant, ...] = ()

    model_config = _RECORD_CONFIG

    def find_variant(self, variant_id: str | None) -> Variant | None:
        if not variant_id:
            return None
        return next((v for v in self.variants if v.id == variant_id), None)

    def owns(self, item_id: str | None) -> bool:
        """True when item_id is this product or one of its variants."""
        return bool(item_id) and (item_id == self.id or self.find_variant(item_id) is not None)

    def unit_economics(self, item_id: str | None = None) -> tuple[float, float]:
        """(price, cost) for the product, preferring the variant's own numbers."""
        variant = self.find_variant(item_id)
        if variant is not None:
            return variant.price, variant.cost
        return self.price, self.cost


# ─── Observations ───────────────────────────────────────────────────────────


class SaleLogEntry(BaseModel):
    """One realized sale observation for a product (or variant) on a date at a market."""

    product_id: str = Field(..., min_length=1)
    product_name: str = ""
    variant_id: str | None = None
    variant_name: str | None = None
    market_id: str = ""
    market_name: str = ""
    sale_date: date
    quantity_sold: int = Field(0, ge=0)
    price_per_unit: float = Field(0.0, ge=0)
    cost_per_unit: float = Field(0.0, ge=0)
    weather_condition: str | None = None

    model_config = _RECORD_CONFIG

    @property
    def item_key(self) -> str:
        return self.variant_id or self.product_id

    @property
    def display_name(self) -> str:
        if self.variant_name:
            return f"{self.product_name} - {self.variant_name}"
        return self.product_name or self.item_key

    def matches_item(self, item_id: str) -> bool:
        return item_id in (self.product_id, self.variant_id)


class DailyInventoryRecord(BaseModel):
    """Ground-truth stock movement for a product/variant on a business date."""

    business_date: date
    product_id: str = Field(..., min_length=1)
    variant_id: str | None = None
    market_id: str | None = None
    stock_yesterday: int = 0
    produced_qty: int = Field(0, ge=0)
    to_shop_qty: int = Field(0, ge=0)
    sold_qty: int = Field(0, ge=0)
    waste_qty: int = Field(0, ge=0)
    unsold_shop: int = 0

    model_config = _RECORD_CONFIG

    @property
    def item_key(self) -> str:
        return self.variant_id or self.product_id


class ForecastRecord(BaseModel):
    """A prediction made before a given date."""

    product_id: str = Field(..., min_length=1)
    product_name: str = ""
    variant_id: str | None = None
    market_id: str | None = None
    market_name: str | None = None
    forecast_for_date: date
    optimal_quantity: int = Field(..., ge=0)
    confidence_level: float = Field(0.0, ge=0, le=100)

    model_config = _RECORD_CONFIG

    @property
    def item_key(self) -> str:
        return self.variant_id or self.product_id


class DailyReport(BaseModel):
    """A market's closing financials for one day."""

    market_id: str = Field(..., min_length=1)
    report_date: date
    revenue: float = 0.0
    net_profit: float = 0.0
    waste_cost: float = 0.0

    model_config = _RECORD_CONFIG
