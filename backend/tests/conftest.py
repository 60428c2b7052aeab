"""
Test Configuration — builders for engine input records.

The engine is pure, so fixtures only build typed records: no database,
no clock. Builders default every field that a test does not care about.
"""

from datetime import date, timedelta

import pytest

from retail.models import DailyInventoryRecord, DailyReport, ForecastRecord, Product, SaleLogEntry, Variant

# Monday
WEEK_START = date(2026, 1, 5)


def build_sale(
    sale_date: date,
    quantity: int,
    product_id: str = "croissant",
    product_name: str = "Croissant",
    market_id: str = "mkt-central",
    market_name: str = "Central Market",
    weather: str | None = "Sunny",
    **overrides,
) -> SaleLogEntry:
    return SaleLogEntry(
        product_id=product_id,
        product_name=product_name,
        market_id=market_id,
        market_name=market_name,
        sale_date=sale_date,
        quantity_sold=quantity,
        price_per_unit=overrides.pop("price_per_unit", 40.0),
        cost_per_unit=overrides.pop("cost_per_unit", 15.0),
        weather_condition=weather,
        **overrides,
    )


def build_forecast(forecast_date: date, quantity: int, product_id: str = "croissant", **overrides) -> ForecastRecord:
    return ForecastRecord(
        product_id=product_id,
        product_name=overrides.pop("product_name", "Croissant"),
        forecast_for_date=forecast_date,
        optimal_quantity=quantity,
        confidence_level=overrides.pop("confidence_level", 80),
        **overrides,
    )


def build_inventory(business_date: date, product_id: str = "croissant", **overrides) -> DailyInventoryRecord:
    return DailyInventoryRecord(business_date=business_date, product_id=product_id, **overrides)


def weekly_series(start: date, weekdays_qty: int, saturday_qty: int, weeks: int = 4, **sale_kwargs) -> list[SaleLogEntry]:
    """Monday-Saturday sales for several weeks (closed on Sundays)."""
    sales = []
    for week in range(weeks):
        for offset in range(6):
            day = start + timedelta(days=week * 7 + offset)
            qty = saturday_qty if day.weekday() == 5 else weekdays_qty
            sales.append(build_sale(day, qty, **sale_kwargs))
    return sales


@pytest.fixture
def catalog():
    """Two products; the croissant has a chocolate variant priced separately."""
    return [
        Product(
            id="croissant",
            name="Croissant",
            category="Bakery",
            price=40.0,
            cost=15.0,
            variants=(Variant(id="croissant-choc", name="Chocolate", price=50.0, cost=20.0),),
        ),
        Product(id="baguette", name="Baguette", category="Bakery", price=60.0, cost=25.0),
    ]


@pytest.fixture
def daily_reports():
    return [
        DailyReport(market_id="mkt-central", report_date=WEEK_START, revenue=1200.0, net_profit=300.0),
        DailyReport(market_id="mkt-central", report_date=WEEK_START + timedelta(days=1), revenue=800.0, net_profit=100.0),
        DailyReport(market_id="mkt-night", report_date=WEEK_START, revenue=2500.0, net_profit=1000.0),
    ]


@pytest.fixture
def make_sale():
    return build_sale


@pytest.fixture
def make_forecast():
    return build_forecast


@pytest.fixture
def make_inventory():
    return build_inventory


@pytest.fixture
def make_weekly_series():
    return weekly_series
