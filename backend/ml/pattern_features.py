"""
Pattern Features — categorical context for every sale observation.

Each observation of a product is described by eight dimensions:
  1. day        — weekday name
  2. phase      — pay-cycle phase of the month
  3. weather    — shop weather that day (any product's log carrying a tag)
  4. momentum   — today vs yesterday (>120% up, <80% down)
  5. velocity   — selling days among the previous 3 calendar days
  6. gap        — days since the last positive sale
  7. traffic    — total units sold shop-wide that day
  8. market     — where the sale happened

Values are plain strings so the miner can combine them freely.
"""

from bisect import bisect_left
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta

import pandas as pd

from retail.calendar import get_month_phase, weekday_name
from retail.models import SaleLogEntry

DIMENSIONS = ("day", "phase", "weather", "momentum", "velocity", "gap", "traffic", "market")

UNKNOWN_WEATHER = "Unknown"
UNKNOWN_MARKET = "Unknown Market"

MOMENTUM_UP_RATIO = 1.2
MOMENTUM_DOWN_RATIO = 0.8
VELOCITY_WINDOW_DAYS = 3
HIGH_TRAFFIC_UNITS = 100
LOW_TRAFFIC_UNITS = 30


@dataclass
class MiningObservation:
    sale_date: date
    quantity: int
    features: dict[str, str]


class _SalesContext:
    """Date-indexed lookups over the product's history and the whole shop."""

    def __init__(self, history: Sequence[SaleLogEntry], all_sales: Sequence[SaleLogEntry]):
        self.first_log: dict[date, SaleLogEntry] = {}
        self.selling_days: set[date] = set()
        for log in history:
            self.first_log.setdefault(log.sale_date, log)
            if log.quantity_sold > 0:
                self.selling_days.add(log.sale_date)
        self.sorted_selling_days = sorted(self.selling_days)

        self.weather: dict[date, str] = {}
        for log in all_sales:
            if log.weather_condition and log.sale_date not in self.weather:
                self.weather[log.sale_date] = log.weather_condition

        if all_sales:
            frame = pd.DataFrame({"sale_date": [s.sale_date for s in all_sales], "qty": [s.quantity_sold for s in all_sales]})
            self.traffic: dict[date, int] = frame.groupby("sale_date")["qty"].sum().to_dict()
        else:
            self.traffic = {}


# ── Dimension Extractors ─────────────────────────────────────────────────


def _momentum(ctx: _SalesContext, current: date) -> str:
    today = ctx.first_log.get(current)
    if today is None:
        return "None"
    yesterday = ctx.first_log.get(current - timedelta(days=1))
    yesterday_qty = yesterday.quantity_sold if yesterday else 0

    if today.quantity_sold > yesterday_qty * MOMENTUM_UP_RATIO:
        return "Trend UP"
    if today.quantity_sold < yesterday_qty * MOMENTUM_DOWN_RATIO:
        return "Trend DOWN"
    return "Stable"


def _velocity(ctx: _SalesContext, current: date) -> str:
    sold_days = sum(
        1 for back in range(1, VELOCITY_WINDOW_DAYS + 1) if current - timedelta(days=back) in ctx.selling_days
    )
    if sold_days == VELOCITY_WINDOW_DAYS:
        return "Fast Velocity"
    if sold_days == 0:
        return "Dead Stock"
    return "Normal Velocity"


def _gap(ctx: _SalesContext, current: date) -> str:
    idx = bisect_left(ctx.sorted_selling_days, current)
    if idx == 0:
        return "First Time"
    days = (current - ctx.sorted_selling_days[idx - 1]).days
    if days <= 1:
        return "0-1 Day Gap"
    if days <= 3:
        return "2-3 Day Gap"
    return "Long Gap (4+ Days)"


def _traffic(ctx: _SalesContext, current: date) -> str:
    total = ctx.traffic.get(current, 0)
    if total > HIGH_TRAFFIC_UNITS:
        return "High Traffic"
    if total < LOW_TRAFFIC_UNITS:
        return "Low Traffic"
    return "Normal Traffic"


def _market(log: SaleLogEntry) -> str:
    return log.market_name or log.market_id or UNKNOWN_MARKET


def is_excluded_market(log: SaleLogEntry, excluded_markets: Iterable[str]) -> bool:
    """Match an exclusion entry on market id, or as a case-insensitive part of the market name."""
    name = log.market_name.lower()
    for entry in excluded_markets:
        if not entry:
            continue
        if entry == log.market_id or entry.lower() in name:
            return True
    return False


# ── Public API ───────────────────────────────────────────────────────────


def build_observations(
    history: Sequence[SaleLogEntry],
    all_sales: Sequence[SaleLogEntry],
    excluded_markets: Iterable[str] = (),
) -> list[MiningObservation]:
    """
    Feature-engineer each of a product's sale logs.

    history is the product's own logs; all_sales is the whole shop and feeds
    the weather and traffic dimensions. Logs from excluded markets produce no
    observation but still count towards momentum, velocity and gap.
    """
    excluded = list(excluded_markets)
    ctx = _SalesContext(history, all_sales)

    observations = []
    for log in history:
        if is_excluded_market(log, excluded):
            continue
        current = log.sale_date
        features = {
            "day": weekday_name(current),
            "phase": get_month_phase(current),
            "weather": ctx.weather.get(current, UNKNOWN_WEATHER),
            "momentum": _momentum(ctx, current),
            "velocity": _velocity(ctx, current),
            "gap": _gap(ctx, current),
            "traffic": _traffic(ctx, current),
            "market": _market(log),
        }
        observations.append(MiningObservation(sale_date=current, quantity=log.quantity_sold, features=features))
    return observations

