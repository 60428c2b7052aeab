"""
Auto-Seasonality — weekday, payday and weather multipliers learned from history.

Where the impact models use fixed tables, this module learns the same
effects per product from its own sales:

  1. Daily totals, and a rolling baseline = mean of the logged days in the
     30 days strictly before each date (needs >= 5 such days)
  2. Weekday factor  = median(actual / baseline) per weekday
  3. Residual        = actual / (baseline × weekday factor)
     payday factor   = median residual on payday-window days (>= 3 samples)
     weather factor  = median residual per weather label (>= 2 samples)
  4. forecast        = current baseline × weekday × payday × weather

Medians keep one festival day from dragging a factor. Ratios outside
(0.1, 5.0) for weekdays and (0.2, 4.0) for residuals are dropped as outliers.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta

import numpy as np
import pandas as pd
import structlog

from core.config import get_settings
from retail.calendar import is_payday_period
from retail.models import SaleLogEntry

logger = structlog.get_logger()

settings = get_settings()
WINDOW_DAYS = int(settings.seasonality_window_days)
MIN_HISTORY = int(settings.seasonality_min_history)
MIN_WINDOW_DAYS = int(settings.seasonality_min_window_days)

WEEKDAY_RATIO_BOUNDS = (0.1, 5.0)
RESIDUAL_BOUNDS = (0.2, 4.0)
MIN_PAYDAY_SAMPLES = 3
MIN_WEATHER_SAMPLES = 2
# Assumed payday lift until enough payday days are logged
DEFAULT_PAYDAY_FACTOR = 1.1


@dataclass
class SeasonalityFactors:
    """Learned multipliers for one product (optionally at one market)."""

    product_id: str
    market_id: str | None
    baseline: float = 0.0
    weekday_factors: dict[int, float] = field(default_factory=lambda: {day: 1.0 for day in range(7)})
    weather_factors: dict[str, float] = field(default_factory=dict)
    payday_factor: float = 1.0
    data_points: int = 0
    confidence: float = 0.0


@dataclass
class SeasonalForecast:
    quantity: int
    baseline: float
    weekday_factor: float
    payday_factor: float
    weather_factor: float


def _median(values: list[float], default: float = 1.0) -> float:
    return float(np.median(values)) if values else default


def _daily_frame(history: Sequence[SaleLogEntry]) -> pd.DataFrame:
    """One row per date: summed quantity and the first weather tag seen."""
    frame = pd.DataFrame(
        {
            "sale_date": pd.to_datetime([s.sale_date for s in history]),
            "qty": [s.quantity_sold for s in history],
            "weather": [(s.weather_condition or "").strip().lower() or None for s in history],
        }
    )
    daily = frame.groupby("sale_date").agg(qty=("qty", "sum"), weather=("weather", "first")).sort_index()

    # Rolling window over calendar days, excluding the day itself
    window = daily["qty"].rolling(f"{WINDOW_DAYS}D", closed="left")
    daily["window_mean"] = window.mean()
    daily["window_days"] = window.count().fillna(0)
    daily["window_sum"] = window.sum().fillna(0)
    return daily


def calculate_seasonality_factors(
    sales: Sequence[SaleLogEntry],
    product_id: str,
    market_id: str | None = None,
    *,
    as_of: date | None = None,
) -> SeasonalityFactors:
    """
    Learn seasonality factors for product_id (product or variant id).

    as_of is the day being planned; the current baseline is the mean of the
    logged days in the window before it. Defaults to the day after the last
    logged sale. Fewer than 10 logs give neutral factors with confidence 0.
    """
    history = [s for s in sales if s.matches_item(product_id) and (not market_id or s.market_id == market_id)]
    if len(history) < MIN_HISTORY:
        return SeasonalityFactors(product_id=product_id, market_id=market_id, data_points=len(history))

    daily = _daily_frame(history)
    usable = daily[(daily["window_days"] >= MIN_WINDOW_DAYS) & (daily["window_sum"] > 0)]

    # Step 1: weekday factors
    ratios = usable["qty"] / usable["window_mean"]
    low, high = WEEKDAY_RATIO_BOUNDS
    in_bounds = ratios[(ratios > low) & (ratios < high)]
    weekday_factors = {
        day: _median(in_bounds[in_bounds.index.weekday == day].tolist()) for day in range(7)
    }

    # Step 2: what the weekday factor leaves unexplained
    payday_samples: list[float] = []
    weather_samples: dict[str, list[float]] = {}
    low, high = RESIDUAL_BOUNDS
    for row in usable.itertuples():
        day = row.Index.date()
        expected = row.window_mean * weekday_factors[day.weekday()]
        if expected <= 0:
            continue
        residual = row.qty / expected
        if not low < residual < high:
            continue
        if is_payday_period(day):
            payday_samples.append(residual)
        if isinstance(row.weather, str):
            weather_samples.setdefault(row.weather, []).append(residual)

    payday_factor = _median(payday_samples) if len(payday_samples) >= MIN_PAYDAY_SAMPLES else DEFAULT_PAYDAY_FACTOR
    weather_factors = {
        label: _median(samples) for label, samples in weather_samples.items() if len(samples) >= MIN_WEATHER_SAMPLES
    }

    # Step 3: baseline going into the planned day
    if as_of is None:
        as_of = daily.index.max().date() + timedelta(days=1)
    window_start = pd.Timestamp(as_of - timedelta(days=WINDOW_DAYS))
    recent = daily.loc[(daily.index >= window_start) & (daily.index < pd.Timestamp(as_of)), "qty"]
    baseline = float(recent.mean()) if not recent.empty else 0.0

    factors = SeasonalityFactors(
        product_id=product_id,
        market_id=market_id,
        baseline=baseline,
        weekday_factors=weekday_factors,
        weather_factors=weather_factors,
        payday_factor=payday_factor,
        data_points=len(daily),
        confidence=min(1.0, len(daily) / WINDOW_DAYS),
    )
    logger.info(
        "seasonality.learned",
        product_id=product_id,
        market_id=market_id,
        days=len(daily),
        samples=len(in_bounds),
        baseline=round(baseline, 2),
        payday_factor=round(payday_factor, 3),
    )
    return factors


def apply_seasonality_factors(
    factors: SeasonalityFactors,
    target_date: date,
    weather: str | None = None,
) -> SeasonalForecast:
    """baseline × weekday × payday × weather, rounded half up; unknown factors are 1.0."""
    weekday_factor = factors.weekday_factors.get(target_date.weekday(), 1.0)
    payday_factor = factors.payday_factor if is_payday_period(target_date) else 1.0
    weather_factor = factors.weather_factors.get((weather or "").strip().lower(), 1.0)

    raw = factors.baseline * weekday_factor * payday_factor * weather_factor
    return SeasonalForecast(
        quantity=max(0, int(np.floor(raw + 0.5))),
        baseline=round(factors.baseline, 1),
        weekday_factor=round(weekday_factor, 2),
        payday_factor=round(payday_factor, 2),
        weather_factor=round(weather_factor, 2),
    )
