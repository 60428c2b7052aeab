"""
Forecast Generator — same-weekday baseline with multiplicative adjustments.

For one product, date and (optional) market:
  1. Take up to the 4 most recent same-weekday observations before the date
  2. base = mean(quantities)
  3. raw = base × trend × weather × market × day-of-week
  4. quantity = ⌈raw × 1.05⌉  (5% safety buffer)

Confidence starts at 100 and loses:
  - 30 for fewer than 3 observations
  - 20 when the coefficient of variation exceeds 0.5
  - 15 for adverse weather (storm/rain)
then is clamped to [50, 95]. No observations at all gives quantity 0 with
confidence 0: an honest "don't know" rather than an error.

Optional extras, off by default:
  - calendar_events: raw × holiday / festival / payday factor for the date
  - unit_price + unit_cost: the Poisson newsvendor quantity for the raw
    forecast is added to the breakdown next to the buffered quantity
"""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from enum import Enum

import structlog

from core.config import get_settings
from inventory.newsvendor import calculate_optimal_quantity
from ml.stats import coefficient_of_variation, mean
from retail.calendar import get_calendar_factors, is_weekend
from retail.impact import (
    get_day_of_week_multiplier,
    get_market_performance_score,
    get_trend_multiplier,
    get_weather_multiplier,
    is_adverse_weather,
)
from retail.models import DailyReport, ForecastRecord, SaleLogEntry

logger = structlog.get_logger()

settings = get_settings()
LOOKBACK_OBSERVATIONS = int(settings.forecast_lookback_observations)
SAFETY_BUFFER = float(settings.forecast_safety_buffer)
DEFAULT_WEATHER = settings.forecast_default_weather
CONFIDENCE_FLOOR = int(settings.forecast_confidence_floor)
CONFIDENCE_CEILING = int(settings.forecast_confidence_ceiling)

SPARSE_DATA_OBSERVATIONS = 3
SPARSE_DATA_PENALTY = 30
HIGH_VARIATION_CV = 0.5
HIGH_VARIATION_PENALTY = 20
ADVERSE_WEATHER_PENALTY = 15

# Insight triggers
ADVERSE_WEATHER_MULTIPLIER = 0.8
STRONG_MARKET_MULTIPLIER = 1.2


class ForecastInsight(str, Enum):
    TREND_UP = "trend_up"
    TREND_DOWN = "trend_down"
    ADVERSE_WEATHER = "adverse_weather"
    WEEKEND = "weekend"
    STRONG_MARKET = "strong_market"
    SPARSE_DATA = "sparse_data"
    NO_HISTORY = "no_history"
    CALENDAR_EVENT = "calendar_event"


@dataclass
class ForecastResult:
    """Forecast for one product/date/market."""

    quantity: int
    confidence: int
    insights: list[ForecastInsight] = field(default_factory=list)
    breakdown: dict[str, float] = field(default_factory=dict)


def _select_observations(
    product_id: str,
    target_date: date,
    historical_logs: Iterable[SaleLogEntry],
    market_id: str | None,
    lookback: int,
) -> list[SaleLogEntry]:
    weekday = target_date.weekday()
    matches = [
        log
        for log in historical_logs
        if log.matches_item(product_id)
        and log.sale_date.weekday() == weekday
        and log.sale_date < target_date
        and (not market_id or log.market_id == market_id)
    ]
    # Newest first; the trend multiplier depends on this order
    matches.sort(key=lambda log: log.sale_date, reverse=True)
    return matches[:lookback]


def _score_confidence(
    observations: int,
    cv: float,
    weather: str,
    floor: int = CONFIDENCE_FLOOR,
    ceiling: int = CONFIDENCE_CEILING,
) -> int:
    confidence = 100
    if observations < SPARSE_DATA_OBSERVATIONS:
        confidence -= SPARSE_DATA_PENALTY
    if cv > HIGH_VARIATION_CV:
        confidence -= HIGH_VARIATION_PENALTY
    if is_adverse_weather(weather):
        confidence -= ADVERSE_WEATHER_PENALTY
    return round(max(floor, min(ceiling, confidence)))


def generate_forecast(
    product_id: str,
    target_date: date,
    historical_logs: Iterable[SaleLogEntry],
    *,
    weather: str = DEFAULT_WEATHER,
    market_id: str | None = None,
    daily_reports: Sequence[DailyReport] = (),
    lookback: int = LOOKBACK_OBSERVATIONS,
    safety_buffer: float = SAFETY_BUFFER,
    calendar_events: bool = False,
    unit_price: float | None = None,
    unit_cost: float | None = None,
) -> ForecastResult:
    """
    Forecast units to prepare for product_id on target_date.

    product_id may be a product or a variant id. When market_id is given only
    that market's history is used, and its closing reports (if any) drive the
    market multiplier.

    With calendar_events the raw forecast is scaled by the date's holiday,
    festival or payday factor. With both unit_price and unit_cost the
    breakdown also carries newsvendor_quantity and critical_ratio.
    """
    observations = _select_observations(product_id, target_date, historical_logs, market_id, lookback)

    if not observations:
        logger.info("forecast.no_history", product_id=product_id, target_date=str(target_date), market_id=market_id)
        return ForecastResult(quantity=0, confidence=0, insights=[ForecastInsight.NO_HISTORY])

    quantities = [log.quantity_sold for log in observations]
    base_avg = mean(quantities)

    trend_multiplier = get_trend_multiplier(quantities)
    weather_multiplier = get_weather_multiplier(weather)
    market_multiplier = 1.0
    if market_id and daily_reports:
        market_multiplier = get_market_performance_score(market_id, daily_reports)
    day_multiplier = get_day_of_week_multiplier(target_date)
    calendar_multiplier = get_calendar_factors(target_date).total_factor if calendar_events else 1.0

    raw_forecast = (
        base_avg * trend_multiplier * weather_multiplier * market_multiplier * day_multiplier * calendar_multiplier
    )
    # Round away float noise before ceil so 10.000000000000002 stays 10
    quantity = max(0, math.ceil(round(raw_forecast * (1 + safety_buffer), 9)))

    cv = coefficient_of_variation(quantities)
    confidence = _score_confidence(len(observations), cv, weather)

    insights: list[ForecastInsight] = []
    if trend_multiplier > 1.0:
        insights.append(ForecastInsight.TREND_UP)
    if trend_multiplier < 1.0:
        insights.append(ForecastInsight.TREND_DOWN)
    if weather_multiplier < ADVERSE_WEATHER_MULTIPLIER:
        insights.append(ForecastInsight.ADVERSE_WEATHER)
    if is_weekend(target_date):
        insights.append(ForecastInsight.WEEKEND)
    if market_multiplier > STRONG_MARKET_MULTIPLIER:
        insights.append(ForecastInsight.STRONG_MARKET)
    if len(observations) < SPARSE_DATA_OBSERVATIONS:
        insights.append(ForecastInsight.SPARSE_DATA)
    if calendar_multiplier != 1.0:
        insights.append(ForecastInsight.CALENDAR_EVENT)

    breakdown = {
        "observations": float(len(observations)),
        "base_average": round(base_avg, 4),
        "trend_multiplier": trend_multiplier,
        "weather_multiplier": weather_multiplier,
        "market_multiplier": round(market_multiplier, 4),
        "day_multiplier": day_multiplier,
        "calendar_multiplier": round(calendar_multiplier, 4),
        "raw_forecast": round(raw_forecast, 4),
        "coefficient_of_variation": round(cv, 4),
    }
    if unit_price is not None and unit_cost is not None:
        newsvendor = calculate_optimal_quantity(raw_forecast, unit_price, unit_cost)
        breakdown["newsvendor_quantity"] = float(newsvendor.optimal_quantity)
        breakdown["critical_ratio"] = round(newsvendor.critical_ratio, 4)

    logger.info(
        "forecast.generated",
        product_id=product_id,
        target_date=str(target_date),
        quantity=quantity,
        confidence=confidence,
        observations=len(observations),
    )
    return ForecastResult(quantity=quantity, confidence=confidence, insights=insights, breakdown=breakdown)


def to_forecast_record(
    product_id: str,
    target_date: date,
    result: ForecastResult,
    *,
    product_name: str = "",
    variant_id: str | None = None,
    market_id: str | None = None,
    market_name: str | None = None,
) -> ForecastRecord:
    """Freeze a forecast result into the record later reconciled against actuals."""
    return ForecastRecord(
        product_id=product_id,
        product_name=product_name,
        variant_id=variant_id,
        market_id=market_id,
        market_name=market_name,
        forecast_for_date=target_date,
        optimal_quantity=result.quantity,
        confidence_level=result.confidence,
    )
