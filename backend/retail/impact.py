"""
Impact Models — multiplicative demand adjustments.

Each model maps one external signal to a factor applied on top of the
same-weekday baseline:
  - Weather: fixed lookup by condition label (rain keeps shoppers home)
  - Market: a market's historical revenue/profit level
  - Trend: direction of the three most recent same-weekday observations
  - Day of week: weekend footfall lift

learn_weather_impact() measures the weather effect from history instead of
the fixed table, so operators can compare the two.
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import date

import structlog

from core.config import get_settings
from retail.calendar import is_weekend
from retail.models import DailyReport, SaleLogEntry

logger = structlog.get_logger()

settings = get_settings()
WEEKEND_MULTIPLIER = float(settings.forecast_weekend_multiplier)

# Weather condition (lower-cased) → demand multiplier
WEATHER_MULTIPLIERS: dict[str, float] = {
    "sunny": 1.15,
    "cloudy": 1.0,
    "rain": 0.65,
    "rainy": 0.65,  # legacy label
    "storm": 0.40,
    "wind": 0.85,
    "windy": 0.85,  # legacy label
    "cold": 1.10,
}

ADVERSE_WEATHER = frozenset({"storm", "rain", "rainy"})

# Market score bounds
MARKET_SCORE_MIN = 0.5
MARKET_SCORE_MAX = 1.5
# Revenue that scores 1.0 before the profit-margin term
MARKET_REVENUE_REFERENCE = 1000.0

TREND_UP_MULTIPLIER = 1.10
TREND_DOWN_MULTIPLIER = 0.90


def _normalize(label: str | None) -> str:
    return (label or "").strip().lower()


# ── Weather ──────────────────────────────────────────────────────────────


def get_weather_multiplier(condition: str | None) -> float:
    """Demand multiplier for a weather label; 1.0 for unknown or empty labels."""
    return WEATHER_MULTIPLIERS.get(_normalize(condition), 1.0)


def is_adverse_weather(condition: str | None) -> bool:
    return _normalize(condition) in ADVERSE_WEATHER


def learn_weather_impact(sales: Iterable[SaleLogEntry]) -> dict[str, float]:
    """
    Observed weather multipliers relative to sunny days.

    Average quantity per weather label divided by the sunny average. When no
    sunny day was logged, the first condition seen becomes the reference.
    Conditions absent from the history fall back to the reference (1.0).
    """
    quantities: dict[str, list[int]] = defaultdict(list)
    for sale in sales:
        label = _normalize(sale.weather_condition)
        if label:
            quantities[label].append(sale.quantity_sold)

    if not quantities:
        return {}

    averages = {label: sum(qty) / len(qty) for label, qty in quantities.items()}
    reference = averages.get("sunny", next(iter(averages.values())))

    learned: dict[str, float] = {}
    for label in sorted({*WEATHER_MULTIPLIERS, *averages}):
        if label in averages and reference > 0:
            learned[label] = round(averages[label] / reference, 3)
        else:
            learned[label] = 1.0

    logger.debug("impact.weather_learned", conditions=len(averages), reference=round(reference, 2))
    return learned


# ── Market ───────────────────────────────────────────────────────────────


def get_market_performance_score(market_id: str, daily_reports: Sequence[DailyReport]) -> float:
    """
    Score a market from its closing reports.

    score = (avg_revenue / 1000) × (1 + avg_profit / avg_revenue), clamped to
    [0.5, 1.5]. The margin term is 0 when average revenue is 0. Markets with
    no reports score 1.0.
    """
    reports = [r for r in daily_reports if r.market_id == market_id]
    if not reports:
        return 1.0

    avg_revenue = sum(r.revenue for r in reports) / len(reports)
    avg_profit = sum(r.net_profit for r in reports) / len(reports)
    margin = avg_profit / avg_revenue if avg_revenue != 0 else 0.0

    score = (avg_revenue / MARKET_REVENUE_REFERENCE) * (1 + margin)
    return max(MARKET_SCORE_MIN, min(MARKET_SCORE_MAX, score))


# ── Trend / Calendar ─────────────────────────────────────────────────────


def get_trend_multiplier(recent_quantities: Sequence[float]) -> float:
    """
    Trend factor from same-weekday quantities ordered newest first.

    Values falling with the index mean the newest observation is the highest,
    which is an upward trend (1.10). Values rising with the index are a
    downward trend (0.90). Fewer than three observations give 1.0.
    """
    if len(recent_quantities) < 3:
        return 1.0
    q0, q1, q2 = recent_quantities[0], recent_quantities[1], recent_quantities[2]
    if q0 > q1 > q2:
        return TREND_UP_MULTIPLIER
    if q0 < q1 < q2:
        return TREND_DOWN_MULTIPLIER
    return 1.0


def get_day_of_week_multiplier(dt: date, weekend_multiplier: float = WEEKEND_MULTIPLIER) -> float:
    return weekend_multiplier if is_weekend(dt) else 1.0
