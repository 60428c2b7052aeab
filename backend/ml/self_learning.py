"""
Self-Learning — turns reconciled forecast errors into forecast corrections.

Input is the reconciliation output: every scored ComparisonRecord becomes a
ForecastError (error = forecast - actual, positive = over-produced).

Bias correction per product (and market):
  1. Uncensor sold-out days: actual × 1.25, rounded up
  2. EWMA of the errors, oldest first (alpha 0.3)
  3. Adaptive gain 1.0 → 1.5: +0.1 for each consecutive error on the same
     side as the running EWMA (capped at 5)
  4. Momentum: least-squares slope of the last 5 actuals
  5. Weekday bias: mean error per weekday with >= 2 samples

  correction = (weekday bias + EWMA) / 2 × gain
  corrected  = round(raw - correction)

Error patterns (mid-month bump, rain on weekends, weekday skew) are
detected from the same errors and applied on top.
"""

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date

import numpy as np
import structlog

from business.reconciliation import ComparisonRecord, ComparisonStatus
from core.config import get_settings
from retail.calendar import WEEKDAY_NAMES, is_payday_period, is_weekend
from retail.impact import is_adverse_weather

logger = structlog.get_logger()

settings = get_settings()
MIN_ERRORS = int(settings.learning_min_errors)
EWMA_ALPHA = float(settings.learning_ewma_alpha)
STOCKOUT_UPLIFT = float(settings.learning_stockout_uplift)
MIN_BIAS_CONFIDENCE = int(settings.learning_min_bias_confidence)

# Selling at least this share of the forecast counts as a sell-out
SELL_OUT_RATIO = 0.95
MAX_GAIN_STEPS = 5
GAIN_STEP = 0.1
MOMENTUM_POINTS = 5
MOMENTUM_MIN_SLOPE = 0.3
MOMENTUM_STRENGTH = 0.8
MIN_WEEKDAY_BIAS_SAMPLES = 2
HIGH_VOLATILITY_CV = 0.5
VOLATILITY_CONFIDENCE_PENALTY = 0.8

MIN_PATTERN_ERRORS = 5
MID_MONTH_DAYS = range(14, 17)
MID_MONTH_MIN_SHIFT = 0.15
RAIN_WEEKEND_MIN_SHIFT = 0.2
WEEKDAY_MIN_SHIFT = 0.15
WEEKDAY_MIN_SAMPLES = 3

CONDITION_MID_MONTH = "mid_month"
CONDITION_RAIN_WEEKEND = "rain_weekend"
CONDITION_WEEKDAY = "weekday"


@dataclass
class ForecastError:
    product_id: str
    market_id: str
    forecast_date: date
    weekday: int
    day_of_month: int
    forecast_qty: int
    actual_qty: int
    error: int
    error_percent: float
    is_payday: bool
    sold_out: bool
    weather: str | None = None


@dataclass
class BiasCorrection:
    product_id: str
    market_id: str | None
    avg_bias: float
    exponential_bias: float
    bias_count: int
    weekday_bias: dict[int, float]
    momentum_slope: float
    volatility: float
    adaptive_gain: float
    confidence: int


@dataclass
class BiasAdjustment:
    corrected_forecast: int
    correction: float
    source: str


@dataclass
class ErrorPattern:
    condition: str
    description: str
    factor: float
    confidence: float
    data_points: int
    weekday: int | None = None


@dataclass
class Adjustment:
    source: str
    delta: float
    confidence: float


@dataclass
class SmartAdjustment:
    adjusted_forecast: int
    adjustments: list[Adjustment] = field(default_factory=list)
    confidence: float = 0.0


@dataclass
class LearningStats:
    total_forecasts: int = 0
    avg_accuracy: float = 0.0
    avg_bias: float = 0.0
    improvement_trend: float = 0.0
    top_patterns: list[ErrorPattern] = field(default_factory=list)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


# ── Errors ───────────────────────────────────────────────────────────────


def forecast_errors(
    records: Iterable[ComparisonRecord],
    weather_by_date: Mapping[date, str] | None = None,
) -> list[ForecastError]:
    """One ForecastError per scored record; pending records have no outcome yet."""
    weather_by_date = weather_by_date or {}
    errors = []
    for record in records:
        if record.status == ComparisonStatus.PENDING:
            continue
        forecast_date = date.fromisoformat(record.forecast_date)
        errors.append(
            ForecastError(
                product_id=record.product_id,
                market_id=record.market_id,
                forecast_date=forecast_date,
                weekday=record.weekday,
                day_of_month=forecast_date.day,
                forecast_qty=record.forecast_qty,
                actual_qty=record.actual_qty,
                error=record.diff,
                error_percent=record.diff / record.actual_qty * 100 if record.actual_qty > 0 else 0.0,
                is_payday=is_payday_period(forecast_date),
                sold_out=record.actual_qty >= record.forecast_qty * SELL_OUT_RATIO,
                weather=weather_by_date.get(forecast_date),
            )
        )
    return errors


# ── Bias Correction ──────────────────────────────────────────────────────


def calculate_bias_correction(
    errors: Sequence[ForecastError],
    product_id: str,
    market_id: str | None = None,
) -> BiasCorrection | None:
    """Bias profile for a product, or None with fewer than 3 errors."""
    relevant = sorted(
        (e for e in errors if e.product_id == product_id and (not market_id or e.market_id == market_id)),
        key=lambda e: e.forecast_date,
    )
    if len(relevant) < MIN_ERRORS:
        return None

    actuals = []
    biases = []
    for e in relevant:
        actual = math.ceil(e.actual_qty * (1 + STOCKOUT_UPLIFT)) if e.sold_out else e.actual_qty
        actuals.append(actual)
        biases.append(e.forecast_qty - actual)

    ewma = float(biases[0])
    streak = 0
    for bias in biases[1:]:
        ewma = EWMA_ALPHA * bias + (1 - EWMA_ALPHA) * ewma
        if (bias > 0 and ewma > 0) or (bias < 0 and ewma < 0):
            streak += 1
        else:
            streak = 0
    adaptive_gain = 1.0 + min(streak, MAX_GAIN_STEPS) * GAIN_STEP

    recent = actuals[-MOMENTUM_POINTS:]
    momentum_slope = 0.0
    if len(recent) >= 3:
        momentum_slope = float(np.polyfit(np.arange(len(recent)), np.asarray(recent, dtype=float), 1)[0])

    weekday_bias = {}
    for day in range(7):
        day_biases = [b for e, b in zip(relevant, biases) if e.weekday == day]
        if len(day_biases) >= MIN_WEEKDAY_BIAS_SAMPLES:
            weekday_bias[day] = sum(day_biases) / len(day_biases)

    mean_demand = float(np.mean(actuals))
    volatility = float(np.std(actuals))
    confidence = min(100.0, len(relevant) * 10.0)
    if volatility > mean_demand * HIGH_VOLATILITY_CV:
        confidence *= VOLATILITY_CONFIDENCE_PENALTY

    return BiasCorrection(
        product_id=product_id,
        market_id=market_id,
        avg_bias=sum(biases) / len(biases),
        exponential_bias=ewma,
        bias_count=len(relevant),
        weekday_bias=weekday_bias,
        momentum_slope=momentum_slope,
        volatility=volatility,
        adaptive_gain=adaptive_gain,
        confidence=_round_half_up(confidence),
    )


def apply_bias_correction(
    raw_forecast: float,
    bias: BiasCorrection | None,
    weekday: int | None = None,
) -> BiasAdjustment:
    """Subtract the learned bias: positive bias means we keep over-producing."""
    if bias is None or bias.bias_count < MIN_ERRORS:
        return BiasAdjustment(corrected_forecast=_round_half_up(raw_forecast), correction=0.0, source="none")

    day_bias = bias.weekday_bias.get(weekday, bias.exponential_bias) if weekday is not None else bias.exponential_bias
    correction = (day_bias + bias.exponential_bias) / 2 * bias.adaptive_gain
    source = f"adaptive-{bias.adaptive_gain:.1f}x" if bias.adaptive_gain > 1.2 else "bias"

    return BiasAdjustment(
        corrected_forecast=max(0, _round_half_up(raw_forecast - correction)),
        correction=correction,
        source=source,
    )


# ── Error Patterns ───────────────────────────────────────────────────────


def detect_error_patterns(errors: Sequence[ForecastError], product_id: str) -> list[ErrorPattern]:
    """Conditions under which actual sales drift from the product's average, most confident first."""
    product_errors = [e for e in errors if e.product_id == product_id]
    if len(product_errors) < MIN_PATTERN_ERRORS:
        return []

    overall = sum(e.actual_qty for e in product_errors) / len(product_errors)
    if overall <= 0:
        return []

    patterns: list[ErrorPattern] = []

    mid_month = [e.actual_qty for e in product_errors if e.day_of_month in MID_MONTH_DAYS]
    if len(mid_month) >= 2:
        factor = sum(mid_month) / len(mid_month) / overall
        if abs(factor - 1) > MID_MONTH_MIN_SHIFT:
            direction = "up" if factor > 1 else "down"
            patterns.append(
                ErrorPattern(
                    condition=CONDITION_MID_MONTH,
                    description=f"Mid-month (14th-16th) sales {direction} {abs(factor - 1) * 100:.0f}%",
                    factor=factor,
                    confidence=80,
                    data_points=len(mid_month),
                )
            )

    rainy_weekends = [
        e.actual_qty
        for e in product_errors
        if is_weekend(e.forecast_date) and is_adverse_weather(e.weather)
    ]
    if len(rainy_weekends) >= 2:
        factor = sum(rainy_weekends) / len(rainy_weekends) / overall
        if abs(factor - 1) > RAIN_WEEKEND_MIN_SHIFT:
            patterns.append(
                ErrorPattern(
                    condition=CONDITION_RAIN_WEEKEND,
                    description=f"Rainy weekends sell {'more' if factor > 1 else 'less'} than usual",
                    factor=factor,
                    confidence=90,
                    data_points=len(rainy_weekends),
                )
            )

    for day, name in enumerate(WEEKDAY_NAMES):
        quantities = [e.actual_qty for e in product_errors if e.weekday == day]
        if len(quantities) < WEEKDAY_MIN_SAMPLES:
            continue
        factor = sum(quantities) / len(quantities) / overall
        if abs(factor - 1) > WEEKDAY_MIN_SHIFT:
            patterns.append(
                ErrorPattern(
                    condition=CONDITION_WEEKDAY,
                    description=f"{name} sells {'more' if factor > 1 else 'less'} ({abs(factor - 1) * 100:.0f}%)",
                    factor=factor,
                    confidence=min(100, len(quantities) * 15),
                    data_points=len(quantities),
                    weekday=day,
                )
            )

    patterns.sort(key=lambda p: p.confidence, reverse=True)
    return patterns


def calculate_learning_stats(errors: Sequence[ForecastError], product_id: str | None = None) -> LearningStats:
    relevant = sorted(
        (e for e in errors if product_id is None or e.product_id == product_id),
        key=lambda e: e.forecast_date,
    )
    if not relevant:
        return LearningStats()

    avg_abs_error_pct = sum(abs(e.error_percent) for e in relevant) / len(relevant)
    recent = relevant[-5:]
    older = relevant[: max(1, len(relevant) - 5)]
    recent_err = sum(abs(e.error) for e in recent) / len(recent)
    older_err = sum(abs(e.error) for e in older) / len(older)

    return LearningStats(
        total_forecasts=len(relevant),
        avg_accuracy=max(0.0, 100 - avg_abs_error_pct),
        avg_bias=sum(e.error for e in relevant) / len(relevant),
        improvement_trend=older_err - recent_err,
        top_patterns=detect_error_patterns(errors, product_id)[:5] if product_id else [],
    )


# ── Smart Adjustment ─────────────────────────────────────────────────────


def get_smart_adjustment(
    raw_forecast: float,
    product_id: str,
    target_date: date,
    errors: Sequence[ForecastError],
    *,
    market_id: str | None = None,
    weather: str | None = None,
) -> SmartAdjustment:
    """
    Apply everything learned from past errors to a raw forecast.

    Bias correction and momentum need a bias profile with confidence >= 20;
    mid-month and rainy-weekend patterns apply only on matching days.
    """
    adjustments: list[Adjustment] = []
    adjusted = float(raw_forecast)

    bias = calculate_bias_correction(errors, product_id, market_id)
    if bias is not None and bias.confidence >= MIN_BIAS_CONFIDENCE:
        result = apply_bias_correction(raw_forecast, bias, target_date.weekday())
        if result.correction != 0:
            adjustments.append(Adjustment(f"bias-correction ({result.source})", -result.correction, bias.confidence))
            adjusted = float(result.corrected_forecast)

        if abs(bias.momentum_slope) > MOMENTUM_MIN_SLOPE:
            momentum_delta = _round_half_up(bias.momentum_slope * MOMENTUM_STRENGTH)
            if momentum_delta != 0:
                direction = "upward" if momentum_delta > 0 else "downward"
                adjustments.append(Adjustment(f"momentum ({direction})", momentum_delta, 80))
                adjusted += momentum_delta

    patterns = {p.condition: p for p in detect_error_patterns(errors, product_id) if p.condition != CONDITION_WEEKDAY}

    mid_month = patterns.get(CONDITION_MID_MONTH)
    if mid_month and target_date.day in MID_MONTH_DAYS:
        delta = adjusted * (mid_month.factor - 1)
        adjustments.append(Adjustment(mid_month.description, delta, mid_month.confidence))
        adjusted += delta

    rain_weekend = patterns.get(CONDITION_RAIN_WEEKEND)
    if rain_weekend and is_weekend(target_date) and is_adverse_weather(weather):
        delta = adjusted * (rain_weekend.factor - 1)
        adjustments.append(Adjustment(rain_weekend.description, delta, rain_weekend.confidence))
        adjusted += delta

    final = max(0, _round_half_up(adjusted))
    confidence = sum(a.confidence for a in adjustments) / len(adjustments) if adjustments else 0.0
    logger.info(
        "learning.adjusted",
        product_id=product_id,
        target_date=str(target_date),
        raw=raw_forecast,
        adjusted=final,
        adjustments=len(adjustments),
    )
    return SmartAdjustment(
        adjusted_forecast=final,
        adjustments=adjustments,
        confidence=confidence,
    )
