"""
Oracle — mines sales history for conditions that move demand.

Every observation of a product carries eight categorical features
(see ml.pattern_features). For each observation the miner accumulates all
1-, 2- and 3-dimension combinations of its own feature values, so only
combinations that actually happened are ever scored.

A combination becomes a pattern when it passes three gates:
  1. occurrence  >= 3
  2. |lift|      >= 0.25   lift = (avg - base) / base, base floored at 0.1
  3. confidence  >= 50     confidence = max(0, 100 - CV × 100)

Classification:
  PERFECT_STORM  lift > 0.8 and confidence > 70
  SILENT_KILLER  lift < -0.8 and confidence > 80
  OPPORTUNITY    any other lift > 0.25
(a moderate negative lift is discarded)

Accumulation runs under a cooperative deadline: once it expires, the rows
already accumulated are scored and the rest are ignored.
"""

import hashlib
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from itertools import combinations

import structlog

from core.config import get_settings
from core.deadline import Deadline
from ml.pattern_features import DIMENSIONS, build_observations
from ml.stats import coefficient_of_variation, mean
from retail.models import SaleLogEntry

logger = structlog.get_logger()

settings = get_settings()
TIME_BUDGET_SECONDS = float(settings.oracle_time_budget_seconds)
MIN_HISTORY = int(settings.oracle_min_history)
MIN_OCCURRENCE = int(settings.oracle_min_occurrence)
MIN_ABS_LIFT = float(settings.oracle_min_abs_lift)
MIN_CONFIDENCE = float(settings.oracle_min_confidence)
TOP_N = int(settings.oracle_top_n)
EXCLUDED_MARKETS = tuple(settings.oracle_excluded_markets)

MAX_COMBINATION_SIZE = 3
BASELINE_FLOOR = 0.1

PERFECT_STORM_LIFT = 0.8
PERFECT_STORM_CONFIDENCE = 70
SILENT_KILLER_LIFT = -0.8
SILENT_KILLER_CONFIDENCE = 80
# Perfect-storm action: prepare this much above the observed average
PERFECT_STORM_HEADROOM = 1.2


class PatternType(str, Enum):
    PERFECT_STORM = "PERFECT_STORM"
    SILENT_KILLER = "SILENT_KILLER"
    OPPORTUNITY = "OPPORTUNITY"
    POWER_COUPLE = "POWER_COUPLE"
    COMPETITOR = "COMPETITOR"
    CANNIBAL = "CANNIBAL"


@dataclass
class PatternMetrics:
    occurrence: int
    avg_sales: float
    base_sales: float
    lift: float
    confidence: float


@dataclass
class OraclePattern:
    """A discovered condition, ready for a presentation layer."""

    id: str
    product_id: str
    product_name: str
    type: PatternType
    dimensions: dict[str, str]
    metrics: PatternMetrics
    analysis: str
    action: str
    related_product_id: str | None = None
    related_product_name: str | None = None


def pattern_id(prefix: str, *parts: str) -> str:
    """Stable id from the inputs that produced a pattern."""
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:12]
    return f"{prefix}-{digest}"


def classify(lift: float, confidence: float) -> PatternType | None:
    if lift > PERFECT_STORM_LIFT and confidence > PERFECT_STORM_CONFIDENCE:
        return PatternType.PERFECT_STORM
    if lift < SILENT_KILLER_LIFT and confidence > SILENT_KILLER_CONFIDENCE:
        return PatternType.SILENT_KILLER
    if lift > MIN_ABS_LIFT:
        return PatternType.OPPORTUNITY
    return None


# ── Narrative ────────────────────────────────────────────────────────────


def _describe_condition(dimension: str, value: str) -> str:
    if dimension == "day":
        return f"it is {value}"
    if dimension == "phase":
        return f"it falls in the {value}"
    if dimension == "weather":
        return f"the weather is {value}"
    if dimension == "momentum":
        return f"sales momentum is {value}"
    if dimension == "market":
        return f"selling at {value}"
    return f"{dimension} is {value}"


def _narrate(
    pattern_type: PatternType,
    product_name: str,
    dimensions: dict[str, str],
    metrics: PatternMetrics,
) -> tuple[str, str]:
    condition = " and ".join(_describe_condition(k, v) for k, v in dimensions.items())
    figures = (
        f"baseline {metrics.base_sales:.1f} units, observed {metrics.avg_sales:.1f} units "
        f"({metrics.lift * 100:+.0f}%), confidence {metrics.confidence:.0f}%"
    )

    if pattern_type == PatternType.PERFECT_STORM:
        analysis = f"'{product_name}' sells far above normal when {condition}: {figures}."
        action = (
            f"Stock at least {math.ceil(metrics.avg_sales * PERFECT_STORM_HEADROOM)} units "
            "on days matching these conditions."
        )
    elif pattern_type == PatternType.SILENT_KILLER:
        analysis = f"'{product_name}' barely sells when {condition}: {figures}."
        action = "Halve production, or skip it, on days matching these conditions."
    else:
        analysis = f"'{product_name}' tends to sell more when {condition}: {figures}."
        action = f"Raise production slightly, towards {math.ceil(metrics.avg_sales)} units, when these conditions line up."
    return analysis, action


# ── Mining ───────────────────────────────────────────────────────────────


def _combination_keys(features: dict[str, str]) -> list[tuple[tuple[str, str], ...]]:
    keys = []
    for size in range(1, MAX_COMBINATION_SIZE + 1):
        for dims in combinations(DIMENSIONS, size):
            keys.append(tuple((dim, features[dim]) for dim in dims))
    return keys


def mine_patterns(
    product_id: str,
    sales: Sequence[SaleLogEntry],
    *,
    product_name: str | None = None,
    excluded_markets: Iterable[str] = EXCLUDED_MARKETS,
    time_budget_seconds: float = TIME_BUDGET_SECONDS,
    deadline: Deadline | None = None,
    top_n: int = TOP_N,
) -> list[OraclePattern]:
    """
    Top patterns for one product (or variant), strongest |lift| first.

    sales is the whole shop's history: the product's own logs are selected
    from it, and the rest feeds the shop-wide weather and traffic context.
    Fewer than 10 usable observations give an empty list.
    """
    history = [s for s in sales if s.matches_item(product_id)]
    observations = build_observations(history, sales, excluded_markets)

    if len(observations) < MIN_HISTORY:
        logger.info("oracle.insufficient_history", product_id=product_id, observations=len(observations))
        return []

    if product_name is None:
        product_name = history[0].display_name if history else product_id

    base_avg = mean([o.quantity for o in observations])
    safe_base = max(base_avg, BASELINE_FLOOR)

    if deadline is None:
        deadline = Deadline.after(time_budget_seconds)

    accumulated: dict[tuple[tuple[str, str], ...], list[int]] = {}
    scanned = 0
    for observation in observations:
        if deadline.expired():
            logger.warning(
                "oracle.time_budget_exhausted",
                product_id=product_id,
                scanned=scanned,
                total=len(observations),
                elapsed=round(deadline.elapsed(), 3),
            )
            break
        for key in _combination_keys(observation.features):
            accumulated.setdefault(key, []).append(observation.quantity)
        scanned += 1

    patterns: list[OraclePattern] = []
    for key, quantities in accumulated.items():
        if len(quantities) < MIN_OCCURRENCE:
            continue

        avg = mean(quantities)
        lift = (avg - safe_base) / safe_base
        if abs(lift) < MIN_ABS_LIFT:
            continue

        cv = coefficient_of_variation(quantities)
        confidence = max(0.0, 100 - cv * 100)
        if confidence < MIN_CONFIDENCE:
            continue

        pattern_type = classify(lift, confidence)
        if pattern_type is None:
            continue

        dimensions = dict(key)
        metrics = PatternMetrics(
            occurrence=len(quantities),
            avg_sales=avg,
            base_sales=base_avg,
            lift=lift,
            confidence=confidence,
        )
        analysis, action = _narrate(pattern_type, product_name, dimensions, metrics)
        patterns.append(
            OraclePattern(
                id=pattern_id("oracle", product_id, *(f"{k}={v}" for k, v in sorted(dimensions.items()))),
                product_id=product_id,
                product_name=product_name,
                type=pattern_type,
                dimensions=dimensions,
                metrics=metrics,
                analysis=analysis,
                action=action,
            )
        )

    patterns.sort(key=lambda p: abs(p.metrics.lift), reverse=True)
    top = patterns[:top_n]

    logger.info(
        "oracle.mined",
        product_id=product_id,
        observations=len(observations),
        scanned=scanned,
        combinations=len(accumulated),
        patterns=len(patterns),
        returned=len(top),
    )
    return top
