"""
Accuracy Reconciliation — what did our forecasts COST us?

Joins each forecast with the day's realized sales and inventory movement:

  diff       = forecast - actual          (positive = over-produced)
  accuracy   = max(0, 1 - |diff| / actual) × 100
  waste cost = waste × unit_cost
  stockout   = stockout × (unit_price - unit_cost)   (lost margin, not price)

With an inventory record, waste is the stock left unsold in the shop and a
stockout can only happen when nothing was left over. Without one, the
sales-only diff decides which side the error falls on.

Days where nothing was sent to the shop and nothing sold were not really
tried, so they are skipped instead of scored. Forecasts with no sales and
no inventory at all stay "pending" and never enter an aggregate.

Results roll up by market, weekday, product and date, with recommendations
for the groups that keep missing.
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field
from enum import Enum

import pandas as pd
import structlog

from core.config import get_settings
from retail.calendar import WEEKDAY_NAMES
from retail.models import DailyInventoryRecord, ForecastRecord, Product, SaleLogEntry

logger = structlog.get_logger()

settings = get_settings()
ACCURACY_ALERT_THRESHOLD = float(settings.accuracy_alert_threshold)
BIAS_ALERT_PCT = float(settings.accuracy_bias_alert_pct)
HIGH_PRIORITY_BIAS_PCT = float(settings.accuracy_high_priority_bias_pct)
MIN_SAMPLES = int(settings.accuracy_min_samples)

ALL_MARKETS_KEY = "all"
ALL_MARKETS_LABEL = "All Markets"


class ComparisonStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    WASTE = "waste"
    STOCKOUT = "stockout"


@dataclass
class ComparisonRecord:
    """One forecast reconciled against the day's outcome."""

    forecast_date: str
    weekday: int
    day_name: str
    market_id: str
    market_name: str
    product_id: str
    product_name: str
    forecast_qty: int
    actual_qty: int
    diff: int
    accuracy: float
    waste: int
    stockout: int
    waste_cost: float
    stockout_revenue: float
    status: ComparisonStatus


@dataclass
class GroupAccuracy:
    """Accuracy/bias roll-up for one market, weekday, product or date."""

    key: str
    label: str
    accuracy: float = 0.0
    sample_size: int = 0
    forecast_count: int = 0
    waste_qty: int = 0
    stockout_qty: int = 0
    waste_cost: float = 0.0
    stockout_revenue: float = 0.0
    avg_bias: float = 0.0
    bias_percent: float = 0.0


@dataclass
class AccuracySummary:
    total_days: int = 0
    days_with_data: int = 0
    overall_accuracy: float = 0.0
    overall_bias_percent: float = 0.0
    total_forecasts: int = 0
    pending_count: int = 0
    skipped_count: int = 0
    total_waste_qty: int = 0
    total_stockout_qty: int = 0
    total_waste_cost: float = 0.0
    total_stockout_revenue: float = 0.0


@dataclass
class Recommendation:
    type: str  # market | product | day
    target: str
    issue: str
    suggestion: str
    priority: str  # high | medium


@dataclass
class ReconciliationResult:
    records: list[ComparisonRecord] = field(default_factory=list)
    summary: AccuracySummary = field(default_factory=AccuracySummary)
    market_accuracy: list[GroupAccuracy] = field(default_factory=list)
    day_accuracy: list[GroupAccuracy] = field(default_factory=list)
    product_accuracy: list[GroupAccuracy] = field(default_factory=list)
    daily_trend: list[GroupAccuracy] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)


# ── Matching ─────────────────────────────────────────────────────────────


def _match_sales(forecast: ForecastRecord, sales_on_date: Sequence[SaleLogEntry]) -> list[SaleLogEntry]:
    """
    Sales that realize this forecast.

    Id match first, product-name match as a fallback. When the forecast names
    a market and that market has matches, other markets are dropped.
    """
    matches = [s for s in sales_on_date if s.matches_item(forecast.item_key)]
    if not matches and forecast.product_name:
        matches = [s for s in sales_on_date if forecast.product_name in (s.product_name, s.display_name)]

    if forecast.market_id:
        in_market = [s for s in matches if s.market_id == forecast.market_id]
        if in_market:
            matches = in_market
    return matches


def _match_inventory(
    forecast: ForecastRecord,
    inventory_on_date: Sequence[DailyInventoryRecord],
) -> DailyInventoryRecord | None:
    for record in inventory_on_date:
        if record.item_key != forecast.item_key:
            continue
        if record.market_id and forecast.market_id and record.market_id != forecast.market_id:
            continue
        return record
    return None


def _unit_economics(
    forecast: ForecastRecord,
    catalog: Sequence[Product],
    matched_sales: Sequence[SaleLogEntry],
) -> tuple[float, float]:
    """(price, cost) from the catalog, else from the matched sale, else zero."""
    for product in catalog:
        if product.id == forecast.product_id or product.owns(forecast.item_key):
            return product.unit_economics(forecast.item_key)
    if matched_sales:
        return matched_sales[0].price_per_unit, matched_sales[0].cost_per_unit
    return 0.0, 0.0


def _record_accuracy(forecast_qty: int, actual_qty: int) -> float:
    if actual_qty > 0:
        return max(0.0, (1 - abs(forecast_qty - actual_qty) / actual_qty) * 100)
    return 100.0 if forecast_qty == 0 else 0.0


def _compare(
    forecast: ForecastRecord,
    matched_sales: Sequence[SaleLogEntry],
    inventory: DailyInventoryRecord | None,
    unit_price: float,
    unit_cost: float,
) -> ComparisonRecord:
    forecast_qty = forecast.optimal_quantity

    if matched_sales:
        actual_qty = sum(s.quantity_sold for s in matched_sales)
    elif inventory is not None:
        actual_qty = inventory.sold_qty
    else:
        actual_qty = 0
    diff = forecast_qty - actual_qty

    if inventory is not None and matched_sales and actual_qty != inventory.sold_qty:
        # Actual comes from the sale logs, stockout from the inventory count
        logger.warning(
            "reconciliation.inventory_mismatch",
            product_id=forecast.item_key,
            forecast_date=forecast.forecast_for_date.isoformat(),
            sales_qty=actual_qty,
            inventory_sold_qty=inventory.sold_qty,
        )

    if inventory is not None:
        waste = max(0, inventory.unsold_shop)
        # Leftover stock means demand was met
        stockout = max(0, forecast_qty - inventory.sold_qty) if inventory.unsold_shop <= 0 else 0
    elif matched_sales:
        waste = diff if diff > 0 else 0
        stockout = -diff if diff < 0 else 0
    else:
        waste = stockout = 0

    if not matched_sales and inventory is None:
        status = ComparisonStatus.PENDING
    elif waste > 0:
        status = ComparisonStatus.WASTE
    elif stockout > 0:
        status = ComparisonStatus.STOCKOUT
    else:
        status = ComparisonStatus.SUCCESS

    weekday = forecast.forecast_for_date.weekday()
    return ComparisonRecord(
        forecast_date=forecast.forecast_for_date.isoformat(),
        weekday=weekday,
        day_name=WEEKDAY_NAMES[weekday],
        market_id=forecast.market_id or ALL_MARKETS_KEY,
        market_name=forecast.market_name or ALL_MARKETS_LABEL,
        product_id=forecast.item_key,
        product_name=forecast.product_name or forecast.item_key,
        forecast_qty=forecast_qty,
        actual_qty=actual_qty,
        diff=diff,
        accuracy=_record_accuracy(forecast_qty, actual_qty),
        waste=waste,
        stockout=stockout,
        waste_cost=waste * unit_cost,
        stockout_revenue=stockout * (unit_price - unit_cost),
        status=status,
    )


# ── Aggregation ──────────────────────────────────────────────────────────


def _aggregate(frame: pd.DataFrame, key_col: str, label_col: str) -> list[GroupAccuracy]:
    """Roll comparison rows up by key_col. Accuracy only counts rows with actual > 0."""
    if frame.empty:
        return []

    valid = frame["actual_qty"] > 0
    frame = frame.assign(
        is_valid=valid.astype(int),
        valid_accuracy=frame["accuracy"].where(valid),
        valid_actual=frame["actual_qty"].where(valid, 0),
        group_key=frame[key_col].astype(str),
    )
    grouped = frame.groupby("group_key", sort=False).agg(
        label=(label_col, "first"),
        accuracy=("valid_accuracy", "mean"),
        sample_size=("is_valid", "sum"),
        forecast_count=("diff", "size"),
        waste_qty=("waste", "sum"),
        stockout_qty=("stockout", "sum"),
        waste_cost=("waste_cost", "sum"),
        stockout_revenue=("stockout_revenue", "sum"),
        total_diff=("diff", "sum"),
        valid_actual=("valid_actual", "sum"),
    )
    grouped["accuracy"] = grouped["accuracy"].fillna(0.0)

    groups = []
    for row in grouped.itertuples():
        bias_percent = row.total_diff / row.valid_actual * 100 if row.valid_actual > 0 else 0.0
        groups.append(
            GroupAccuracy(
                key=str(row.Index),
                label=str(row.label),
                accuracy=float(row.accuracy),
                sample_size=int(row.sample_size),
                forecast_count=int(row.forecast_count),
                waste_qty=int(row.waste_qty),
                stockout_qty=int(row.stockout_qty),
                waste_cost=float(row.waste_cost),
                stockout_revenue=float(row.stockout_revenue),
                avg_bias=float(row.total_diff / row.forecast_count),
                bias_percent=float(bias_percent),
            )
        )
    return groups


def _day_accuracy(frame: pd.DataFrame) -> list[GroupAccuracy]:
    """All seven weekdays, Monday first; days without forecasts stay at zero."""
    by_weekday = {g.key: g for g in _aggregate(frame, "weekday", "day_name")}
    return [by_weekday.get(str(day), GroupAccuracy(key=str(day), label=name)) for day, name in enumerate(WEEKDAY_NAMES)]


def _by_accuracy_desc(groups: list[GroupAccuracy]) -> list[GroupAccuracy]:
    return sorted(groups, key=lambda g: g.accuracy, reverse=True)


def _summarize(
    frame: pd.DataFrame,
    forecasts: Sequence[ForecastRecord],
    pending_count: int,
    skipped_count: int,
) -> AccuracySummary:
    summary = AccuracySummary(
        total_days=len({f.forecast_for_date for f in forecasts}),
        total_forecasts=len(forecasts),
        pending_count=pending_count,
        skipped_count=skipped_count,
    )
    if frame.empty:
        return summary

    valid = frame[frame["actual_qty"] > 0]
    valid_actual = valid["actual_qty"].sum()
    summary.days_with_data = int(frame["forecast_date"].nunique())
    summary.overall_accuracy = float(valid["accuracy"].mean()) if not valid.empty else 0.0
    summary.overall_bias_percent = float(frame["diff"].sum() / valid_actual * 100) if valid_actual > 0 else 0.0
    summary.total_waste_qty = int(frame["waste"].sum())
    summary.total_stockout_qty = int(frame["stockout"].sum())
    summary.total_waste_cost = float(frame["waste_cost"].sum())
    summary.total_stockout_revenue = float(frame["stockout_revenue"].sum())
    return summary


# ── Recommendations ──────────────────────────────────────────────────────


def _recommend(
    market_accuracy: Sequence[GroupAccuracy],
    product_accuracy: Sequence[GroupAccuracy],
    day_accuracy: Sequence[GroupAccuracy],
) -> list[Recommendation]:
    recommendations: list[Recommendation] = []

    for market in market_accuracy:
        if market.accuracy < ACCURACY_ALERT_THRESHOLD and market.sample_size >= MIN_SAMPLES:
            recommendations.append(
                Recommendation(
                    type="market",
                    target=market.label,
                    issue=f"Accuracy {market.accuracy:.0f}% is below target",
                    suggestion="Reduce production" if market.avg_bias > 0 else "Increase production",
                    priority="high",
                )
            )

    for product in product_accuracy:
        if abs(product.bias_percent) > BIAS_ALERT_PCT and product.sample_size >= MIN_SAMPLES:
            over = product.bias_percent > 0
            units = abs(product.avg_bias)
            recommendations.append(
                Recommendation(
                    type="product",
                    target=product.label,
                    issue=(
                        f"Over-produced by {product.bias_percent:.0f}%"
                        if over
                        else f"Under-produced by {abs(product.bias_percent):.0f}%"
                    ),
                    suggestion=f"Reduce production by ~{units:.0f} units" if over else f"Increase production by ~{units:.0f} units",
                    priority="high" if abs(product.bias_percent) > HIGH_PRIORITY_BIAS_PCT else "medium",
                )
            )

    for day in day_accuracy:
        if day.accuracy < ACCURACY_ALERT_THRESHOLD and day.sample_size >= MIN_SAMPLES:
            recommendations.append(
                Recommendation(
                    type="day",
                    target=day.label,
                    issue=f"Accuracy {day.accuracy:.0f}%",
                    suggestion=f"Review the {day.label} sales pattern",
                    priority="medium",
                )
            )

    return recommendations


# ── Entry Point ──────────────────────────────────────────────────────────


def reconcile(
    forecasts: Sequence[ForecastRecord],
    sales: Iterable[SaleLogEntry],
    products: Sequence[Product],
    inventory: Iterable[DailyInventoryRecord] = (),
) -> ReconciliationResult:
    """
    Reconcile forecasts against realized sales and inventory.

    Never raises on sparse data: unmatched forecasts count as zero sales,
    and forecasts with no outcome at all are returned as pending.
    """
    sales_by_date: dict = defaultdict(list)
    for sale in sales:
        sales_by_date[sale.sale_date].append(sale)
    inventory_by_date: dict = defaultdict(list)
    for record in inventory:
        inventory_by_date[record.business_date].append(record)

    records: list[ComparisonRecord] = []
    skipped = 0
    for forecast in forecasts:
        matched_sales = _match_sales(forecast, sales_by_date.get(forecast.forecast_for_date, []))
        inv = _match_inventory(forecast, inventory_by_date.get(forecast.forecast_for_date, []))

        # Nothing sent to the shop and nothing sold: the product was not on offer
        if inv is not None and inv.to_shop_qty == 0 and not matched_sales:
            skipped += 1
            continue

        unit_price, unit_cost = _unit_economics(forecast, products, matched_sales)
        records.append(_compare(forecast, matched_sales, inv, unit_price, unit_cost))

    scored = [r for r in records if r.status != ComparisonStatus.PENDING]
    pending = len(records) - len(scored)
    frame = pd.DataFrame([asdict(r) for r in scored])

    market_accuracy = _by_accuracy_desc(_aggregate(frame, "market_id", "market_name"))
    product_accuracy = _by_accuracy_desc(_aggregate(frame, "product_id", "product_name"))
    day_accuracy = _day_accuracy(frame)
    daily_trend = sorted(_aggregate(frame, "forecast_date", "forecast_date"), key=lambda g: g.key)

    summary = _summarize(frame, forecasts, pending, skipped)
    recommendations = _recommend(market_accuracy, product_accuracy, day_accuracy)

    logger.info(
        "reconciliation.completed",
        forecasts=len(forecasts),
        scored=len(scored),
        pending=pending,
        skipped=skipped,
        overall_accuracy=round(summary.overall_accuracy, 2),
        recommendations=len(recommendations),
    )

    return ReconciliationResult(
        records=records,
        summary=summary,
        market_accuracy=market_accuracy,
        day_accuracy=day_accuracy,
        product_accuracy=product_accuracy,
        daily_trend=daily_trend,
        recommendations=recommendations,
    )
