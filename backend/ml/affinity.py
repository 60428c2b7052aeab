"""
Product Affinity — which items sell together, and which steal from each other.

Combos:
  Daily units per item (variant or product), restricted to dates where both
  items were logged (an explicit 0 counts). Pearson r over >= 5 shared dates;
  |r| >= 0.5 is kept.
    r > 0 → POWER_COUPLE (complements: plan them together)
    r < 0 → COMPETITOR   (substitutes: pick one to push)

Cannibalism:
  An item's first logged sale is its introduction. For every item introduced
  strictly earlier, compare its mean units per log entry before vs after that
  date (>= 7 before, >= 5 after). A drop of 20% or more is flagged, with
  confidence min(95, 10 × entries after).
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

import pandas as pd
import structlog

from core.config import get_settings
from ml.oracle import OraclePattern, PatternMetrics, PatternType
from ml.stats import mean, pearson_correlation
from retail.models import SaleLogEntry

logger = structlog.get_logger()

settings = get_settings()
MIN_OVERLAP_DAYS = int(settings.combo_min_overlap_days)
MIN_ABS_CORRELATION = float(settings.combo_min_abs_correlation)
MIN_DAYS_BEFORE = int(settings.cannibal_min_days_before)
MIN_DAYS_AFTER = int(settings.cannibal_min_days_after)
DROP_THRESHOLD = float(settings.cannibal_drop_threshold)
TOP_N = int(settings.affinity_top_n)

MAX_CANNIBAL_CONFIDENCE = 95
CONFIDENCE_PER_ENTRY_AFTER = 10


@dataclass
class ComboResult:
    product_a_id: str
    product_a_name: str
    product_b_id: str
    product_b_name: str
    correlation: float
    type: PatternType
    occurrence: int
    avg_sales_a: float
    avg_sales_b: float

    def as_pattern(self) -> OraclePattern:
        if self.type == PatternType.POWER_COUPLE:
            analysis = (
                f"'{self.product_a_name}' and '{self.product_b_name}' sell well on the same days "
                f"(correlation {self.correlation * 100:.0f}% over {self.occurrence} days)."
            )
            action = f"Plan them together: when {self.product_a_name} is forecast high, raise {self.product_b_name} too."
        else:
            analysis = (
                f"When '{self.product_a_name}' sells well, '{self.product_b_name}' sells less "
                f"(correlation {self.correlation * 100:.0f}% over {self.occurrence} days)."
            )
            action = "Avoid pushing both on the same day; pick one to focus on."

        return OraclePattern(
            id=f"combo-{self.product_a_id}-{self.product_b_id}",
            product_id=self.product_a_id,
            product_name=self.product_a_name,
            type=self.type,
            dimensions={"pair": f"{self.product_a_name} + {self.product_b_name}"},
            metrics=PatternMetrics(
                occurrence=self.occurrence,
                avg_sales=self.avg_sales_a,
                base_sales=self.avg_sales_b,
                lift=self.correlation,
                confidence=abs(self.correlation) * 100,
            ),
            analysis=analysis,
            action=action,
            related_product_id=self.product_b_id,
            related_product_name=self.product_b_name,
        )


@dataclass
class CannibalResult:
    new_product_id: str
    new_product_name: str
    old_product_id: str
    old_product_name: str
    intro_date: date
    avg_before: float
    avg_after: float
    change: float
    entries_before: int
    entries_after: int
    confidence: float

    def as_pattern(self) -> OraclePattern:
        return OraclePattern(
            id=f"cannibal-{self.new_product_id}-{self.old_product_id}",
            product_id=self.new_product_id,
            product_name=self.new_product_name,
            type=PatternType.CANNIBAL,
            dimensions={
                "newProduct": self.new_product_name,
                "affectedProduct": self.old_product_name,
                "introDate": self.intro_date.isoformat(),
            },
            metrics=PatternMetrics(
                occurrence=self.entries_after,
                avg_sales=self.avg_after,
                base_sales=self.avg_before,
                lift=self.change,
                confidence=self.confidence,
            ),
            analysis=(
                f"Since '{self.new_product_name}' launched, '{self.old_product_name}' dropped "
                f"{abs(self.change) * 100:.0f}% ({self.avg_before:.1f} → {self.avg_after:.1f} units/day)."
            ),
            action=(
                f"Reduce {self.old_product_name} production on days {self.new_product_name} is sold, "
                "or consider retiring one of them."
            ),
            related_product_id=self.old_product_id,
            related_product_name=self.old_product_name,
        )


def _item_names(sales: Sequence[SaleLogEntry]) -> dict[str, str]:
    """Item key → display name, in order of first appearance."""
    names: dict[str, str] = {}
    for sale in sales:
        names.setdefault(sale.item_key, sale.display_name)
    return names


# ── Combos ───────────────────────────────────────────────────────────────


def analyze_combos(
    sales: Sequence[SaleLogEntry],
    *,
    min_overlap_days: int = MIN_OVERLAP_DAYS,
    min_abs_correlation: float = MIN_ABS_CORRELATION,
    top_n: int = TOP_N,
) -> list[ComboResult]:
    """Strongest co-moving item pairs, by |correlation|."""
    names = _item_names(sales)
    if len(names) < 2:
        return []

    frame = pd.DataFrame(
        {
            "sale_date": [s.sale_date for s in sales],
            "item": [s.item_key for s in sales],
            "qty": [s.quantity_sold for s in sales],
        }
    )
    # NaN = not logged that day; 0 = logged with no sales
    daily = frame.pivot_table(index="sale_date", columns="item", values="qty", aggfunc="sum")
    items = [key for key in names if key in daily.columns]

    results: list[ComboResult] = []
    for i, item_a in enumerate(items):
        for item_b in items[i + 1 :]:
            both = daily[[item_a, item_b]].dropna()
            if len(both) < min_overlap_days:
                continue

            values_a = both[item_a].tolist()
            values_b = both[item_b].tolist()
            correlation = pearson_correlation(values_a, values_b)
            if correlation is None or abs(correlation) < min_abs_correlation:
                continue

            results.append(
                ComboResult(
                    product_a_id=item_a,
                    product_a_name=names[item_a],
                    product_b_id=item_b,
                    product_b_name=names[item_b],
                    correlation=correlation,
                    type=PatternType.POWER_COUPLE if correlation > 0 else PatternType.COMPETITOR,
                    occurrence=len(both),
                    avg_sales_a=mean(values_a),
                    avg_sales_b=mean(values_b),
                )
            )

    results.sort(key=lambda r: abs(r.correlation), reverse=True)
    logger.info("affinity.combos_analyzed", items=len(items), pairs_found=len(results))
    return results[:top_n]


# ── Cannibalism ──────────────────────────────────────────────────────────


def detect_cannibalization(
    sales: Sequence[SaleLogEntry],
    *,
    min_days_before: int = MIN_DAYS_BEFORE,
    min_days_after: int = MIN_DAYS_AFTER,
    drop_threshold: float = DROP_THRESHOLD,
    top_n: int = TOP_N,
) -> list[CannibalResult]:
    """Older items whose sales fell after a newer item was introduced, worst first."""
    names = _item_names(sales)
    first_sale: dict[str, date] = {}
    for sale in sales:
        current = first_sale.get(sale.item_key)
        if current is None or sale.sale_date < current:
            first_sale[sale.item_key] = sale.sale_date

    newest_first = sorted(first_sale.items(), key=lambda item: item[1], reverse=True)

    results: list[CannibalResult] = []
    for new_id, intro_date in newest_first:
        for old_id, old_first in first_sale.items():
            if old_id == new_id or old_first >= intro_date:
                continue

            old_sales = [s for s in sales if s.item_key == old_id]
            before = [s.quantity_sold for s in old_sales if s.sale_date < intro_date]
            after = [s.quantity_sold for s in old_sales if s.sale_date >= intro_date]
            if len(before) < min_days_before or len(after) < min_days_after:
                continue

            avg_before = mean(before)
            if avg_before == 0:
                continue
            avg_after = mean(after)
            change = (avg_after - avg_before) / avg_before
            if change > -drop_threshold:
                continue

            results.append(
                CannibalResult(
                    new_product_id=new_id,
                    new_product_name=names[new_id],
                    old_product_id=old_id,
                    old_product_name=names[old_id],
                    intro_date=intro_date,
                    avg_before=avg_before,
                    avg_after=avg_after,
                    change=change,
                    entries_before=len(before),
                    entries_after=len(after),
                    confidence=float(min(MAX_CANNIBAL_CONFIDENCE, len(after) * CONFIDENCE_PER_ENTRY_AFTER)),
                )
            )

    results.sort(key=lambda r: r.change)
    logger.info("affinity.cannibalism_checked", items=len(first_sale), flagged=len(results))
    return results[:top_n]
