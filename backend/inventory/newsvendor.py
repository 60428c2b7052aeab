"""
Newsvendor Sizing — profit-optimal production for perishable stock.

Unsold units are thrown away at the end of the day, so the right quantity
balances the margin lost on a sell-out against the cost of waste:

  Cu = price - cost             (underage: margin lost per missed sale)
  Co = cost + disposal          (overage: cost of each wasted unit)
  CR = Cu / (Cu + Co)           (target service level)
  Q* = smallest Q with P(D <= Q) >= CR,  D ~ Poisson(λ)

The search is capped at ⌈3λ⌉ units.
"""

import math
from dataclasses import dataclass

from scipy.stats import poisson

from inventory.allocator import AllocationConfigError


@dataclass
class NewsvendorResult:
    optimal_quantity: int
    critical_ratio: float
    cost_underage: float
    cost_overage: float
    service_level_target: float


def calculate_critical_ratio(selling_price: float, unit_cost: float, disposal_cost: float = 0.0) -> float:
    cost_underage = selling_price - unit_cost
    cost_overage = unit_cost + disposal_cost
    if cost_underage + cost_overage <= 0:
        raise AllocationConfigError(
            f"Newsvendor economics are undefined: underage {cost_underage} + overage {cost_overage} <= 0"
        )
    return cost_underage / (cost_underage + cost_overage)


def calculate_optimal_quantity(
    expected_demand: float,
    selling_price: float,
    unit_cost: float,
    disposal_cost: float = 0.0,
) -> NewsvendorResult:
    """
    Find Q* for Poisson demand with mean expected_demand.

    Returns Q = 0 when expected demand is not positive.
    """
    critical_ratio = calculate_critical_ratio(selling_price, unit_cost, disposal_cost)

    max_quantity = math.ceil(expected_demand * 3) if expected_demand > 0 else 0
    quantity = 0
    cumulative = 0.0
    while cumulative < critical_ratio and quantity < max_quantity:
        quantity += 1
        cumulative = float(poisson.cdf(quantity, expected_demand))

    return NewsvendorResult(
        optimal_quantity=quantity,
        critical_ratio=critical_ratio,
        cost_underage=selling_price - unit_cost,
        cost_overage=unit_cost + disposal_cost,
        service_level_target=critical_ratio,
    )
