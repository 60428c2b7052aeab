"""
Batch/Transfer Allocator — turns a daily target into production and shop moves.

The last step between a forecast and the oven: given leftover stock and a
target, decide how many whole batches to bake and how much of the result
fits in the shop.

Algorithm:
  shortfall = target - current_stock
  batches   = ⌈shortfall / batch_size⌉   (never round down: no under-production)
  produced  = batches × batch_size
  total     = current_stock + produced
  transfer  = min(total, shop_capacity), the rest stays in storage

Invariant: whenever batches > 0, total >= target and batches is the smallest
integer that achieves it.
"""

import math
from dataclasses import dataclass
from enum import Enum

import structlog

logger = structlog.get_logger()


class AllocationConfigError(ValueError):
    """Raised when allocation inputs describe an impossible configuration."""


class ProductionStatus(str, Enum):
    PRODUCTION_NEEDED = "Production Needed"
    STOCK_SUFFICIENT = "Stock Sufficient"


@dataclass
class ProductionPlan:
    """Result of a daily production calculation."""

    batches_to_bake: int
    produced_qty: int
    total_available: int
    shortfall: int
    surplus: int
    status: ProductionStatus


@dataclass
class TransferPlan:
    """Split of available stock between the shop and storage."""

    transfer_qty: int
    keep_at_home: int
    shop_full: bool


@dataclass
class DailyPlan:
    production: ProductionPlan
    transfer: TransferPlan


def calculate_daily_production(current_stock: int, daily_target: int, batch_size: int) -> ProductionPlan:
    """
    Compute the batches needed to cover daily_target from current_stock.

    Raises AllocationConfigError when batch_size is not positive.
    """
    if batch_size <= 0:
        raise AllocationConfigError("Batch size must be greater than 0")

    shortfall = daily_target - current_stock
    if shortfall <= 0:
        return ProductionPlan(
            batches_to_bake=0,
            produced_qty=0,
            total_available=current_stock,
            shortfall=0,
            surplus=current_stock - daily_target,
            status=ProductionStatus.STOCK_SUFFICIENT,
        )

    batches = math.ceil(shortfall / batch_size)
    produced = batches * batch_size
    total = current_stock + produced

    return ProductionPlan(
        batches_to_bake=batches,
        produced_qty=produced,
        total_available=total,
        shortfall=shortfall,
        surplus=total - daily_target,
        status=ProductionStatus.PRODUCTION_NEEDED,
    )


def calculate_stock_transfer(total_available_stock: int, shop_capacity: int) -> TransferPlan:
    """
    Move as much stock to the shop as it can hold.

    Raises AllocationConfigError when shop_capacity is negative.
    """
    if shop_capacity < 0:
        raise AllocationConfigError("Shop capacity cannot be negative")

    transfer = min(total_available_stock, shop_capacity)
    return TransferPlan(
        transfer_qty=transfer,
        keep_at_home=total_available_stock - transfer,
        shop_full=transfer >= shop_capacity,
    )


def plan_day(current_stock: int, daily_target: int, batch_size: int, shop_capacity: int) -> DailyPlan:
    """Production for the day, then the shop transfer of everything available."""
    production = calculate_daily_production(current_stock, daily_target, batch_size)
    transfer = calculate_stock_transfer(production.total_available, shop_capacity)

    logger.info(
        "allocator.production_planned",
        target=daily_target,
        batches=production.batches_to_bake,
        total_available=production.total_available,
        transfer=transfer.transfer_qty,
        shop_full=transfer.shop_full,
    )
    return DailyPlan(production=production, transfer=transfer)
