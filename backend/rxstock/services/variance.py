# Overview: Pure variance math for stock audit items; no database access.

"""
Variance calculator.

variance     = physical_count - system_stock (0 while the count is unset)
status       = pending | matched | variance | critical
value impact = variance * price (signed; positive means surplus)

An unset physical count is NOT a zero variance: the item is "pending" and
is left out of every audit total. Callers must re-run these functions on
every change to physical_count or system_stock.
"""
from __future__ import annotations


ITEM_STATUS_PENDING = "pending"
ITEM_STATUS_MATCHED = "matched"
ITEM_STATUS_VARIANCE = "variance"
ITEM_STATUS_CRITICAL = "critical"

ITEM_STATUSES = (
    ITEM_STATUS_PENDING,
    ITEM_STATUS_MATCHED,
    ITEM_STATUS_VARIANCE,
    ITEM_STATUS_CRITICAL,
)

# Exclusive: a variance of exactly 10 units is still "variance"
DEFAULT_CRITICAL_THRESHOLD = 10


def is_counted(physical_count: int | None) -> bool:
    return physical_count is not None


def variance(system_stock: int, physical_count: int | None) -> int:
    if physical_count is None:
        return 0
    return physical_count - system_stock


def item_status(
    system_stock: int,
    physical_count: int | None,
    threshold: int = DEFAULT_CRITICAL_THRESHOLD,
) -> str:
    if physical_count is None:
        return ITEM_STATUS_PENDING
    diff = variance(system_stock, physical_count)
    if diff == 0:
        return ITEM_STATUS_MATCHED
    if abs(diff) > threshold:
        return ITEM_STATUS_CRITICAL
    return ITEM_STATUS_VARIANCE


def value_impact(system_stock: int, physical_count: int | None, price_cents: int | None) -> int:
    """Signed value of the discrepancy in cents."""
    return variance(system_stock, physical_count) * (price_cents or 0)
