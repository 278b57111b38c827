# Overview: Audit-level totals recomputed from the full item set.

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .variance import is_counted, variance, value_impact


@dataclass(frozen=True)
class AuditTotals:
    total_items_audited: int
    total_variance: int
    estimated_value_impact_cents: int

    def to_dict(self) -> dict:
        return {
            "total_items_audited": self.total_items_audited,
            "total_variance": self.total_variance,
            "estimated_value_impact_cents": self.estimated_value_impact_cents,
        }


def aggregate(items: Iterable) -> AuditTotals:
    """
    Full recompute over an audit's items.

    Items only need system_stock, physical_count and price_cents attributes.
    Pending items (no physical count) add nothing to any total.
    """
    audited = 0
    total_variance = 0
    impact = 0
    for item in items:
        if not is_counted(item.physical_count):
            continue
        audited += 1
        total_variance += abs(variance(item.system_stock, item.physical_count))
        impact += value_impact(item.system_stock, item.physical_count, item.price_cents)

    return AuditTotals(
        total_items_audited=audited,
        total_variance=total_variance,
        estimated_value_impact_cents=impact,
    )
