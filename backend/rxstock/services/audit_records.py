# Overview: Typed records exchanged between the audit engine, its stores and callers.

"""
Plain records for the stock audit engine.

ORM rows never leave the store adapters. Each adapter converts rows into
these dataclasses (the from_model constructors and assemble_draft below are
the single join/assembly step), so the engine and HTTP layer work on
explicit shapes instead of loosely typed nested payloads.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime

from rxstock.models.audits import AUDIT_STATUS_DRAFT, AUDIT_TERMINAL_STATUSES, AUDIT_STATUS_COMPLETED
from rxstock.time_utils import to_utc_z, to_iso_date
from .variance import (
    DEFAULT_CRITICAL_THRESHOLD,
    is_counted,
    item_status,
    value_impact,
    variance,
)


@dataclass
class ProductRecord:
    id: int
    tenant_id: int
    branch_id: int
    name: str
    quantity: int
    price_cents: int = 0
    cost_price_cents: int | None = None
    status: str = "active"

    @classmethod
    def from_model(cls, product) -> "ProductRecord":
        return cls(
            id=product.id,
            tenant_id=product.tenant_id,
            branch_id=product.branch_id,
            name=product.name,
            quantity=product.quantity,
            price_cents=product.price_cents or 0,
            cost_price_cents=product.cost_price_cents,
            status=product.status,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "name": self.name,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "status": self.status,
        }


@dataclass
class StockAuditItemRecord:
    product_id: int
    system_stock: int
    physical_count: int | None = None
    notes: str | None = None
    price_cents: int = 0
    product_name: str | None = None
    id: int | None = None
    audit_id: int | None = None
    variance: int = 0
    status: str = "pending"
    audited_by: int | None = None
    audited_at: datetime | None = None

    @property
    def is_counted(self) -> bool:
        return is_counted(self.physical_count)

    @property
    def value_impact_cents(self) -> int:
        return value_impact(self.system_stock, self.physical_count, self.price_cents)

    def recalculate(self, threshold: int = DEFAULT_CRITICAL_THRESHOLD) -> "StockAuditItemRecord":
        """Re-derive variance and status from the current count pair."""
        self.variance = variance(self.system_stock, self.physical_count)
        self.status = item_status(self.system_stock, self.physical_count, threshold)
        return self

    @classmethod
    def from_model(cls, item, threshold: int = DEFAULT_CRITICAL_THRESHOLD) -> "StockAuditItemRecord":
        product = item.product
        record = cls(
            id=item.id,
            audit_id=item.audit_id,
            product_id=item.product_id,
            system_stock=item.system_stock,
            physical_count=item.physical_count,
            notes=item.notes,
            price_cents=(product.price_cents or 0) if product is not None else 0,
            product_name=product.name if product is not None else None,
            audited_by=item.audited_by,
            audited_at=item.audited_at,
        )
        # Stored variance/status are never trusted on the way in.
        return record.recalculate(threshold)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "audit_id": self.audit_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "system_stock": self.system_stock,
            "physical_count": self.physical_count,
            "variance": self.variance,
            "status": self.status,
            "price_cents": self.price_cents,
            "value_impact_cents": self.value_impact_cents,
            "notes": self.notes,
            "audited_by": self.audited_by,
            "audited_at": to_utc_z(self.audited_at),
        }


@dataclass
class StockAuditRecord:
    tenant_id: int
    branch_id: int
    audit_date: date
    created_by: int
    id: int | None = None
    status: str = AUDIT_STATUS_DRAFT
    total_items_audited: int = 0
    total_variance: int = 0
    estimated_value_impact_cents: int = 0
    notes: str | None = None
    completed_by: int | None = None
    completed_at: datetime | None = None
    cancelled_by: int | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    version_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in AUDIT_TERMINAL_STATUSES

    @property
    def is_completed(self) -> bool:
        return self.status == AUDIT_STATUS_COMPLETED

    @classmethod
    def from_model(cls, audit) -> "StockAuditRecord":
        return cls(
            id=audit.id,
            tenant_id=audit.tenant_id,
            branch_id=audit.branch_id,
            audit_date=audit.audit_date,
            status=audit.status,
            total_items_audited=audit.total_items_audited,
            total_variance=audit.total_variance,
            estimated_value_impact_cents=audit.estimated_value_impact_cents,
            notes=audit.notes,
            created_by=audit.created_by,
            completed_by=audit.completed_by,
            completed_at=audit.completed_at,
            cancelled_by=audit.cancelled_by,
            cancelled_at=audit.cancelled_at,
            cancellation_reason=audit.cancellation_reason,
            version_id=audit.version_id,
            created_at=audit.created_at,
            updated_at=audit.updated_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "audit_date": to_iso_date(self.audit_date),
            "status": self.status,
            "total_items_audited": self.total_items_audited,
            "total_variance": self.total_variance,
            "estimated_value_impact_cents": self.estimated_value_impact_cents,
            "notes": self.notes,
            "created_by": self.created_by,
            "completed_by": self.completed_by,
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_by": self.cancelled_by,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


@dataclass
class StockCorrectionRecord:
    tenant_id: int
    branch_id: int
    audit_id: int
    audit_item_id: int
    product_id: int
    previous_quantity: int
    corrected_quantity: int
    variance: int
    corrected_by: int
    correction_reason: str = "audit_correction"
    notes: str | None = None
    id: int | None = None
    corrected_at: datetime | None = None

    @classmethod
    def from_model(cls, correction) -> "StockCorrectionRecord":
        return cls(
            id=correction.id,
            tenant_id=correction.tenant_id,
            branch_id=correction.branch_id,
            audit_id=correction.audit_id,
            audit_item_id=correction.audit_item_id,
            product_id=correction.product_id,
            previous_quantity=correction.previous_quantity,
            corrected_quantity=correction.corrected_quantity,
            variance=correction.variance,
            correction_reason=correction.correction_reason,
            notes=correction.notes,
            corrected_by=correction.corrected_by,
            corrected_at=correction.corrected_at,
        )

    @classmethod
    def for_item(
        cls,
        audit: "StockAuditRecord",
        item: StockAuditItemRecord,
        corrected_by: int,
    ) -> "StockCorrectionRecord":
        return cls(
            tenant_id=audit.tenant_id,
            branch_id=audit.branch_id,
            audit_id=audit.id,
            audit_item_id=item.id,
            product_id=item.product_id,
            previous_quantity=item.system_stock,
            corrected_quantity=item.physical_count,
            variance=item.physical_count - item.system_stock,
            notes=item.notes or "",
            corrected_by=corrected_by,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "audit_id": self.audit_id,
            "audit_item_id": self.audit_item_id,
            "product_id": self.product_id,
            "previous_quantity": self.previous_quantity,
            "corrected_quantity": self.corrected_quantity,
            "variance": self.variance,
            "correction_reason": self.correction_reason,
            "notes": self.notes,
            "corrected_by": self.corrected_by,
            "corrected_at": to_utc_z(self.corrected_at),
        }


@dataclass
class OutboxEntryRecord:
    id: int
    audit_id: int
    audit_item_id: int
    product_id: int
    previous_quantity: int
    corrected_quantity: int
    notes: str | None
    attempts: int

    @classmethod
    def from_model(cls, entry) -> "OutboxEntryRecord":
        return cls(
            id=entry.id,
            audit_id=entry.audit_id,
            audit_item_id=entry.audit_item_id,
            product_id=entry.product_id,
            previous_quantity=entry.previous_quantity,
            corrected_quantity=entry.corrected_quantity,
            notes=entry.notes,
            attempts=entry.attempts,
        )


@dataclass
class AuditDraft:
    """
    Working copy of one audit: the header plus its items.

    Edits happen on the draft in memory; save_draft/complete_audit push it
    to the stores. An unsaved draft has audit.id == None.
    """
    audit: StockAuditRecord
    items: list[StockAuditItemRecord] = field(default_factory=list)

    @property
    def is_saved(self) -> bool:
        return self.audit.id is not None

    @property
    def is_terminal(self) -> bool:
        return self.audit.is_terminal

    def find_item(self, product_id: int) -> StockAuditItemRecord | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def counted_items(self) -> list[StockAuditItemRecord]:
        return [item for item in self.items if item.is_counted]

    def items_with_variance(self) -> list[StockAuditItemRecord]:
        return [item for item in self.items if item.is_counted and item.variance != 0]

    def copy(self) -> "AuditDraft":
        return AuditDraft(audit=replace(self.audit), items=[replace(item) for item in self.items])

    def to_dict(self) -> dict:
        return {
            **self.audit.to_dict(),
            "items": [item.to_dict() for item in self.items],
        }


def assemble_draft(audit, threshold: int = DEFAULT_CRITICAL_THRESHOLD) -> AuditDraft:
    """Build a draft from a StockAudit row with its items and joined products."""
    return AuditDraft(
        audit=StockAuditRecord.from_model(audit),
        items=[StockAuditItemRecord.from_model(item, threshold) for item in audit.items],
    )
