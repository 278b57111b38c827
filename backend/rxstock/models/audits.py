from __future__ import annotations

from ..extensions import db

# StockAudit.status
AUDIT_STATUS_DRAFT = "draft"
AUDIT_STATUS_IN_PROGRESS = "in_progress"
AUDIT_STATUS_COMPLETED = "completed"
AUDIT_STATUS_CANCELLED = "cancelled"

AUDIT_OPEN_STATUSES = (AUDIT_STATUS_DRAFT, AUDIT_STATUS_IN_PROGRESS)
AUDIT_TERMINAL_STATUSES = (AUDIT_STATUS_COMPLETED, AUDIT_STATUS_CANCELLED)

CORRECTION_REASON_AUDIT = "audit_correction"

# CorrectionOutboxEntry.status
OUTBOX_STATUS_PENDING = "pending"
OUTBOX_STATUS_DELIVERED = "delivered"
# Stock was never changed for the item, so no correction may be written
OUTBOX_STATUS_ABANDONED = "abandoned"


class StockAudit(db.Model):
    """
    One physical-count exercise for a branch.

    LIFECYCLE:
    1. DRAFT / IN_PROGRESS: items being counted, aggregates recomputed on save
    2. COMPLETED: physical counts applied to Product.quantity, terminal
    3. CANCELLED: abandoned without touching inventory, terminal

    Aggregates (total_items_audited, total_variance,
    estimated_value_impact_cents) are always a full recompute over the
    items; they are never incremented in place.

    CONCURRENCY: version_id is checked on every draft write so a stale
    draft cannot silently overwrite a newer one.
    """
    __tablename__ = "stock_audits"
    __table_args__ = (
        db.Index("ix_stock_audits_branch_status_created", "branch_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    audit_date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=AUDIT_STATUS_DRAFT, index=True)

    total_items_audited = db.Column(db.Integer, nullable=False, default=0)
    total_variance = db.Column(db.Integer, nullable=False, default=0)
    estimated_value_impact_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    completed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch")
    items = db.relationship(
        "StockAuditItem",
        backref=db.backref("audit", lazy=True),
        cascade="all, delete-orphan",
        order_by="StockAuditItem.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<StockAudit id={self.id} branch_id={self.branch_id} status={self.status!r}>"


class StockAuditItem(db.Model):
    """
    One product's count within an audit.

    system_stock is the Product.quantity snapshot taken when the item was
    added. physical_count is NULL until the auditor enters a number; such
    items are "pending" and contribute nothing to the audit totals.
    variance and status are derived and rewritten on every save.
    """
    __tablename__ = "stock_audit_items"
    __table_args__ = (
        db.UniqueConstraint("audit_id", "product_id", name="uq_stock_audit_items_audit_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    audit_id = db.Column(db.Integer, db.ForeignKey("stock_audits.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    system_stock = db.Column(db.Integer, nullable=False)
    physical_count = db.Column(db.Integer, nullable=True)

    variance = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="pending")

    notes = db.Column(db.Text, nullable=True)

    audited_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    audited_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")


class StockCorrection(db.Model):
    """
    Append-only record of an inventory adjustment made by audit completion.

    Exactly one row per audit item with non-zero variance (enforced by the
    unique constraint on audit_item_id). Never updated, never deleted.
    """
    __tablename__ = "stock_corrections"
    __table_args__ = (
        db.UniqueConstraint("audit_item_id", name="uq_stock_corrections_audit_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    audit_id = db.Column(db.Integer, db.ForeignKey("stock_audits.id"), nullable=False, index=True)
    audit_item_id = db.Column(db.Integer, db.ForeignKey("stock_audit_items.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    previous_quantity = db.Column(db.Integer, nullable=False)
    corrected_quantity = db.Column(db.Integer, nullable=False)
    variance = db.Column(db.Integer, nullable=False)

    correction_reason = db.Column(db.String(32), nullable=False, default=CORRECTION_REASON_AUDIT)
    notes = db.Column(db.Text, nullable=True)

    corrected_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    corrected_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class CorrectionOutboxEntry(db.Model):
    """
    Durable promise that a StockCorrection will exist for an audit item.

    Written in the same unit of work as the completion-time item upsert.
    Marked delivered by whichever path creates the correction; pending
    entries of completed audits are drained later. Entries whose product
    quantity update never went through are marked abandoned instead.
    """
    __tablename__ = "stock_correction_outbox"
    __table_args__ = (
        db.UniqueConstraint("audit_item_id", name="uq_stock_correction_outbox_item"),
        db.Index("ix_stock_correction_outbox_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    audit_id = db.Column(db.Integer, db.ForeignKey("stock_audits.id"), nullable=False, index=True)
    audit_item_id = db.Column(db.Integer, db.ForeignKey("stock_audit_items.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    previous_quantity = db.Column(db.Integer, nullable=False)
    corrected_quantity = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=OUTBOX_STATUS_PENDING)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
