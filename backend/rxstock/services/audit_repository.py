# Overview: Audit repository adapter; stock_audits and stock_audit_items persistence.

"""
Audit repository.

Each public method is one unit of work (run_store_call commits it or rolls
it back as a whole). Methods that write a StockAudit row check the caller's
expected version_id first, so a stale draft raises ConcurrencyConflict
instead of overwriting newer work. force_completed is the one deliberate
exception: it bypasses the version check.

mark_completed(auto_corrections=True) is the "automatic correction" path:
the status change and one StockCorrection per non-zero-variance item are
written together. Any constraint failure on that write surfaces as
TriggerConstraintViolation so the engine can fall back to writing the
corrections itself. Products whose quantity update never went through are
passed as unapplied_product_ids: they get no correction and their outbox
entries are abandoned in the same unit of work.
"""
from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Branch, CorrectionOutboxEntry, StockAudit, StockAuditItem, StockCorrection
from ..models.audits import (
    AUDIT_OPEN_STATUSES,
    AUDIT_STATUS_CANCELLED,
    AUDIT_STATUS_COMPLETED,
    AUDIT_STATUS_DRAFT,
    CORRECTION_REASON_AUDIT,
    OUTBOX_STATUS_ABANDONED,
    OUTBOX_STATUS_DELIVERED,
    OUTBOX_STATUS_PENDING,
)
from rxstock.time_utils import utcnow
from .audit_aggregator import aggregate
from .audit_errors import (
    AuditLocked,
    AuditNotFound,
    ConcurrencyConflict,
    StoreUnavailable,
    TriggerConstraintViolation,
    ValidationFailed,
)
from .audit_records import AuditDraft, StockAuditItemRecord, StockAuditRecord, assemble_draft
from .concurrency import lock_for_update, run_store_call
from .variance import DEFAULT_CRITICAL_THRESHOLD


AUDIT_SORT_FIELDS = {"audit_date", "created_at"}

# Fields a draft save may write on the audit header
DRAFT_WRITABLE_FIELDS = {
    "audit_date",
    "notes",
    "status",
    "total_items_audited",
    "total_variance",
    "estimated_value_impact_cents",
}


class SqlAuditRepository:

    def __init__(
        self,
        *,
        threshold: int = DEFAULT_CRITICAL_THRESHOLD,
        single_open_per_branch: bool = True,
        timeout: float | None = None,
        attempts: int | None = None,
    ):
        self.threshold = threshold
        self.single_open_per_branch = single_open_per_branch
        self.timeout = timeout
        self.attempts = attempts

    def _call(self, operation: str, func, *, write: bool = True):
        return run_store_call(operation, func, write=write, timeout=self.timeout, attempts=self.attempts)

    # ------------------------------------------------------------------
    # Row helpers (run inside a unit of work)
    # ------------------------------------------------------------------

    def _load_audit(
        self,
        audit_id: int,
        *,
        tenant_id: int | None = None,
        branch_id: int | None = None,
        lock: bool = False,
    ) -> StockAudit:
        query = db.session.query(StockAudit).filter_by(id=audit_id)
        if tenant_id is not None:
            query = query.filter_by(tenant_id=tenant_id)
        if branch_id is not None:
            query = query.filter_by(branch_id=branch_id)
        if lock:
            query = lock_for_update(query)
        audit = query.first()
        if audit is None:
            raise AuditNotFound(f"Stock audit {audit_id} not found")
        return audit

    @staticmethod
    def _check_version(audit: StockAudit, expected_version: int | None) -> None:
        if expected_version is not None and audit.version_id != expected_version:
            raise ConcurrencyConflict(
                f"Stock audit {audit.id} was modified by someone else "
                f"(expected version {expected_version}, found {audit.version_id}). Reload and retry."
            )

    def _check_single_open(self, tenant_id: int, branch_id: int) -> None:
        if not self.single_open_per_branch:
            return
        # Serialize concurrent draft creation per branch where the DB supports it
        lock_for_update(db.session.query(Branch).filter_by(id=branch_id)).first()
        open_audit = (
            db.session.query(StockAudit.id)
            .filter(
                StockAudit.tenant_id == tenant_id,
                StockAudit.branch_id == branch_id,
                StockAudit.status.in_(AUDIT_OPEN_STATUSES),
            )
            .first()
        )
        if open_audit is not None:
            raise ConcurrencyConflict(
                f"Branch {branch_id} already has an open stock audit ({open_audit.id}). "
                f"Complete or cancel it before starting another."
            )

    def _insert(self, record: StockAuditRecord) -> StockAudit:
        if record.audit_date is None:
            raise ValidationFailed("Audit date is required")
        self._check_single_open(record.tenant_id, record.branch_id)
        audit = StockAudit(
            tenant_id=record.tenant_id,
            branch_id=record.branch_id,
            audit_date=record.audit_date,
            status=record.status if record.status in AUDIT_OPEN_STATUSES else AUDIT_STATUS_DRAFT,
            total_items_audited=record.total_items_audited,
            total_variance=record.total_variance,
            estimated_value_impact_cents=record.estimated_value_impact_cents,
            notes=record.notes,
            created_by=record.created_by,
        )
        db.session.add(audit)
        db.session.flush()
        return audit

    def _apply_fields(self, audit: StockAudit, fields: dict) -> None:
        unknown = set(fields) - DRAFT_WRITABLE_FIELDS
        if unknown:
            raise ValidationFailed(f"Fields not writable on a draft: {', '.join(sorted(unknown))}")
        if audit.status not in AUDIT_OPEN_STATUSES:
            raise AuditLocked(f"Stock audit {audit.id} is {audit.status} and can no longer be changed")
        if "status" in fields and fields["status"] not in AUDIT_OPEN_STATUSES:
            raise ValidationFailed("Use complete or cancel to close an audit")
        if "audit_date" in fields and fields["audit_date"] is None:
            raise ValidationFailed("Audit date is required")
        for key, value in fields.items():
            if getattr(audit, key) != value:
                setattr(audit, key, value)

    def _upsert_items(
        self,
        audit: StockAudit,
        items: list[StockAuditItemRecord],
        actor_id: int,
        audited_at: datetime,
        *,
        remove_missing: bool = True,
    ) -> None:
        existing = {row.product_id: row for row in audit.items}
        wanted = set()
        for record in items:
            record.recalculate(self.threshold)
            wanted.add(record.product_id)
            row = existing.get(record.product_id)
            if row is None:
                row = StockAuditItem(audit_id=audit.id, product_id=record.product_id)
                audit.items.append(row)
            row.system_stock = record.system_stock
            row.physical_count = record.physical_count
            row.variance = record.variance
            row.status = record.status
            row.notes = record.notes
            row.audited_by = actor_id
            row.audited_at = audited_at

        if remove_missing:
            for product_id, row in existing.items():
                if product_id not in wanted:
                    db.session.query(CorrectionOutboxEntry).filter_by(
                        audit_item_id=row.id, status=OUTBOX_STATUS_PENDING
                    ).delete(synchronize_session=False)
                    audit.items.remove(row)
        db.session.flush()

    def _enqueue_corrections(self, audit: StockAudit) -> int:
        """Upsert one pending outbox entry per non-zero-variance item."""
        entries = {
            entry.audit_item_id: entry
            for entry in db.session.query(CorrectionOutboxEntry).filter_by(audit_id=audit.id).all()
        }
        enqueued = 0
        for row in audit.items:
            entry = entries.get(row.id)
            needs_correction = row.physical_count is not None and row.physical_count != row.system_stock
            if not needs_correction:
                if entry is not None and entry.status == OUTBOX_STATUS_PENDING:
                    db.session.delete(entry)
                continue
            if entry is None:
                entry = CorrectionOutboxEntry(audit_id=audit.id, audit_item_id=row.id, product_id=row.product_id)
                db.session.add(entry)
            elif entry.status == OUTBOX_STATUS_DELIVERED:
                continue
            entry.previous_quantity = row.system_stock
            entry.corrected_quantity = row.physical_count
            entry.notes = row.notes
            enqueued += 1
        return enqueued

    @staticmethod
    def _abandon_unapplied(audit_id: int, product_ids) -> None:
        if not product_ids:
            return
        db.session.query(CorrectionOutboxEntry).filter(
            CorrectionOutboxEntry.audit_id == audit_id,
            CorrectionOutboxEntry.status == OUTBOX_STATUS_PENDING,
            CorrectionOutboxEntry.product_id.in_(list(product_ids)),
        ).update(
            {"status": OUTBOX_STATUS_ABANDONED, "last_error": "Product quantity was not updated"},
            synchronize_session=False,
        )

    def _reload_draft(self, audit_id: int) -> AuditDraft:
        db.session.flush()
        audit = (
            db.session.query(StockAudit)
            .options(selectinload(StockAudit.items).joinedload(StockAuditItem.product))
            .filter_by(id=audit_id)
            .first()
        )
        return assemble_draft(audit, self.threshold)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def insert_audit(self, record: StockAuditRecord) -> StockAuditRecord:
        def _op():
            audit = self._insert(record)
            return StockAuditRecord.from_model(audit)

        return self._call("insert_audit", _op)

    def update_audit(self, audit_id: int, fields: dict, expected_version: int | None = None) -> StockAuditRecord:
        def _op():
            audit = self._load_audit(audit_id, lock=True)
            self._check_version(audit, expected_version)
            self._apply_fields(audit, fields)
            db.session.flush()
            return StockAuditRecord.from_model(audit)

        return self._call("update_audit", _op)

    def upsert_audit_items(
        self,
        audit_id: int,
        items: list[StockAuditItemRecord],
        actor_id: int,
        audited_at: datetime | None = None,
    ) -> None:
        def _op():
            audit = self._load_audit(audit_id, lock=True)
            if audit.status not in AUDIT_OPEN_STATUSES:
                raise AuditLocked(f"Stock audit {audit_id} is {audit.status} and can no longer be changed")
            self._upsert_items(audit, items, actor_id, audited_at or utcnow(), remove_missing=False)

        self._call("upsert_audit_items", _op)

    def persist_draft(
        self,
        draft: AuditDraft,
        actor_id: int,
        *,
        audited_at: datetime | None = None,
        enqueue_corrections: bool = False,
    ) -> AuditDraft:
        """
        Write the audit header and all items in one unit of work.

        Inserts the header when the draft has no id yet, otherwise updates it
        against draft.audit.version_id. Items are upserted by
        (audit_id, product_id); items dropped from the draft are deleted.
        Either everything is stored or nothing is.
        """
        stamp = audited_at or utcnow()
        header = draft.audit

        def _op():
            if header.id is None:
                audit = self._insert(header)
            else:
                audit = self._load_audit(header.id, tenant_id=header.tenant_id, branch_id=header.branch_id, lock=True)
                self._check_version(audit, header.version_id)
                self._apply_fields(audit, {
                    "audit_date": header.audit_date,
                    "notes": header.notes,
                    "status": header.status,
                    "total_items_audited": header.total_items_audited,
                    "total_variance": header.total_variance,
                    "estimated_value_impact_cents": header.estimated_value_impact_cents,
                })
                # Item-only edits must still move version_id
                audit.updated_at = stamp
            self._upsert_items(audit, draft.items, actor_id, stamp)
            if enqueue_corrections:
                self._enqueue_corrections(audit)
            return self._reload_draft(audit.id)

        return self._call("persist_draft", _op)

    def enqueue_corrections(
        self,
        audit_id: int,
        items: list[StockAuditItemRecord] | None = None,
        actor_id: int | None = None,
        audited_at: datetime | None = None,
    ) -> int:
        """
        Queue outbox entries for an open audit; returns how many are pending.

        When items are given they replace the stored items first (with fresh
        totals on the header), in the same unit of work and without a
        version check, so the entries match the counts about to be applied
        to inventory.
        """
        def _op():
            audit = self._load_audit(audit_id, lock=True)
            if audit.status not in AUDIT_OPEN_STATUSES:
                raise AuditLocked(f"Stock audit {audit_id} is {audit.status} and can no longer be changed")
            if items is not None:
                self._upsert_items(audit, items, actor_id, audited_at or utcnow())
                totals = aggregate(items)
                audit.total_items_audited = totals.total_items_audited
                audit.total_variance = totals.total_variance
                audit.estimated_value_impact_cents = totals.estimated_value_impact_cents
            return self._enqueue_corrections(audit)

        return self._call("enqueue_corrections", _op)

    def query_audits(
        self,
        tenant_id: int,
        branch_id: int,
        *,
        statuses: tuple | list | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        sort_by: str = "created_at",
        descending: bool = True,
        limit: int = 50,
    ) -> list[StockAuditRecord]:
        if sort_by not in AUDIT_SORT_FIELDS:
            raise ValidationFailed(f"Cannot sort audits by {sort_by!r}")

        def _op():
            query = db.session.query(StockAudit).filter_by(tenant_id=tenant_id, branch_id=branch_id)
            if statuses:
                query = query.filter(StockAudit.status.in_(list(statuses)))
            if date_from is not None:
                query = query.filter(StockAudit.audit_date >= date_from)
            if date_to is not None:
                query = query.filter(StockAudit.audit_date <= date_to)
            column = getattr(StockAudit, sort_by)
            if descending:
                query = query.order_by(column.desc(), StockAudit.id.desc())
            else:
                query = query.order_by(column.asc(), StockAudit.id.asc())
            return [StockAuditRecord.from_model(a) for a in query.limit(limit).all()]

        return self._call("query_audits", _op, write=False)

    def get_audit(self, audit_id: int) -> StockAuditRecord:
        """Header only, unscoped. Used by background jobs that already hold an audit id."""
        def _op():
            return StockAuditRecord.from_model(self._load_audit(audit_id))

        return self._call("get_audit", _op, write=False)

    def query_audit_with_items(self, tenant_id: int, branch_id: int, audit_id: int) -> AuditDraft:
        def _op():
            audit = (
                db.session.query(StockAudit)
                .options(selectinload(StockAudit.items).joinedload(StockAuditItem.product))
                .filter_by(id=audit_id, tenant_id=tenant_id, branch_id=branch_id)
                .first()
            )
            if audit is None:
                raise AuditNotFound(f"Stock audit {audit_id} not found")
            return assemble_draft(audit, self.threshold)

        return self._call("query_audit_with_items", _op, write=False)

    def mark_completed(
        self,
        audit_id: int,
        actor_id: int,
        completed_at: datetime,
        *,
        auto_corrections: bool = True,
        unapplied_product_ids=(),
    ) -> StockAuditRecord:
        """
        Transition an open audit to completed.

        With auto_corrections, one StockCorrection per non-zero-variance item
        is written in the same unit of work and matching outbox entries are
        marked delivered. Already-completed audits are returned unchanged.
        """
        def _op():
            audit = self._load_audit(audit_id, lock=True)
            if audit.status == AUDIT_STATUS_COMPLETED:
                return StockAuditRecord.from_model(audit)
            if audit.status not in AUDIT_OPEN_STATUSES:
                raise AuditLocked(f"Stock audit {audit_id} is {audit.status} and cannot be completed")

            audit.status = AUDIT_STATUS_COMPLETED
            audit.completed_by = actor_id
            audit.completed_at = completed_at
            self._abandon_unapplied(audit.id, unapplied_product_ids)

            if auto_corrections:
                for row in audit.items:
                    if row.physical_count is None or row.physical_count == row.system_stock:
                        continue
                    if row.product_id in unapplied_product_ids:
                        continue
                    db.session.add(StockCorrection(
                        tenant_id=audit.tenant_id,
                        branch_id=audit.branch_id,
                        audit_id=audit.id,
                        audit_item_id=row.id,
                        product_id=row.product_id,
                        previous_quantity=row.system_stock,
                        corrected_quantity=row.physical_count,
                        variance=row.physical_count - row.system_stock,
                        correction_reason=CORRECTION_REASON_AUDIT,
                        notes=row.notes or "",
                        corrected_by=actor_id,
                        corrected_at=completed_at,
                    ))
                db.session.query(CorrectionOutboxEntry).filter_by(
                    audit_id=audit.id, status=OUTBOX_STATUS_PENDING
                ).update(
                    {"status": OUTBOX_STATUS_DELIVERED, "delivered_at": completed_at},
                    synchronize_session=False,
                )

            db.session.flush()
            return StockAuditRecord.from_model(audit)

        try:
            return self._call("mark_completed", _op)
        except StoreUnavailable as exc:
            if auto_corrections and isinstance(exc.__cause__, IntegrityError):
                raise TriggerConstraintViolation(
                    f"Automatic stock corrections for audit {audit_id} violated a constraint"
                ) from exc.__cause__
            raise

    def force_completed(
        self,
        audit_id: int,
        actor_id: int,
        completed_at: datetime,
        *,
        unapplied_product_ids=(),
    ) -> None:
        """
        Set status=completed with a plain UPDATE, skipping version and
        validation checks. A cancelled audit stays cancelled: the write is
        refused with AuditLocked.
        """
        def _op():
            result = db.session.execute(
                update(StockAudit)
                .where(StockAudit.id == audit_id, StockAudit.status != AUDIT_STATUS_CANCELLED)
                .values(
                    status=AUDIT_STATUS_COMPLETED,
                    completed_by=actor_id,
                    completed_at=completed_at,
                    version_id=StockAudit.version_id + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self._load_audit(audit_id)
                raise AuditLocked(f"Stock audit {audit_id} was cancelled and cannot be completed")
            self._abandon_unapplied(audit_id, unapplied_product_ids)

        self._call("force_completed", _op)

    def mark_cancelled(
        self,
        audit_id: int,
        actor_id: int,
        reason: str,
        cancelled_at: datetime,
        expected_version: int | None = None,
    ) -> StockAuditRecord:
        def _op():
            audit = self._load_audit(audit_id, lock=True)
            if audit.status not in AUDIT_OPEN_STATUSES:
                raise AuditLocked(
                    f"Cannot cancel stock audit in {audit.status} status. "
                    f"Audits can only be cancelled before completion."
                )
            self._check_version(audit, expected_version)
            audit.status = AUDIT_STATUS_CANCELLED
            audit.cancelled_by = actor_id
            audit.cancelled_at = cancelled_at
            audit.cancellation_reason = reason
            db.session.query(CorrectionOutboxEntry).filter_by(
                audit_id=audit.id, status=OUTBOX_STATUS_PENDING
            ).delete(synchronize_session=False)
            db.session.flush()
            return StockAuditRecord.from_model(audit)

        return self._call("mark_cancelled", _op)

    def delete_audit(self, tenant_id: int, branch_id: int, audit_id: int) -> None:
        """Delete an audit and its items. Completed audits are kept for their corrections."""
        def _op():
            audit = self._load_audit(audit_id, tenant_id=tenant_id, branch_id=branch_id, lock=True)
            if audit.status == AUDIT_STATUS_COMPLETED:
                raise ValidationFailed("Completed audits cannot be deleted")
            db.session.query(CorrectionOutboxEntry).filter_by(audit_id=audit.id).delete(synchronize_session=False)
            db.session.delete(audit)

        self._call("delete_audit", _op)
