# Overview: Correction ledger adapter; append-only stock corrections and their outbox.

from __future__ import annotations

from ..extensions import db
from ..models import CorrectionOutboxEntry, StockAudit, StockCorrection
from ..models.audits import (
    AUDIT_STATUS_COMPLETED,
    OUTBOX_STATUS_ABANDONED,
    OUTBOX_STATUS_DELIVERED,
    OUTBOX_STATUS_PENDING,
)
from rxstock.time_utils import utcnow
from .audit_errors import ValidationFailed
from .audit_records import OutboxEntryRecord, StockCorrectionRecord
from .concurrency import run_store_call


class SqlCorrectionLedger:
    """
    Append-only ledger of StockCorrection rows.

    Rows are inserted, never updated or deleted. insert_correction is keyed
    by audit_item_id: asking twice for the same item returns the row that
    already exists, which lets fallback and outbox paths retry freely.
    """

    def __init__(self, *, timeout: float | None = None, attempts: int | None = None):
        self.timeout = timeout
        self.attempts = attempts

    def _call(self, operation: str, func, *, write: bool = True):
        return run_store_call(operation, func, write=write, timeout=self.timeout, attempts=self.attempts)

    @staticmethod
    def _mark_outbox_delivered(audit_item_id: int) -> None:
        db.session.query(CorrectionOutboxEntry).filter_by(
            audit_item_id=audit_item_id, status=OUTBOX_STATUS_PENDING
        ).update(
            {"status": OUTBOX_STATUS_DELIVERED, "delivered_at": utcnow()},
            synchronize_session=False,
        )

    def insert_correction(self, record: StockCorrectionRecord) -> StockCorrectionRecord:
        if record.corrected_by is None:
            raise ValidationFailed("corrected_by is required on a stock correction")
        if record.variance == 0:
            raise ValidationFailed("A stock correction needs a non-zero variance")

        def _op():
            existing = db.session.query(StockCorrection).filter_by(audit_item_id=record.audit_item_id).first()
            if existing is not None:
                self._mark_outbox_delivered(record.audit_item_id)
                return StockCorrectionRecord.from_model(existing)

            correction = StockCorrection(
                tenant_id=record.tenant_id,
                branch_id=record.branch_id,
                audit_id=record.audit_id,
                audit_item_id=record.audit_item_id,
                product_id=record.product_id,
                previous_quantity=record.previous_quantity,
                corrected_quantity=record.corrected_quantity,
                variance=record.variance,
                correction_reason=record.correction_reason,
                notes=record.notes,
                corrected_by=record.corrected_by,
                corrected_at=record.corrected_at or utcnow(),
            )
            db.session.add(correction)
            self._mark_outbox_delivered(record.audit_item_id)
            db.session.flush()
            return StockCorrectionRecord.from_model(correction)

        return self._call("insert_correction", _op)

    def mark_delivered(self, audit_item_id: int) -> None:
        def _op():
            self._mark_outbox_delivered(audit_item_id)

        self._call("mark_delivered", _op)

    def query_corrections_by_audit(self, audit_id: int) -> list[StockCorrectionRecord]:
        def _op():
            rows = (
                db.session.query(StockCorrection)
                .filter_by(audit_id=audit_id)
                .order_by(StockCorrection.id.asc())
                .all()
            )
            return [StockCorrectionRecord.from_model(row) for row in rows]

        return self._call("query_corrections_by_audit", _op, write=False)

    def count_pending_outbox(self, audit_id: int) -> int:
        def _op():
            return (
                db.session.query(CorrectionOutboxEntry)
                .filter_by(audit_id=audit_id, status=OUTBOX_STATUS_PENDING)
                .count()
            )

        return self._call("count_pending_outbox", _op, write=False)

    def pending_outbox(self, limit: int = 100) -> list[OutboxEntryRecord]:
        """Pending entries whose audit has reached completed."""
        def _op():
            rows = (
                db.session.query(CorrectionOutboxEntry)
                .join(StockAudit, StockAudit.id == CorrectionOutboxEntry.audit_id)
                .filter(
                    CorrectionOutboxEntry.status == OUTBOX_STATUS_PENDING,
                    StockAudit.status == AUDIT_STATUS_COMPLETED,
                )
                .order_by(CorrectionOutboxEntry.id.asc())
                .limit(limit)
                .all()
            )
            return [OutboxEntryRecord.from_model(row) for row in rows]

        return self._call("pending_outbox", _op, write=False)

    def record_failure(self, entry_id: int, error: str) -> None:
        def _op():
            entry = db.session.get(CorrectionOutboxEntry, entry_id)
            if entry is None:
                return
            entry.attempts = (entry.attempts or 0) + 1
            entry.last_error = error[:1000]

        self._call("record_failure", _op)

    def abandon(self, entry_id: int, reason: str) -> None:
        """Close a pending entry without writing its correction."""
        def _op():
            db.session.query(CorrectionOutboxEntry).filter_by(
                id=entry_id, status=OUTBOX_STATUS_PENDING
            ).update(
                {"status": OUTBOX_STATUS_ABANDONED, "last_error": reason[:1000]},
                synchronize_session=False,
            )

        self._call("abandon", _op)
