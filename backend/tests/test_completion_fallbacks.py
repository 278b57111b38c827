# Overview: Pytest coverage for completion failure handling and the correction outbox.

"""
Completion Fallback Tests

Each test swaps one store for a subclass that fails in a specific way and
checks the invariant that matters most: counted quantities reach inventory
and the audit ends up terminal, whatever happened to the audit trail.
"""

import time

import pytest

from rxstock.extensions import db
from rxstock.models import CorrectionOutboxEntry, Product, StockAudit, StockCorrection
from rxstock.services.audit_errors import (
    StoreTimeout,
    StoreUnavailable,
    TriggerConstraintViolation,
)
from rxstock.services.audit_repository import SqlAuditRepository
from rxstock.services.concurrency import run_store_call
from rxstock.services.correction_ledger import SqlCorrectionLedger
from rxstock.services.inventory_store import SqlInventoryStore
from rxstock.services.reconciliation_service import (
    COMPLETION_DEGRADED,
    COMPLETION_OK,
    COMPLETION_RECOVERED,
    DEGRADED_MESSAGE,
    ReconciliationEngine,
)


class CompletionDownRepository(SqlAuditRepository):
    """mark_completed always fails as if the database dropped the connection."""

    def mark_completed(self, *args, **kwargs):
        raise StoreUnavailable("mark_completed", "connection reset")


class AuditStoreDownRepository(CompletionDownRepository):
    """Neither the normal nor the forced status change gets through."""

    def force_completed(self, *args, **kwargs):
        raise StoreUnavailable("force_completed", "connection reset")


class TriggerFailsRepository(SqlAuditRepository):
    """The automatic-correction path always violates a constraint."""

    def mark_completed(self, audit_id, actor_id, completed_at, *, auto_corrections=True, **kwargs):
        if auto_corrections:
            raise TriggerConstraintViolation("corrected_by violates not-null constraint")
        return super().mark_completed(audit_id, actor_id, completed_at, auto_corrections=False, **kwargs)


class BrokenRepository(SqlAuditRepository):
    def mark_completed(self, *args, **kwargs):
        raise RuntimeError("driver bug")


class DownLedger(SqlCorrectionLedger):
    def insert_correction(self, record):
        raise StoreUnavailable("insert_correction", "ledger offline")


class FlakyInventory(SqlInventoryStore):
    """Fails the first `failures` updates of the given product."""

    def __init__(self, product_id, failures=1, **kwargs):
        super().__init__(**kwargs)
        self.product_id = product_id
        self.remaining = failures

    def update_product_quantity(self, branch_id, product_id, quantity):
        if product_id == self.product_id and self.remaining > 0:
            self.remaining -= 1
            raise StoreTimeout("update_product_quantity", 5.0)
        return super().update_product_quantity(branch_id, product_id, quantity)


class FailingSaveRepository(SqlAuditRepository):
    def persist_draft(self, *args, **kwargs):
        raise StoreUnavailable("persist_draft", "disk full")


class CompletionSaveFailsRepository(SqlAuditRepository):
    """Draft saves work; the completion-time item save does not."""

    def persist_draft(self, draft, actor_id, *, enqueue_corrections=False, **kwargs):
        if enqueue_corrections:
            raise StoreUnavailable("persist_draft", "connection reset")
        return super().persist_draft(draft, actor_id, enqueue_corrections=False, **kwargs)


class NothingQueuedRepository(CompletionSaveFailsRepository):
    """The separate outbox write after a failed completion save fails too."""

    def enqueue_corrections(self, *args, **kwargs):
        raise StoreUnavailable("enqueue_corrections", "connection reset")


class CancelledMidwayRepository(CompletionDownRepository):
    """Someone cancels the audit while its completion is in flight."""

    def mark_completed(self, audit_id, actor_id, completed_at, **kwargs):
        audit = db.session.get(StockAudit, audit_id)
        audit.status = "cancelled"
        db.session.commit()
        return super().mark_completed(audit_id, actor_id, completed_at, **kwargs)


def _engine(inventory=None, audits=None, ledger=None):
    return ReconciliationEngine(
        inventory=inventory or SqlInventoryStore(),
        audits=audits or SqlAuditRepository(),
        ledger=ledger or SqlCorrectionLedger(),
    )


@pytest.fixture
def saved_draft(engine, tenant_a, branch_a, user_a, product_a, product_b):
    """Saved draft: A 50->45, B 20->26."""
    draft = engine.start_new_audit(tenant_a.id, branch_a.id, user_a.id)
    engine.add_item(draft, product_a.id, physical_count=45)
    engine.add_item(draft, product_b.id, physical_count=26)
    return engine.save_draft(draft, user_a.id)


def _quantities(*products):
    return [db.session.get(Product, p.id).quantity for p in products]


class TestTriggerFallback:

    def test_existing_correction_triggers_manual_path(
        self, engine, saved_draft, user_a, product_a, product_b
    ):
        """A correction already on file makes the automatic insert violate the unique constraint."""
        item_a = saved_draft.find_item(product_a.id)
        db.session.add(StockCorrection(
            tenant_id=saved_draft.audit.tenant_id,
            branch_id=saved_draft.audit.branch_id,
            audit_id=saved_draft.audit.id,
            audit_item_id=item_a.id,
            product_id=product_a.id,
            previous_quantity=50,
            corrected_quantity=45,
            variance=-5,
            corrected_by=user_a.id,
        ))
        db.session.commit()

        result = engine.complete_audit(saved_draft, user_a.id)

        assert result.outcome == COMPLETION_RECOVERED
        assert result.draft.audit.status == "completed"
        assert _quantities(product_a, product_b) == [45, 26]
        assert db.session.query(StockCorrection).count() == 2
        assert result.corrections_pending == 0

    def test_manual_corrections_written_when_trigger_fails(
        self, saved_draft, user_a, product_a, product_b
    ):
        engine = _engine(audits=TriggerFailsRepository())

        result = engine.complete_audit(saved_draft, user_a.id)

        assert result.outcome == COMPLETION_RECOVERED
        corrections = db.session.query(StockCorrection).order_by(StockCorrection.product_id).all()
        assert [(c.previous_quantity, c.corrected_quantity) for c in corrections] == [(50, 45), (20, 26)]
        assert all(c.corrected_by == user_a.id for c in corrections)
        assert db.session.get(StockAudit, saved_draft.audit.id).status == "completed"

    def test_inventory_updated_even_when_ledger_fails(self, saved_draft, user_a, product_a, product_b):
        engine = _engine(audits=TriggerFailsRepository(), ledger=DownLedger())

        result = engine.complete_audit(saved_draft, user_a.id)

        assert _quantities(product_a, product_b) == [45, 26]
        assert result.draft.audit.status == "completed"
        assert db.session.query(StockCorrection).count() == 0
        assert result.corrections_pending == 2


class TestForcedCompletion:

    def test_status_write_failure_degrades(self, saved_draft, user_a, product_a, product_b):
        engine = _engine(audits=CompletionDownRepository())

        result = engine.complete_audit(saved_draft, user_a.id)

        assert result.outcome == COMPLETION_DEGRADED
        assert result.degraded
        assert result.message == DEGRADED_MESSAGE
        assert result.failure == "StoreUnavailable"
        assert result.record_confirmed
        assert _quantities(product_a, product_b) == [45, 26]
        assert db.session.get(StockAudit, saved_draft.audit.id).status == "completed"
        assert result.corrections_pending == 2

    def test_completed_locally_when_forced_write_fails(self, saved_draft, user_a, product_a, product_b):
        engine = _engine(audits=AuditStoreDownRepository())

        result = engine.complete_audit(saved_draft, user_a.id)

        assert result.outcome == COMPLETION_DEGRADED
        assert not result.record_confirmed
        assert result.draft.audit.status == "completed"
        assert result.draft.audit.completed_by == user_a.id
        assert _quantities(product_a, product_b) == [45, 26]
        assert db.session.get(StockAudit, saved_draft.audit.id).status == "draft"

    def test_unexpected_error_is_unrecoverable(self, saved_draft, user_a, product_a):
        engine = _engine(audits=BrokenRepository())

        result = engine.complete_audit(saved_draft, user_a.id)

        assert result.outcome == COMPLETION_DEGRADED
        assert result.failure == "Unrecoverable"
        assert db.session.get(Product, product_a.id).quantity == 45

    def test_single_inventory_failure_is_retried(self, saved_draft, user_a, product_a, product_b):
        engine = _engine(inventory=FlakyInventory(product_b.id, failures=1))

        result = engine.complete_audit(saved_draft, user_a.id)

        assert result.outcome == COMPLETION_OK
        assert _quantities(product_a, product_b) == [45, 26]

    def test_persistent_inventory_timeout_degrades(self, saved_draft, user_a, product_a, product_b):
        engine = _engine(inventory=FlakyInventory(product_b.id, failures=10))

        result = engine.complete_audit(saved_draft, user_a.id)

        assert result.outcome == COMPLETION_DEGRADED
        assert result.failure == "StoreTimeout"
        assert result.failed_product_ids == [product_b.id]
        assert str(product_b.id) in result.message
        assert _quantities(product_a, product_b) == [45, 20]
        assert db.session.get(StockAudit, saved_draft.audit.id).status == "completed"

    def test_unapplied_product_gets_no_correction(self, engine, saved_draft, user_a, product_a, product_b):
        failing = _engine(inventory=FlakyInventory(product_b.id, failures=10))

        result = failing.complete_audit(saved_draft, user_a.id)

        # The status change still takes the automatic path for the products that were updated
        corrections = db.session.query(StockCorrection).all()
        assert [(c.product_id, c.previous_quantity, c.corrected_quantity) for c in corrections] == \
            [(product_a.id, 50, 45)]
        assert result.corrections_created == 1
        assert result.corrections_pending == 0
        entry_b = db.session.query(CorrectionOutboxEntry).filter_by(product_id=product_b.id).one()
        assert entry_b.status == "abandoned"
        assert "not updated" in entry_b.last_error

        assert engine.drain_correction_outbox() == {"delivered": 0, "failed": 0, "abandoned": 0}
        assert db.session.query(StockCorrection).filter_by(product_id=product_b.id).count() == 0
        assert db.session.get(Product, product_b.id).quantity == 20

    def test_completion_save_failure_queues_in_memory_counts(
        self, engine, saved_draft, user_a, product_a, product_b
    ):
        engine.edit_item(saved_draft, product_a.id, "physical_count", 40)
        failing = _engine(audits=CompletionSaveFailsRepository())

        result = failing.complete_audit(saved_draft, user_a.id)

        assert result.outcome == COMPLETION_DEGRADED
        assert result.record_confirmed
        assert result.corrections_pending == 2
        assert _quantities(product_a, product_b) == [40, 26]
        stored = engine.load_audit(saved_draft.audit.tenant_id, saved_draft.audit.branch_id, saved_draft.audit.id)
        assert stored.audit.status == "completed"
        assert stored.find_item(product_a.id).physical_count == 40

        assert engine.drain_correction_outbox() == {"delivered": 2, "failed": 0, "abandoned": 0}
        corrections = db.session.query(StockCorrection).order_by(StockCorrection.product_id).all()
        assert [(c.previous_quantity, c.corrected_quantity) for c in corrections] == [(50, 40), (20, 26)]

    def test_unqueued_corrections_are_not_reported_complete(self, saved_draft, user_a, product_a, product_b):
        engine = _engine(audits=NothingQueuedRepository())

        result = engine.complete_audit(saved_draft, user_a.id)

        assert result.outcome == COMPLETION_DEGRADED
        assert result.corrections_pending is None
        assert not result.record_confirmed
        assert _quantities(product_a, product_b) == [45, 26]

    def test_cancelled_audit_is_not_forced_to_completed(self, saved_draft, user_a):
        engine = _engine(audits=CancelledMidwayRepository())

        result = engine.complete_audit(saved_draft, user_a.id)

        assert result.outcome == COMPLETION_DEGRADED
        assert not result.record_confirmed
        assert db.session.get(StockAudit, saved_draft.audit.id).status == "cancelled"


class TestStoreCalls:

    def test_save_failure_propagates(self, tenant_a, branch_a, user_a, product_a):
        engine = _engine(audits=FailingSaveRepository())
        draft = engine.start_new_audit(tenant_a.id, branch_a.id, user_a.id)
        engine.add_item(draft, product_a.id, physical_count=45)

        with pytest.raises(StoreUnavailable):
            engine.save_draft(draft, user_a.id)
        assert db.session.query(StockAudit).count() == 0

    def test_slow_call_times_out_without_commit(self, db_session, product_a):
        def _slow_write():
            db.session.get(Product, product_a.id).quantity = 1
            time.sleep(0.05)

        with pytest.raises(StoreTimeout):
            run_store_call("slow_write", _slow_write, timeout=0.01, attempts=1)
        assert db.session.get(Product, product_a.id).quantity == 50


class TestCorrectionOutbox:

    def test_drain_creates_missing_corrections(self, engine, saved_draft, user_a, product_a):
        degraded = _engine(audits=CompletionDownRepository())
        degraded.complete_audit(saved_draft, user_a.id)
        assert db.session.query(StockCorrection).count() == 0

        assert engine.drain_correction_outbox() == {"delivered": 2, "failed": 0, "abandoned": 0}

        corrections = db.session.query(StockCorrection).order_by(StockCorrection.product_id).all()
        assert [(c.previous_quantity, c.corrected_quantity, c.variance) for c in corrections] == \
            [(50, 45, -5), (20, 26, 6)]
        assert all(c.corrected_by == user_a.id for c in corrections)
        assert engine.drain_correction_outbox() == {"delivered": 0, "failed": 0, "abandoned": 0}

    def test_drain_abandons_entry_when_stock_does_not_match(self, engine, saved_draft, user_a, product_b):
        _engine(audits=CompletionDownRepository()).complete_audit(saved_draft, user_a.id)
        db.session.get(Product, product_b.id).quantity = 20
        db.session.commit()

        assert engine.drain_correction_outbox() == {"delivered": 1, "failed": 0, "abandoned": 1}

        assert db.session.query(StockCorrection).filter_by(product_id=product_b.id).count() == 0
        entry_b = db.session.query(CorrectionOutboxEntry).filter_by(product_id=product_b.id).one()
        assert entry_b.status == "abandoned"
        assert "quantity is 20" in entry_b.last_error

    def test_drain_marks_already_corrected_items_delivered(self, engine, saved_draft, user_a, product_a):
        _engine(audits=CompletionDownRepository()).complete_audit(saved_draft, user_a.id)
        item_a = saved_draft.find_item(product_a.id)
        db.session.add(StockCorrection(
            tenant_id=saved_draft.audit.tenant_id,
            branch_id=saved_draft.audit.branch_id,
            audit_id=saved_draft.audit.id,
            audit_item_id=item_a.id,
            product_id=product_a.id,
            previous_quantity=50,
            corrected_quantity=45,
            variance=-5,
            corrected_by=user_a.id,
        ))
        db.session.commit()

        assert engine.drain_correction_outbox() == {"delivered": 2, "failed": 0, "abandoned": 0}
        assert db.session.query(StockCorrection).count() == 2
        assert db.session.query(CorrectionOutboxEntry).filter_by(status="pending").count() == 0

    def test_drain_ignores_open_audits(self, engine, saved_draft):
        engine.audits.enqueue_corrections(saved_draft.audit.id)

        assert db.session.query(CorrectionOutboxEntry).count() == 2
        assert engine.drain_correction_outbox() == {"delivered": 0, "failed": 0, "abandoned": 0}

    def test_drain_failure_is_recorded(self, saved_draft, user_a):
        _engine(audits=CompletionDownRepository()).complete_audit(saved_draft, user_a.id)

        result = _engine(ledger=DownLedger()).drain_correction_outbox()

        assert result == {"delivered": 0, "failed": 2, "abandoned": 0}
        entries = db.session.query(CorrectionOutboxEntry).all()
        assert all(e.status == "pending" and e.attempts == 1 for e in entries)
        assert all("ledger offline" in e.last_error for e in entries)

    def test_primary_path_leaves_nothing_pending(self, engine, saved_draft, user_a):
        engine.complete_audit(saved_draft, user_a.id)

        assert db.session.query(CorrectionOutboxEntry).filter_by(status="pending").count() == 0
        assert engine.drain_correction_outbox() == {"delivered": 0, "failed": 0, "abandoned": 0}
