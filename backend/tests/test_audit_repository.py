# Overview: Pytest coverage for the SQL audit repository and correction ledger operations.

"""
Audit Repository Tests

The engine writes drafts through persist_draft; these tests call the
single-purpose repository and ledger operations directly.
"""

from datetime import date

import pytest

from rxstock.extensions import db
from rxstock.models import CorrectionOutboxEntry, StockAudit, StockAuditItem
from rxstock.services.audit_errors import AuditLocked, ConcurrencyConflict, ValidationFailed
from rxstock.services.audit_records import StockAuditItemRecord, StockAuditRecord
from rxstock.services.audit_repository import SqlAuditRepository
from rxstock.services.correction_ledger import SqlCorrectionLedger
from rxstock.time_utils import utcnow


@pytest.fixture
def repository(db_session):
    return SqlAuditRepository()


@pytest.fixture
def ledger(db_session):
    return SqlCorrectionLedger()


@pytest.fixture
def inserted(repository, tenant_a, branch_a, user_a):
    return repository.insert_audit(StockAuditRecord(
        tenant_id=tenant_a.id,
        branch_id=branch_a.id,
        audit_date=date(2026, 10, 17),
        created_by=user_a.id,
    ))


def _item(product, count):
    return StockAuditItemRecord(
        product_id=product.id,
        system_stock=product.quantity,
        physical_count=count,
        price_cents=product.price_cents,
    )


class TestAuditHeader:

    def test_insert_creates_draft(self, inserted):
        assert inserted.id is not None
        assert inserted.status == "draft"
        assert inserted.version_id == 1

    def test_insert_rejects_second_open_audit(self, repository, inserted, tenant_a, branch_a, user_a):
        with pytest.raises(ConcurrencyConflict):
            repository.insert_audit(StockAuditRecord(
                tenant_id=tenant_a.id,
                branch_id=branch_a.id,
                audit_date=date(2026, 10, 18),
                created_by=user_a.id,
            ))

    def test_update_checks_version(self, repository, inserted):
        updated = repository.update_audit(inserted.id, {"notes": "Front shelves"}, expected_version=1)
        assert updated.notes == "Front shelves"
        assert updated.version_id == 2

        with pytest.raises(ConcurrencyConflict):
            repository.update_audit(inserted.id, {"notes": "Stale"}, expected_version=1)
        assert db.session.get(StockAudit, inserted.id).notes == "Front shelves"

    def test_update_refuses_closing_fields(self, repository, inserted):
        with pytest.raises(ValidationFailed):
            repository.update_audit(inserted.id, {"status": "completed"})
        with pytest.raises(ValidationFailed):
            repository.update_audit(inserted.id, {"completed_by": 1})


class TestAuditItems:

    def test_upsert_keeps_items_not_passed(self, repository, inserted, user_a, product_a, product_b):
        repository.upsert_audit_items(inserted.id, [_item(product_a, 45)], user_a.id)
        repository.upsert_audit_items(inserted.id, [_item(product_b, 20)], user_a.id)
        repository.upsert_audit_items(inserted.id, [_item(product_a, 47)], user_a.id)

        rows = db.session.query(StockAuditItem).order_by(StockAuditItem.product_id).all()
        assert [(r.product_id, r.physical_count, r.variance) for r in rows] == \
            [(product_a.id, 47, -3), (product_b.id, 20, 0)]
        assert all(r.audited_by == user_a.id for r in rows)

    def test_upsert_refused_on_cancelled_audit(self, repository, inserted, user_a, product_a):
        repository.mark_cancelled(inserted.id, user_a.id, "Wrong branch", utcnow())

        with pytest.raises(AuditLocked):
            repository.upsert_audit_items(inserted.id, [_item(product_a, 45)], user_a.id)


class TestForcedCompletion:

    def test_cancelled_audit_stays_cancelled(self, repository, inserted, user_a):
        repository.mark_cancelled(inserted.id, user_a.id, "Wrong branch", utcnow())

        with pytest.raises(AuditLocked):
            repository.force_completed(inserted.id, user_a.id, utcnow())
        assert db.session.get(StockAudit, inserted.id).status == "cancelled"

    def test_unapplied_products_are_abandoned(self, repository, inserted, user_a, product_a, product_b):
        repository.upsert_audit_items(inserted.id, [_item(product_a, 45), _item(product_b, 26)], user_a.id)
        repository.enqueue_corrections(inserted.id)

        repository.force_completed(inserted.id, user_a.id, utcnow(), unapplied_product_ids=[product_b.id])

        statuses = {
            e.product_id: e.status for e in db.session.query(CorrectionOutboxEntry).all()
        }
        assert statuses == {product_a.id: "pending", product_b.id: "abandoned"}
        assert db.session.get(StockAudit, inserted.id).status == "completed"


class TestCorrectionLedger:

    def test_mark_delivered_and_abandon(self, repository, ledger, inserted, user_a, product_a, product_b):
        repository.upsert_audit_items(inserted.id, [_item(product_a, 45), _item(product_b, 26)], user_a.id)
        assert repository.enqueue_corrections(inserted.id) == 2
        item_a = db.session.query(StockAuditItem).filter_by(product_id=product_a.id).one()
        entry_b = db.session.query(CorrectionOutboxEntry).filter_by(product_id=product_b.id).one()

        ledger.mark_delivered(item_a.id)
        ledger.abandon(entry_b.id, "Product quantity was not updated")

        assert ledger.count_pending_outbox(inserted.id) == 0
        entries = {e.product_id: e for e in db.session.query(CorrectionOutboxEntry).all()}
        assert entries[product_a.id].status == "delivered"
        assert entries[product_a.id].delivered_at is not None
        assert entries[product_b.id].status == "abandoned"
        assert entries[product_b.id].last_error == "Product quantity was not updated"
