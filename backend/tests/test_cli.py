# Overview: Pytest coverage for Flask CLI commands.

from rxstock.extensions import db
from rxstock.models import Branch, StockCorrection, Tenant, User
from rxstock.services.audit_errors import StoreUnavailable
from rxstock.services.audit_repository import SqlAuditRepository
from rxstock.services.correction_ledger import SqlCorrectionLedger
from rxstock.services.inventory_store import SqlInventoryStore
from rxstock.services.reconciliation_service import ReconciliationEngine


class _CompletionDownRepository(SqlAuditRepository):
    def mark_completed(self, *args, **kwargs):
        raise StoreUnavailable("mark_completed", "connection reset")


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "init", "--tenant", "Corner Pharmacy"])
    second = runner.invoke(args=["system", "init", "--tenant", "Corner Pharmacy"])

    assert first.exit_code == 0
    assert "Created tenant" in first.output
    assert second.exit_code == 0
    assert "Using existing tenant" in second.output
    assert db.session.query(Tenant).count() == 1
    assert db.session.query(Branch).count() == 1
    assert db.session.query(User).count() == 1


def test_audits_list(app, engine, tenant_a, branch_a, user_a, product_a):
    draft = engine.start_new_audit(tenant_a.id, branch_a.id, user_a.id)
    engine.add_item(draft, product_a.id, physical_count=44)
    saved = engine.save_draft(draft, user_a.id)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["audits", "list", "--tenant-id", str(tenant_a.id), "--branch-id", str(branch_a.id)])

    assert result.exit_code == 0
    assert str(saved.audit.id) in result.output
    assert "draft" in result.output
    assert "-15.00" in result.output


def test_drain_outbox(app, engine, tenant_a, branch_a, user_a, product_a):
    draft = engine.start_new_audit(tenant_a.id, branch_a.id, user_a.id)
    engine.add_item(draft, product_a.id, physical_count=44)
    saved = engine.save_draft(draft, user_a.id)
    ReconciliationEngine(
        inventory=SqlInventoryStore(),
        audits=_CompletionDownRepository(),
        ledger=SqlCorrectionLedger(),
    ).complete_audit(saved, user_a.id)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["audits", "drain-outbox"])

    assert result.exit_code == 0
    assert "Delivered 1 corrections, 0 failed, 0 abandoned." in result.output
    assert db.session.query(StockCorrection).count() == 1
