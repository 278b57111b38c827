# backend/rxstock/services/reconciliation_service.py
"""
Stock audit reconciliation engine.

WHY: A physical count is only useful once the counted quantities replace
the system quantities. Completion therefore favours "Product.quantity is
right" over "the audit trail is complete": inventory updates are applied
first and are never rolled back, and the audit is always left in a
terminal state.

LIFECYCLE:
1. DRAFT: items added and counted in memory, persisted by save_draft
2. COMPLETING: transient, inside complete_audit only
3. COMPLETED: counts applied to inventory, terminal
4. CANCELLED: abandoned before completion, terminal

COMPLETION STEPS (complete_audit):
1. Persist items (+ aggregates) and enqueue correction outbox entries
2. Set Product.quantity = physical_count for every counted item
3. Mark the audit completed with automatic corrections
4. On TriggerConstraintViolation: write corrections manually, retry step 3
   without the automatic path
5. On anything else (or a failed retry): force status=completed, re-apply
   unconfirmed quantities, report degraded success

Every correction is also promised by an outbox entry written in step 1, so
drain_correction_outbox can create whatever the fallback paths missed. When
step 1 itself fails the entries are queued from the in-memory items in a
separate unit of work before forcing. A product whose quantity update never
goes through gets no correction: its entry is abandoned, and the drain
checks Product.quantity before writing one.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from flask import current_app

from rxstock.models.audits import (
    AUDIT_OPEN_STATUSES,
    AUDIT_STATUS_CANCELLED,
    AUDIT_STATUS_COMPLETED,
    AUDIT_STATUS_DRAFT,
)
from rxstock.time_utils import utcnow
from rxstock.validation import parse_count, parse_required_count, parse_text
from .audit_aggregator import AuditTotals, aggregate
from .audit_errors import (
    AuditError,
    AuditLocked,
    AuditNotFound,
    ConcurrencyConflict,
    StoreUnavailable,
    TriggerConstraintViolation,
    Unrecoverable,
    ValidationFailed,
)
from .audit_records import AuditDraft, StockAuditItemRecord, StockAuditRecord, StockCorrectionRecord
from .audit_repository import SqlAuditRepository
from .correction_ledger import SqlCorrectionLedger
from .inventory_store import SqlInventoryStore
from .variance import DEFAULT_CRITICAL_THRESHOLD, ITEM_STATUS_CRITICAL


# Completion outcomes
COMPLETION_OK = "completed"
COMPLETION_RECOVERED = "completed_with_manual_corrections"
COMPLETION_DEGRADED = "completed_degraded"

DEGRADED_MESSAGE = "Stock was updated; the audit record may be incomplete."

EDITABLE_ITEM_FIELDS = ("physical_count", "notes", "system_stock")


@dataclass
class CompletionResult:
    outcome: str
    draft: AuditDraft
    message: str
    applied_product_ids: list[int] = field(default_factory=list)
    failed_product_ids: list[int] = field(default_factory=list)
    corrections_created: int | None = None
    corrections_pending: int | None = None
    record_confirmed: bool = True
    failure: str | None = None

    @property
    def degraded(self) -> bool:
        return self.outcome == COMPLETION_DEGRADED

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "degraded": self.degraded,
            "message": self.message,
            "audit": self.draft.to_dict(),
            "applied_product_ids": self.applied_product_ids,
            "failed_product_ids": self.failed_product_ids,
            "corrections_created": self.corrections_created,
            "corrections_pending": self.corrections_pending,
            "record_confirmed": self.record_confirmed,
            "failure": self.failure,
        }


@dataclass
class _Completion:
    """Mutable state threaded through the completion steps."""
    draft: AuditDraft
    actor_id: int
    completed_at: object
    persisted: AuditDraft | None = None
    applied: dict = field(default_factory=dict)   # product_id -> quantity confirmed
    failed: dict = field(default_factory=dict)    # product_id -> error text
    inventory_failure: str | None = None
    # False once neither the item save nor the outbox snapshot was stored
    trail_secured: bool = True

    @property
    def audit_id(self) -> int:
        return self.draft.audit.id

    @property
    def items(self) -> list[StockAuditItemRecord]:
        source = self.persisted or self.draft
        return source.items

    def targets(self) -> dict:
        """product_id -> physical count for every counted item."""
        return {item.product_id: item.physical_count for item in self.draft.counted_items()}


class ReconciliationEngine:
    """
    Orchestrates stock audits over three independently failing stores.

    The engine never reads ambient request state: tenant, branch and actor
    ids are passed into every operation.
    """

    def __init__(
        self,
        inventory=None,
        audits=None,
        ledger=None,
        *,
        critical_threshold: int = DEFAULT_CRITICAL_THRESHOLD,
    ):
        self.critical_threshold = critical_threshold
        self.inventory = inventory or SqlInventoryStore()
        self.audits = audits or SqlAuditRepository(threshold=critical_threshold)
        self.ledger = ledger or SqlCorrectionLedger()

        # Explicit fallback per completion failure variant
        self._completion_fallbacks = {
            TriggerConstraintViolation: self._recover_with_manual_corrections,
            StoreUnavailable: self._force_completion,
            Unrecoverable: self._force_completion,
        }

    # ------------------------------------------------------------------
    # Loading and starting audits
    # ------------------------------------------------------------------

    def load_current_audit(self, tenant_id: int, branch_id: int) -> AuditDraft | None:
        """Most recent non-cancelled audit for the branch, with items, or None."""
        recent = self.audits.query_audits(
            tenant_id,
            branch_id,
            statuses=AUDIT_OPEN_STATUSES + (AUDIT_STATUS_COMPLETED,),
            sort_by="created_at",
            descending=True,
            limit=1,
        )
        if not recent:
            return None
        return self.audits.query_audit_with_items(tenant_id, branch_id, recent[0].id)

    def load_audit(self, tenant_id: int, branch_id: int, audit_id: int) -> AuditDraft:
        return self.audits.query_audit_with_items(tenant_id, branch_id, audit_id)

    def start_new_audit(
        self,
        tenant_id: int,
        branch_id: int,
        actor_id: int,
        *,
        audit_date: date | None = None,
        notes: str | None = None,
    ) -> AuditDraft:
        """
        Fresh, unsaved draft. Previous audits are left untouched; any
        unsaved edits on another draft object are simply abandoned.
        """
        return AuditDraft(
            audit=StockAuditRecord(
                tenant_id=tenant_id,
                branch_id=branch_id,
                audit_date=audit_date or utcnow().date(),
                created_by=actor_id,
                status=AUDIT_STATUS_DRAFT,
                notes=notes,
            )
        )

    def list_audits(self, tenant_id: int, branch_id: int, **filters) -> list[StockAuditRecord]:
        return self.audits.query_audits(tenant_id, branch_id, **filters)

    def list_corrections(self, tenant_id: int, branch_id: int, audit_id: int) -> list[StockCorrectionRecord]:
        # Raises AuditNotFound for audits outside the branch
        draft = self.audits.query_audit_with_items(tenant_id, branch_id, audit_id)
        return self.ledger.query_corrections_by_audit(draft.audit.id)

    # ------------------------------------------------------------------
    # In-memory editing
    # ------------------------------------------------------------------

    def require_editable(self, draft: AuditDraft) -> None:
        if draft.is_terminal:
            raise AuditLocked(
                f"Stock audit {draft.audit.id} is {draft.audit.status}; its items can no longer be edited"
            )

    def recalculate(self, draft: AuditDraft) -> AuditTotals:
        """Re-derive every item's variance/status and write fresh totals onto the header."""
        for item in draft.items:
            item.recalculate(self.critical_threshold)
        totals = aggregate(draft.items)
        draft.audit.total_items_audited = totals.total_items_audited
        draft.audit.total_variance = totals.total_variance
        draft.audit.estimated_value_impact_cents = totals.estimated_value_impact_cents
        return totals

    def add_item(
        self,
        draft: AuditDraft,
        product_id: int,
        *,
        physical_count=None,
        notes: str | None = None,
    ) -> StockAuditItemRecord:
        """Add a product, snapshotting its current quantity as system stock."""
        self.require_editable(draft)
        if draft.find_item(product_id) is not None:
            raise ValidationFailed(f"Product {product_id} is already on this audit")

        try:
            product = self.inventory.get_product(draft.audit.branch_id, product_id)
        except AuditNotFound as exc:
            raise ValidationFailed(str(exc)) from exc
        item = StockAuditItemRecord(
            product_id=product.id,
            system_stock=product.quantity,
            physical_count=parse_count(physical_count),
            notes=parse_text(notes, "notes"),
            price_cents=product.price_cents,
            product_name=product.name,
            audit_id=draft.audit.id,
        )
        draft.items.append(item)
        self.recalculate(draft)
        return item

    def auto_fill_from_inventory(self, draft: AuditDraft, *, prefill_counts: bool = False) -> int:
        """
        Add every active product of the branch that is not on the audit yet.

        With prefill_counts the physical count starts equal to system stock,
        so the auditor only has to touch the lines that differ.
        Returns the number of items added.
        """
        self.require_editable(draft)
        added = 0
        for product in self.inventory.list_active_products(draft.audit.branch_id):
            if draft.find_item(product.id) is not None:
                continue
            draft.items.append(StockAuditItemRecord(
                product_id=product.id,
                system_stock=product.quantity,
                physical_count=product.quantity if prefill_counts else None,
                price_cents=product.price_cents,
                product_name=product.name,
                audit_id=draft.audit.id,
            ))
            added += 1
        self.recalculate(draft)
        return added

    def edit_item(self, draft: AuditDraft, product_id: int, field_name: str, value) -> StockAuditItemRecord:
        self.require_editable(draft)
        if field_name not in EDITABLE_ITEM_FIELDS:
            raise ValidationFailed(f"Field not editable: {field_name}")
        item = draft.find_item(product_id)
        if item is None:
            raise ValidationFailed(f"Product {product_id} is not on this audit")

        if field_name == "physical_count":
            item.physical_count = parse_count(value)
        elif field_name == "system_stock":
            item.system_stock = parse_required_count(value, "system_stock")
        else:
            item.notes = parse_text(value, "notes")

        self.recalculate(draft)
        return item

    def remove_item(self, draft: AuditDraft, product_id: int) -> None:
        self.require_editable(draft)
        item = draft.find_item(product_id)
        if item is None:
            raise ValidationFailed(f"Product {product_id} is not on this audit")
        draft.items.remove(item)
        self.recalculate(draft)

    def audit_summary(self, draft: AuditDraft) -> dict:
        totals = self.recalculate(draft)
        counted = draft.counted_items()
        return {
            **totals.to_dict(),
            "total_items": len(draft.items),
            "pending_items": len(draft.items) - len(counted),
            "variance_items": len(draft.items_with_variance()),
            "critical_items": sum(1 for item in counted if item.status == ITEM_STATUS_CRITICAL),
        }

    # ------------------------------------------------------------------
    # Draft persistence
    # ------------------------------------------------------------------

    def save_draft(self, draft: AuditDraft, actor_id: int) -> AuditDraft:
        """
        Persist the draft (insert on first save, update afterwards).

        Idempotent: saving an unchanged draft again stores the same totals and
        items. Store failures propagate as StoreUnavailable with nothing
        written; there is no fallback.
        """
        self.require_editable(draft)
        if draft.audit.audit_date is None:
            raise ValidationFailed("Audit date is required")
        if actor_id is None:
            raise ValidationFailed("An acting user is required")

        self.recalculate(draft)
        try:
            saved = self.audits.persist_draft(draft, actor_id)
        except StoreUnavailable:
            current_app.logger.exception("Failed to save stock audit draft %s", draft.audit.id)
            raise

        current_app.logger.info(
            "Saved stock audit draft %s (%s items, %s counted, version %s)",
            saved.audit.id,
            len(saved.items),
            saved.audit.total_items_audited,
            saved.audit.version_id,
        )
        return saved

    def cancel_audit(self, draft: AuditDraft, actor_id: int, reason: str) -> AuditDraft:
        self.require_editable(draft)
        reason = parse_text(reason, "reason")
        if not reason:
            raise ValidationFailed("Cancellation reason is required")
        if not draft.is_saved:
            draft.audit.status = AUDIT_STATUS_CANCELLED
            return draft

        record = self.audits.mark_cancelled(
            draft.audit.id, actor_id, reason, utcnow(), expected_version=draft.audit.version_id
        )
        current_app.logger.info("Cancelled stock audit %s: %s", record.id, reason)
        return AuditDraft(audit=record, items=draft.items)

    def delete_audit(self, tenant_id: int, branch_id: int, audit_id: int) -> None:
        self.audits.delete_audit(tenant_id, branch_id, audit_id)
        current_app.logger.info("Deleted stock audit %s", audit_id)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def complete_audit(self, draft: AuditDraft, actor_id: int) -> CompletionResult:
        """
        Apply physical counts to inventory and close the audit.

        Raises only for caller errors detected before anything is written
        (ValidationFailed, AuditLocked, ConcurrencyConflict). Every store
        failure after that is absorbed into a COMPLETION_DEGRADED result.
        """
        if not draft.is_saved:
            raise ValidationFailed("No audit to complete. Please save a draft first.")
        self.require_editable(draft)
        if actor_id is None:
            raise ValidationFailed("An acting user is required")
        if not draft.counted_items():
            raise ValidationFailed("Enter at least one physical count and save a draft before completing")

        self.recalculate(draft)
        run = _Completion(draft=draft, actor_id=actor_id, completed_at=utcnow())
        current_app.logger.info(
            "Completing stock audit %s (%s counted items) by user %s",
            run.audit_id, len(draft.counted_items()), actor_id,
        )

        try:
            self._persist_items(run)
        except (ConcurrencyConflict, AuditLocked):
            # Nothing has been written yet; the caller must reload
            raise
        except Exception as exc:
            self._queue_corrections_snapshot(run, exc)
            return self._handle_completion_failure(run, exc)

        try:
            self._apply_quantities(run)
            self._transition(run, auto_corrections=True)
        except Exception as exc:
            return self._handle_completion_failure(run, exc)
        return self._success(run, COMPLETION_OK)

    def _handle_completion_failure(self, run: _Completion, exc: Exception) -> CompletionResult:
        failure = exc if isinstance(exc, AuditError) else Unrecoverable(str(exc))
        if failure is not exc:
            current_app.logger.exception("Unexpected error while completing stock audit %s", run.audit_id)
        for variant, fallback in self._completion_fallbacks.items():
            if isinstance(failure, variant):
                return fallback(run, failure)
        return self._force_completion(run, failure)

    # Step 1
    def _persist_items(self, run: _Completion) -> None:
        run.persisted = self.audits.persist_draft(
            run.draft, run.actor_id, audited_at=run.completed_at, enqueue_corrections=True
        )

    def _queue_corrections_snapshot(self, run: _Completion, exc: Exception) -> None:
        """Store the in-memory items and their outbox entries after step 1 failed."""
        current_app.logger.error(
            "Saving items of stock audit %s failed (%s); queueing corrections separately", run.audit_id, exc
        )
        try:
            queued = self.audits.enqueue_corrections(
                run.audit_id, run.draft.items, run.actor_id, run.completed_at
            )
        except AuditError as queue_exc:
            run.trail_secured = False
            current_app.logger.error(
                "Could not queue corrections for stock audit %s: %s", run.audit_id, queue_exc
            )
            return
        current_app.logger.info("Queued %s stock corrections for audit %s", queued, run.audit_id)

    # Step 2
    def _apply_quantities(self, run: _Completion, *, passes: int = 2) -> None:
        """
        Set Product.quantity to the physical count for each counted item.

        Individual failures do not stop the loop. Products still failing
        after all passes are left in run.failed; they get no correction.
        """
        branch_id = run.draft.audit.branch_id
        for _ in range(passes):
            pending = {
                product_id: quantity
                for product_id, quantity in run.targets().items()
                if run.applied.get(product_id) != quantity
            }
            if not pending:
                break
            for product_id, quantity in pending.items():
                try:
                    self.inventory.update_product_quantity(branch_id, product_id, quantity)
                except AuditError as exc:
                    run.failed[product_id] = str(exc)
                    run.inventory_failure = exc.__class__.__name__
                    current_app.logger.error(
                        "Failed to update product %s quantity to %s: %s", product_id, quantity, exc
                    )
                    continue
                run.applied[product_id] = quantity
                run.failed.pop(product_id, None)
                current_app.logger.info("Updated product %s quantity to %s", product_id, quantity)

    # Step 3
    def _transition(self, run: _Completion, *, auto_corrections: bool) -> None:
        self.audits.mark_completed(
            run.audit_id,
            run.actor_id,
            run.completed_at,
            auto_corrections=auto_corrections,
            unapplied_product_ids=sorted(run.failed),
        )

    # Step 4
    def _recover_with_manual_corrections(self, run: _Completion, exc: TriggerConstraintViolation) -> CompletionResult:
        current_app.logger.warning(
            "Automatic corrections failed for stock audit %s (%s); writing corrections manually",
            run.audit_id, exc,
        )
        try:
            created = self._write_manual_corrections(run)
            current_app.logger.info("Created %s manual stock corrections for audit %s", created, run.audit_id)
            self._transition(run, auto_corrections=False)
        except Exception as retry_exc:
            current_app.logger.error(
                "Completing stock audit %s after manual corrections failed: %s", run.audit_id, retry_exc
            )
            failure = retry_exc if isinstance(retry_exc, AuditError) else Unrecoverable(str(retry_exc))
            return self._force_completion(run, failure)
        return self._success(run, COMPLETION_RECOVERED)

    def _write_manual_corrections(self, run: _Completion) -> int:
        audit = (run.persisted or run.draft).audit
        created = 0
        for item in run.items:
            if not item.is_counted or item.physical_count == item.system_stock or item.id is None:
                continue
            if item.product_id in run.failed:
                continue
            record = StockCorrectionRecord.for_item(audit, item, corrected_by=run.actor_id)
            record.corrected_at = run.completed_at
            try:
                self.ledger.insert_correction(record)
            except AuditError as exc:
                # Outbox entry stays pending and is retried by the drain
                current_app.logger.error(
                    "Failed to create stock correction for product %s on audit %s: %s",
                    item.product_id, run.audit_id, exc,
                )
                continue
            created += 1
        return created

    # Step 5
    def _force_completion(self, run: _Completion, exc: AuditError) -> CompletionResult:
        current_app.logger.error(
            "Stock audit %s could not be completed normally (%s: %s); forcing completion",
            run.audit_id, exc.__class__.__name__, exc,
        )

        self._apply_quantities(run, passes=1)

        record_confirmed = run.trail_secured
        try:
            self.audits.force_completed(
                run.audit_id, run.actor_id, run.completed_at, unapplied_product_ids=sorted(run.failed)
            )
            current_app.logger.warning("Stock audit %s completion forced", run.audit_id)
        except AuditError as force_exc:
            record_confirmed = False
            current_app.logger.error("Error forcing completion of stock audit %s: %s", run.audit_id, force_exc)

        # Completed locally even when the forced write was not confirmed
        local = (run.persisted or run.draft).copy()
        local.audit.status = AUDIT_STATUS_COMPLETED
        local.audit.completed_by = run.actor_id
        local.audit.completed_at = run.completed_at

        return CompletionResult(
            outcome=COMPLETION_DEGRADED,
            draft=local,
            message=self._degraded_message(run),
            applied_product_ids=sorted(run.applied),
            failed_product_ids=sorted(run.failed),
            corrections_created=self._safe_correction_count(run),
            corrections_pending=self._safe_pending_count(run),
            record_confirmed=record_confirmed,
            failure=exc.__class__.__name__,
        )

    def _success(self, run: _Completion, outcome: str) -> CompletionResult:
        audit = run.draft.audit
        try:
            final = self.audits.query_audit_with_items(audit.tenant_id, audit.branch_id, run.audit_id)
        except AuditError as exc:
            current_app.logger.warning("Could not reload completed stock audit %s: %s", run.audit_id, exc)
            final = (run.persisted or run.draft).copy()
            final.audit.status = AUDIT_STATUS_COMPLETED
            final.audit.completed_by = run.actor_id
            final.audit.completed_at = run.completed_at

        if run.failed:
            current_app.logger.warning(
                "Stock audit %s completed without updating products %s", run.audit_id, sorted(run.failed)
            )
            return CompletionResult(
                outcome=COMPLETION_DEGRADED,
                draft=final,
                message=self._degraded_message(run),
                applied_product_ids=sorted(run.applied),
                failed_product_ids=sorted(run.failed),
                corrections_created=self._safe_correction_count(run),
                corrections_pending=self._safe_pending_count(run),
                failure=run.inventory_failure,
            )

        if outcome == COMPLETION_OK:
            message = "Stock audit completed."
        else:
            message = "Stock audit completed; stock corrections were recorded manually."
        current_app.logger.info("Stock audit %s %s", run.audit_id, outcome)

        return CompletionResult(
            outcome=outcome,
            draft=final,
            message=message,
            applied_product_ids=sorted(run.applied),
            corrections_created=self._safe_correction_count(run),
            corrections_pending=self._safe_pending_count(run),
        )

    @staticmethod
    def _degraded_message(run: _Completion) -> str:
        if not run.failed:
            return DEGRADED_MESSAGE
        return (
            f"{DEGRADED_MESSAGE} Stock could not be updated for products "
            f"{', '.join(str(pid) for pid in sorted(run.failed))}."
        )

    def _safe_correction_count(self, run: _Completion) -> int | None:
        try:
            return len(self.ledger.query_corrections_by_audit(run.audit_id))
        except AuditError:
            return None

    def _safe_pending_count(self, run: _Completion) -> int | None:
        if not run.trail_secured:
            return None
        try:
            return self.ledger.count_pending_outbox(run.audit_id)
        except AuditError:
            return None

    # ------------------------------------------------------------------
    # Outbox
    # ------------------------------------------------------------------

    def drain_correction_outbox(self, *, limit: int = 100) -> dict:
        """
        Create the StockCorrection promised by each pending outbox entry of a
        completed audit. Safe to run repeatedly.

        An entry is only delivered while Product.quantity still equals its
        corrected quantity. Otherwise the stock change cannot be confirmed
        and the entry is abandoned rather than recorded as history.
        """
        counts = {"delivered": 0, "failed": 0, "abandoned": 0}
        audits: dict[int, StockAuditRecord] = {}
        corrected_items: dict[int, set] = {}
        for entry in self.ledger.pending_outbox(limit=limit):
            try:
                if entry.audit_id not in audits:
                    header = self._audit_header(entry.audit_id)
                    corrected_items[entry.audit_id] = {
                        c.audit_item_id for c in self.ledger.query_corrections_by_audit(entry.audit_id)
                    }
                    audits[entry.audit_id] = header
                outcome = self._drain_entry(entry, audits[entry.audit_id], corrected_items[entry.audit_id])
            except AuditError as exc:
                counts["failed"] += 1
                current_app.logger.error("Outbox entry %s failed: %s", entry.id, exc)
                try:
                    self.ledger.record_failure(entry.id, str(exc))
                except AuditError:
                    current_app.logger.exception("Could not record failure for outbox entry %s", entry.id)
                continue
            counts[outcome] += 1

        if any(counts.values()):
            current_app.logger.info(
                "Correction outbox drained: %(delivered)s delivered, %(failed)s failed, %(abandoned)s abandoned",
                counts,
            )
        return counts

    def _drain_entry(self, entry, audit: StockAuditRecord, corrected_items: set) -> str:
        if entry.audit_item_id in corrected_items:
            self.ledger.mark_delivered(entry.audit_item_id)
            return "delivered"

        product = self.inventory.get_product(audit.branch_id, entry.product_id)
        if product.quantity != entry.corrected_quantity:
            reason = (
                f"Product {entry.product_id} quantity is {product.quantity}, "
                f"not the counted {entry.corrected_quantity}"
            )
            current_app.logger.warning("Abandoning outbox entry %s: %s", entry.id, reason)
            self.ledger.abandon(entry.id, reason)
            return "abandoned"

        self.ledger.insert_correction(StockCorrectionRecord(
            tenant_id=audit.tenant_id,
            branch_id=audit.branch_id,
            audit_id=entry.audit_id,
            audit_item_id=entry.audit_item_id,
            product_id=entry.product_id,
            previous_quantity=entry.previous_quantity,
            corrected_quantity=entry.corrected_quantity,
            variance=entry.corrected_quantity - entry.previous_quantity,
            notes=entry.notes or "",
            corrected_by=audit.completed_by or audit.created_by,
            corrected_at=audit.completed_at,
        ))
        return "delivered"

    def _audit_header(self, audit_id: int) -> StockAuditRecord:
        return self.audits.get_audit(audit_id)


def build_engine(app=None) -> ReconciliationEngine:
    """Engine wired to the SQL stores with limits from app config."""
    config = (app or current_app).config
    timeout = config.get("AUDIT_STORE_TIMEOUT_SECONDS")
    attempts = config.get("AUDIT_STORE_RETRY_ATTEMPTS")
    threshold = config.get("AUDIT_CRITICAL_VARIANCE_THRESHOLD", DEFAULT_CRITICAL_THRESHOLD)
    return ReconciliationEngine(
        inventory=SqlInventoryStore(timeout=timeout, attempts=attempts),
        audits=SqlAuditRepository(
            threshold=threshold,
            single_open_per_branch=config.get("AUDIT_SINGLE_OPEN_PER_BRANCH", True),
            timeout=timeout,
            attempts=attempts,
        ),
        ledger=SqlCorrectionLedger(timeout=timeout, attempts=attempts),
        critical_threshold=threshold,
    )
