# backend/rxstock/routes/stock_audits.py
"""
Stock audit API routes.

Each request loads the audit, applies its edits to an in-memory draft and
saves it through the reconciliation engine. Clients send the version_id
they last saw; a stale version is answered with 409.
"""
from flask import Blueprint, current_app, g, jsonify, request

from rxstock.decorators import require_context
from rxstock.extensions import db
from rxstock.services.audit_errors import (
    AuditError,
    AuditNotFound,
    ConcurrencyConflict,
    StoreUnavailable,
    ValidationFailed,
)
from rxstock.services.reconciliation_service import build_engine
from rxstock.validation import (
    PayloadPolicy,
    parse_date_field,
    parse_id,
    parse_text,
    validate_payload,
)


stock_audits_bp = Blueprint("stock_audits", __name__, url_prefix="/api/stock-audits")


CREATE_POLICY = PayloadPolicy(
    writable_fields={"audit_date", "notes", "items", "auto_fill", "prefill_counts"},
    required=set(),
)
SAVE_POLICY = PayloadPolicy(
    writable_fields={"version_id", "audit_date", "notes", "items", "remove_product_ids"},
    required=set(),
)
ITEM_POLICY = PayloadPolicy(
    writable_fields={"product_id", "physical_count", "notes", "system_stock"},
    required={"product_id"},
)
ITEM_EDIT_POLICY = PayloadPolicy(
    writable_fields={"version_id", "physical_count", "notes", "system_stock"},
    required=set(),
)
CANCEL_POLICY = PayloadPolicy(writable_fields={"version_id", "reason"}, required={"reason"})
VERSION_POLICY = PayloadPolicy(writable_fields={"version_id", "prefill_counts"}, required=set())


def _audit_error_response(e: AuditError):
    if isinstance(e, ValidationFailed):
        return jsonify({"error": str(e)}), 400
    if isinstance(e, AuditNotFound):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, ConcurrencyConflict):
        return jsonify({"error": str(e)}), 409
    if isinstance(e, StoreUnavailable):
        current_app.logger.error("Stock audit store unavailable: %s", e)
        return jsonify({"error": "Storage temporarily unavailable, please retry", "message": str(e)}), 503
    current_app.logger.error("Stock audit error: %s", e)
    return jsonify({"error": str(e)}), 500


def _unexpected_error_response(action: str):
    db.session.rollback()
    current_app.logger.exception("Unexpected error while %s", action)
    return jsonify({"error": "Unexpected error"}), 500


def _json_body(policy: PayloadPolicy) -> dict:
    return validate_payload(request.get_json(silent=True), policy)


def _load_draft(engine, audit_id: int, data: dict):
    draft = engine.load_audit(g.tenant_id, g.branch_id, audit_id)
    if data.get("version_id") is not None:
        draft.audit.version_id = parse_id(data["version_id"], "version_id")
    return draft


def _apply_item(engine, draft, item_data: dict) -> None:
    item_data = validate_payload(item_data, ITEM_POLICY)
    product_id = parse_id(item_data["product_id"], "product_id")
    if draft.find_item(product_id) is None:
        engine.add_item(
            draft,
            product_id,
            physical_count=item_data.get("physical_count"),
            notes=item_data.get("notes"),
        )
        if "system_stock" in item_data:
            engine.edit_item(draft, product_id, "system_stock", item_data["system_stock"])
        return
    for field_name in ("physical_count", "notes", "system_stock"):
        if field_name in item_data:
            engine.edit_item(draft, product_id, field_name, item_data[field_name])


def _apply_items(engine, draft, items) -> None:
    if items is None:
        return
    if not isinstance(items, list):
        raise ValidationFailed("items must be a list")
    for item_data in items:
        _apply_item(engine, draft, item_data)


def _draft_payload(engine, draft) -> dict:
    payload = draft.to_dict()
    payload["summary"] = engine.audit_summary(draft)
    return payload


def _draft_response(engine, draft, status: int = 200):
    return jsonify(_draft_payload(engine, draft)), status


@stock_audits_bp.route("", methods=["GET"])
@require_context
def list_audits():
    """
    List audits for the branch.

    Query params:
        status: comma separated statuses (optional)
        date_from, date_to: ISO dates (optional, inclusive)
        sort_by: audit_date | created_at (default created_at)
        order: asc | desc (default desc)
        limit: default 50
    """
    try:
        statuses = [s.strip() for s in request.args.get("status", "").split(",") if s.strip()]
        date_from = request.args.get("date_from")
        date_to = request.args.get("date_to")
        order = request.args.get("order", "desc").lower()
        if order not in ("asc", "desc"):
            raise ValidationFailed("order must be asc or desc")

        audits = build_engine().list_audits(
            g.tenant_id,
            g.branch_id,
            statuses=statuses or None,
            date_from=parse_date_field(date_from, "date_from") if date_from else None,
            date_to=parse_date_field(date_to, "date_to") if date_to else None,
            sort_by=request.args.get("sort_by", "created_at"),
            descending=order == "desc",
            limit=parse_id(request.args.get("limit", 50), "limit"),
        )
        return jsonify({"audits": [a.to_dict() for a in audits]}), 200

    except AuditError as e:
        return _audit_error_response(e)
    except Exception:
        return _unexpected_error_response("listing stock audits")


@stock_audits_bp.route("/current", methods=["GET"])
@require_context
def current_audit():
    """Most recent non-cancelled audit of the branch, or {"audit": null}."""
    try:
        engine = build_engine()
        draft = engine.load_current_audit(g.tenant_id, g.branch_id)
        if draft is None:
            return jsonify({"audit": None}), 200
        return jsonify({"audit": _draft_payload(engine, draft)}), 200

    except AuditError as e:
        return _audit_error_response(e)
    except Exception:
        return _unexpected_error_response("loading the current stock audit")


@stock_audits_bp.route("", methods=["POST"])
@require_context
def create_audit():
    """
    Start and save a new audit draft.

    Request body (all optional):
    {
        "audit_date": "YYYY-MM-DD",   // defaults to today
        "notes": str,
        "auto_fill": bool,            // add every active product
        "prefill_counts": bool,       // with auto_fill, start counts at system stock
        "items": [{"product_id": int, "physical_count": int, "notes": str}]
    }

    Returns:
        201: Draft saved
        400: Invalid request
        409: Branch already has an open audit
    """
    try:
        data = _json_body(CREATE_POLICY)
        engine = build_engine()
        audit_date = data.get("audit_date")
        draft = engine.start_new_audit(
            g.tenant_id,
            g.branch_id,
            g.actor_id,
            audit_date=parse_date_field(audit_date) if audit_date else None,
            notes=parse_text(data.get("notes"), "notes"),
        )
        _apply_items(engine, draft, data.get("items"))
        if data.get("auto_fill"):
            engine.auto_fill_from_inventory(draft, prefill_counts=bool(data.get("prefill_counts")))

        saved = engine.save_draft(draft, g.actor_id)
        return _draft_response(engine, saved, 201)

    except AuditError as e:
        return _audit_error_response(e)
    except Exception:
        return _unexpected_error_response("creating a stock audit")


@stock_audits_bp.route("/<int:audit_id>", methods=["GET"])
@require_context
def get_audit(audit_id: int):
    try:
        engine = build_engine()
        return _draft_response(engine, engine.load_audit(g.tenant_id, g.branch_id, audit_id))

    except AuditError as e:
        return _audit_error_response(e)
    except Exception:
        return _unexpected_error_response(f"loading stock audit {audit_id}")


@stock_audits_bp.route("/<int:audit_id>", methods=["PUT"])
@require_context
def save_audit(audit_id: int):
    """
    Save draft edits.

    Request body:
    {
        "version_id": int,            // version the client last loaded
        "audit_date": "YYYY-MM-DD",
        "notes": str,
        "items": [{"product_id": int, "physical_count": int|null, "notes": str, "system_stock": int}],
        "remove_product_ids": [int]
    }

    Items not yet on the audit are added with a fresh stock snapshot.

    Returns:
        200: Draft saved
        400: Invalid request or audit already completed/cancelled
        404: Audit not found
        409: Audit changed since version_id
        503: Storage unavailable, nothing saved
    """
    try:
        data = _json_body(SAVE_POLICY)
        engine = build_engine()
        draft = _load_draft(engine, audit_id, data)
        engine.require_editable(draft)

        if "audit_date" in data:
            draft.audit.audit_date = parse_date_field(data["audit_date"])
        if "notes" in data:
            draft.audit.notes = parse_text(data["notes"], "notes")
        for product_id in data.get("remove_product_ids") or []:
            engine.remove_item(draft, parse_id(product_id, "remove_product_ids"))
        _apply_items(engine, draft, data.get("items"))

        saved = engine.save_draft(draft, g.actor_id)
        return _draft_response(engine, saved)

    except AuditError as e:
        return _audit_error_response(e)
    except Exception:
        return _unexpected_error_response(f"saving stock audit {audit_id}")


@stock_audits_bp.route("/<int:audit_id>", methods=["DELETE"])
@require_context
def delete_audit(audit_id: int):
    try:
        build_engine().delete_audit(g.tenant_id, g.branch_id, audit_id)
        return jsonify({"deleted": True, "id": audit_id}), 200

    except AuditError as e:
        return _audit_error_response(e)
    except Exception:
        return _unexpected_error_response(f"deleting stock audit {audit_id}")


@stock_audits_bp.route("/<int:audit_id>/items", methods=["POST"])
@require_context
def add_item(audit_id: int):
    """
    Add one product to the audit and save.

    Request body:
    {
        "product_id": int,
        "physical_count": int (optional),
        "notes": str (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        version_id = data.pop("version_id", None) if isinstance(data, dict) else None
        data = validate_payload(data, ITEM_POLICY)
        engine = build_engine()
        draft = _load_draft(engine, audit_id, {"version_id": version_id})

        product_id = parse_id(data["product_id"], "product_id")
        engine.add_item(draft, product_id, physical_count=data.get("physical_count"), notes=data.get("notes"))
        if "system_stock" in data:
            engine.edit_item(draft, product_id, "system_stock", data["system_stock"])

        saved = engine.save_draft(draft, g.actor_id)
        return _draft_response(engine, saved, 201)

    except AuditError as e:
        return _audit_error_response(e)
    except Exception:
        return _unexpected_error_response(f"adding an item to stock audit {audit_id}")


@stock_audits_bp.route("/<int:audit_id>/items/<int:product_id>", methods=["PATCH"])
@require_context
def edit_item(audit_id: int, product_id: int):
    try:
        data = _json_body(ITEM_EDIT_POLICY)
        engine = build_engine()
        draft = _load_draft(engine, audit_id, data)
        for field_name in ("physical_count", "notes", "system_stock"):
            if field_name in data:
                engine.edit_item(draft, product_id, field_name, data[field_name])

        saved = engine.save_draft(draft, g.actor_id)
        return _draft_response(engine, saved)

    except AuditError as e:
        return _audit_error_response(e)
    except Exception:
        return _unexpected_error_response(f"editing product {product_id} on stock audit {audit_id}")


@stock_audits_bp.route("/<int:audit_id>/items/<int:product_id>", methods=["DELETE"])
@require_context
def remove_item(audit_id: int, product_id: int):
    try:
        engine = build_engine()
        draft = _load_draft(engine, audit_id, request.args)
        engine.remove_item(draft, product_id)

        saved = engine.save_draft(draft, g.actor_id)
        return _draft_response(engine, saved)

    except AuditError as e:
        return _audit_error_response(e)
    except Exception:
        return _unexpected_error_response(f"removing product {product_id} from stock audit {audit_id}")


@stock_audits_bp.route("/<int:audit_id>/auto-fill", methods=["POST"])
@require_context
def auto_fill(audit_id: int):
    """Add every active branch product not on the audit yet, then save."""
    try:
        data = _json_body(VERSION_POLICY)
        engine = build_engine()
        draft = _load_draft(engine, audit_id, data)
        added = engine.auto_fill_from_inventory(draft, prefill_counts=bool(data.get("prefill_counts")))

        saved = engine.save_draft(draft, g.actor_id)
        payload = _draft_payload(engine, saved)
        payload["added"] = added
        return jsonify(payload), 200

    except AuditError as e:
        return _audit_error_response(e)
    except Exception:
        return _unexpected_error_response(f"auto-filling stock audit {audit_id}")


@stock_audits_bp.route("/<int:audit_id>/complete", methods=["POST"])
@require_context
def complete_audit(audit_id: int):
    """
    Apply physical counts to inventory and complete the audit.

    Returns:
        200: Completed; "outcome" is completed, completed_with_manual_corrections
             or completed_degraded (stock updated, audit record may be incomplete)
        400: Nothing counted, or audit already completed/cancelled
        404: Audit not found
        409: Audit changed since version_id
    """
    try:
        data = _json_body(VERSION_POLICY)
        engine = build_engine()
        draft = _load_draft(engine, audit_id, data)
        result = engine.complete_audit(draft, g.actor_id)
        return jsonify(result.to_dict()), 200

    except AuditError as e:
        return _audit_error_response(e)
    except Exception:
        return _unexpected_error_response(f"completing stock audit {audit_id}")


@stock_audits_bp.route("/<int:audit_id>/cancel", methods=["POST"])
@require_context
def cancel_audit(audit_id: int):
    """
    Cancel an audit before completion.

    Request body:
    {
        "reason": str,
        "version_id": int (optional)
    }
    """
    try:
        data = _json_body(CANCEL_POLICY)
        engine = build_engine()
        draft = _load_draft(engine, audit_id, data)
        cancelled = engine.cancel_audit(draft, g.actor_id, data.get("reason"))
        return jsonify(cancelled.to_dict()), 200

    except AuditError as e:
        return _audit_error_response(e)
    except Exception:
        return _unexpected_error_response(f"cancelling stock audit {audit_id}")


@stock_audits_bp.route("/<int:audit_id>/corrections", methods=["GET"])
@require_context
def list_corrections(audit_id: int):
    try:
        corrections = build_engine().list_corrections(g.tenant_id, g.branch_id, audit_id)
        return jsonify({"corrections": [c.to_dict() for c in corrections]}), 200

    except AuditError as e:
        return _audit_error_response(e)
    except Exception:
        return _unexpected_error_response(f"listing corrections for stock audit {audit_id}")
