# backend/rxstock/routes/system.py
"""
System health and version endpoints.
"""

import sys
import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import CorrectionOutboxEntry, StockAudit
from ..models.audits import AUDIT_OPEN_STATUSES, AUDIT_STATUS_COMPLETED, OUTBOX_STATUS_PENDING
from rxstock.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and report audit backlog.

    A backlog of pending correction outbox entries means completed audits
    are still missing StockCorrection rows; that is reported as degraded.
    """
    start_time = time.time()
    try:
        open_audits = db.session.query(StockAudit).filter(StockAudit.status.in_(AUDIT_OPEN_STATUSES)).count()
        pending_corrections = (
            db.session.query(CorrectionOutboxEntry)
            .join(StockAudit, StockAudit.id == CorrectionOutboxEntry.audit_id)
            .filter(CorrectionOutboxEntry.status == OUTBOX_STATUS_PENDING, StockAudit.status == AUDIT_STATUS_COMPLETED)
            .count()
        )
        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "degraded" if pending_corrections else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "open_audits": open_audits,
                "pending_corrections": pending_corrections,
            }
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unreachable
    """
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    return {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {"database": database_health},
    }, http_status


@system_bp.get("/version")
def version():
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
