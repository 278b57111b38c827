# Overview: Failure variants raised by the stock audit services.

"""
Stock audit error taxonomy.

- ValidationFailed: user-correctable input or state problem, nothing attempted
- AuditLocked: edit attempted on a completed/cancelled audit
- AuditNotFound: audit or product missing in the caller's branch
- ConcurrencyConflict: stale draft version, or a second open audit
- StoreUnavailable / StoreTimeout: a store call failed or ran too long
- TriggerConstraintViolation: the completion write with automatic
  corrections violated a constraint on stock_corrections
- Unrecoverable: anything else during completion
"""
from __future__ import annotations


class AuditError(Exception):
    """Base class for stock audit failures."""


class ValidationFailed(AuditError):
    pass


class AuditLocked(ValidationFailed):
    pass


class AuditNotFound(AuditError):
    pass


class ConcurrencyConflict(AuditError):
    pass


class StoreUnavailable(AuditError):
    """Raised when a call to one of the backing stores fails."""

    def __init__(self, operation: str, detail: str | None = None):
        self.operation = operation
        self.detail = detail
        message = f"{operation} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class StoreTimeout(StoreUnavailable):
    def __init__(self, operation: str, timeout: float):
        self.timeout = timeout
        super().__init__(operation, f"exceeded {timeout:g}s")


class TriggerConstraintViolation(AuditError):
    pass


class Unrecoverable(AuditError):
    pass
