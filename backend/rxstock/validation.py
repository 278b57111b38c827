from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from rxstock.services.audit_errors import ValidationFailed
from rxstock.time_utils import parse_audit_date


# Largest count a single audit line may carry
MAX_COUNT = 10_000_000


@dataclass(frozen=True)
class PayloadPolicy:
    """
    Central policy layer for JSON bodies:
    - writable_fields: what clients are allowed to send (security boundary)
    - required: fields that must be present
    """
    writable_fields: set[str]
    required: set[str] = None  # type: ignore


def _coerce_int(value: Any, field: str) -> int:
    # Integers - strict validation to reject floats and scientific notation
    if isinstance(value, bool):
        raise ValidationFailed(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationFailed(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationFailed(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationFailed(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationFailed(f"{field} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationFailed(f"{field} must be an integer, not a decimal")
    raise ValidationFailed(f"{field} must be an integer")


def parse_count(value: Any, field: str = "physical_count") -> int | None:
    """
    Parse a stock count.

    None and "" mean "not counted yet" and return None. Anything else must
    be a plain integer between 0 and MAX_COUNT.
    """
    if value is None:
        return None
    if isinstance(value, str) and value.strip() == "":
        return None
    count = _coerce_int(value, field)
    if count < 0:
        raise ValidationFailed(f"{field} cannot be negative")
    if count > MAX_COUNT:
        raise ValidationFailed(f"{field} cannot exceed {MAX_COUNT}")
    return count


def parse_required_count(value: Any, field: str) -> int:
    count = parse_count(value, field)
    if count is None:
        raise ValidationFailed(f"{field} is required")
    return count


def parse_id(value: Any, field: str) -> int:
    if value is None:
        raise ValidationFailed(f"{field} is required")
    parsed = _coerce_int(value, field)
    if parsed <= 0:
        raise ValidationFailed(f"{field} must be a positive integer")
    return parsed


def parse_text(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if max_length and len(text) > max_length:
        raise ValidationFailed(f"{field} exceeds max length {max_length}")
    return text


def parse_date_field(value: Any, field: str = "audit_date"):
    try:
        return parse_audit_date(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{field} must be an ISO-8601 date")


def validate_payload(payload: Any, policy: PayloadPolicy) -> dict:
    """
    Reject unknown fields and enforce required ones.
    Returns a shallow copy holding only allowed keys.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON payload")

    for key in payload:
        if key not in policy.writable_fields:
            raise ValidationFailed(f"Field not allowed: {key}")

    missing = [f for f in sorted(policy.required or set()) if f not in payload]
    if missing:
        raise ValidationFailed(f"Missing required fields: {', '.join(missing)}")

    return dict(payload)
