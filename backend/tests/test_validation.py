# Overview: Pytest coverage for strict input parsing.

import pytest

from rxstock.services.audit_errors import ValidationFailed
from rxstock.validation import (
    MAX_COUNT,
    PayloadPolicy,
    parse_count,
    parse_date_field,
    parse_id,
    validate_payload,
)


class TestParseCount:

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_blank_means_not_counted(self, value):
        assert parse_count(value) is None

    @pytest.mark.parametrize("value,expected", [(0, 0), (45, 45), ("45", 45), (" 12 ", 12)])
    def test_accepts_plain_integers(self, value, expected):
        assert parse_count(value) == expected

    @pytest.mark.parametrize("value", [-1, "-3", 12.5, "12.5", "1e3", True, "abc", [1]])
    def test_rejects_everything_else(self, value):
        with pytest.raises(ValidationFailed):
            parse_count(value)

    def test_rejects_counts_above_max(self):
        with pytest.raises(ValidationFailed):
            parse_count(MAX_COUNT + 1)


class TestParseIdAndDate:

    def test_id_must_be_positive(self):
        assert parse_id("7", "product_id") == 7
        with pytest.raises(ValidationFailed):
            parse_id(0, "product_id")
        with pytest.raises(ValidationFailed):
            parse_id(None, "product_id")

    def test_date_field(self):
        assert parse_date_field("2026-10-17").isoformat() == "2026-10-17"
        assert parse_date_field("2026-10-17T23:30:00Z").isoformat() == "2026-10-17"
        with pytest.raises(ValidationFailed):
            parse_date_field("17/10/2026")


class TestValidatePayload:

    def test_unknown_field_rejected(self):
        policy = PayloadPolicy(writable_fields={"reason"}, required=set())
        with pytest.raises(ValidationFailed, match="Field not allowed: status"):
            validate_payload({"reason": "x", "status": "completed"}, policy)

    def test_missing_required_field(self):
        policy = PayloadPolicy(writable_fields={"reason"}, required={"reason"})
        with pytest.raises(ValidationFailed, match="Missing required fields: reason"):
            validate_payload({}, policy)

    def test_non_object_rejected(self):
        with pytest.raises(ValidationFailed):
            validate_payload([1, 2], PayloadPolicy(writable_fields=set()))
