"""
Unit tests for quality flag serialization
"""

import pytest
from pydantic import ValidationError

from schemas.flags import (
    LowAccuracyFlag,
    OutlierFlag,
    OutsideZoneFlag,
    UnexpectedRangeFlag,
    dump_flags,
    parse_flags,
)


class TestQualityFlags:
    """Test suite for the tagged flag union"""

    def test_dump_is_json_ready(self):
        dumped = dump_flags([LowAccuracyFlag(accuracy_meters=75.0)])

        assert dumped[0]["type"] == "low_accuracy"
        assert dumped[0]["severity"] == "warning"
        assert dumped[0]["accuracy_meters"] == 75.0
        assert isinstance(dumped[0]["flagged_at"], str)

    def test_parse_dispatches_on_type(self):
        raw = [
            {"type": "outlier", "reason": "far out", "details": {"z_score": 5.1}},
            {"type": "unexpected_range", "reason": "too hot", "expected_min": 0, "expected_max": 40},
            {"type": "low_accuracy", "reason": "coarse fix"},
        ]
        flags = parse_flags(raw)

        assert isinstance(flags[0], OutlierFlag)
        assert flags[0].details["z_score"] == 5.1
        assert isinstance(flags[1], UnexpectedRangeFlag)
        assert flags[1].severity == "info"
        assert isinstance(flags[2], LowAccuracyFlag)

    def test_outside_zone_defaults(self):
        (flag,) = parse_flags([{"type": "outside_zone"}])

        assert isinstance(flag, OutsideZoneFlag)
        assert flag.severity == "critical"
        assert flag.reason == "Data point location is outside campaign survey zones"

    def test_parse_empty(self):
        assert parse_flags(None) == []
        assert parse_flags([]) == []

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            parse_flags([{"type": "mystery", "reason": "?"}])

    def test_stored_form_reparses(self):
        original = [UnexpectedRangeFlag(expected_min=0.0, expected_max=40.0)]
        reparsed = parse_flags(dump_flags(original))
        assert reparsed[0].expected_max == 40.0
        assert reparsed[0].flagged_at == original[0].flagged_at
