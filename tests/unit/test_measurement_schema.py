"""
Unit tests for the measurement submission schema
"""

from datetime import datetime

import pytest
from pydantic import ValidationError

from schemas.api import MeasurementCreate


def submission(**fields):
    body = {"user_id": 7, "campaign_id": 1, "metric_id": 3, "value": "18.5"}
    body.update(fields)
    return MeasurementCreate(**body)


class TestCollectedAt:
    """Test suite for collected_at normalisation"""

    def test_offset_converted_to_naive_utc(self):
        measurement = submission(collected_at="2025-08-15T22:00:00-05:00")

        assert measurement.collected_at == datetime(2025, 8, 16, 3, 0)
        assert measurement.collected_at.tzinfo is None

    def test_zulu_suffix(self):
        measurement = submission(collected_at="2025-08-15T10:30:00Z")
        assert measurement.collected_at == datetime(2025, 8, 15, 10, 30)

    def test_naive_taken_as_utc(self):
        measurement = submission(collected_at="2025-08-15T10:30:00")
        assert measurement.collected_at == datetime(2025, 8, 15, 10, 30)


def test_half_location_rejected():
    with pytest.raises(ValidationError):
        submission(latitude="55.7")
