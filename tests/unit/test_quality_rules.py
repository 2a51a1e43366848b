"""
Unit tests for the quality heuristics (no database)
"""

from decimal import Decimal

import pytest

from models.measurement import Measurement
from models.metric import EnvironmentalMetric
from models.survey_zone import SurveyZone
from quality.rules import Baseline, QualityRules, compute_baseline


def reading(value="20.0", accuracy=None, latitude=None, longitude=None):
    return Measurement(
        campaign_id=1,
        metric_id=1,
        user_id=1,
        value=Decimal(value),
        accuracy=Decimal(accuracy) if accuracy is not None else None,
        latitude=Decimal(latitude) if latitude is not None else None,
        longitude=Decimal(longitude) if longitude is not None else None,
    )


def square_zone(west, south, east, north):
    ring = [[west, south], [east, south], [east, north], [west, north], [west, south]]
    return SurveyZone(campaign_id=1, name="zone", area={"type": "Polygon", "coordinates": [ring]})


@pytest.fixture
def rules():
    return QualityRules(low_accuracy_meters=50, outlier_stddevs=3, baseline_days=30, min_baseline=10)


class TestComputeBaseline:
    def test_mean_and_sample_stddev(self):
        baseline = compute_baseline([2, 4, 4, 4, 5, 5, 7, 9, 6, 4], min_samples=10)
        assert baseline.mean == pytest.approx(5.0)
        assert baseline.stddev == pytest.approx(2.0)
        assert baseline.sample_size == 10

    def test_too_few_samples(self):
        assert compute_baseline([1.0] * 5 + [2.0] * 4, min_samples=10) is None

    def test_flat_history(self):
        assert compute_baseline([3.0] * 12, min_samples=10) is None


class TestLowAccuracy:
    def test_coarse_fix_flagged(self, rules):
        flag = rules.check_low_accuracy(reading(accuracy="75.5"))
        assert flag.type == "low_accuracy"
        assert flag.accuracy_meters == 75.5
        assert "75.5m" in flag.reason

    def test_threshold_is_inclusive(self, rules):
        assert rules.check_low_accuracy(reading(accuracy="50")) is None

    def test_missing_accuracy_not_flagged(self, rules):
        assert rules.check_low_accuracy(reading()) is None


class TestOutlier:
    baseline = Baseline(mean=20.0, stddev=1.0, sample_size=12)

    def test_far_value_flagged(self, rules):
        flag = rules.check_outlier(reading("24.5"), self.baseline)

        assert flag.type == "outlier"
        assert flag.details["z_score"] == 4.5
        assert flag.details["sample_size"] == 12
        assert flag.details["threshold"] == 3

    def test_within_threshold(self, rules):
        assert rules.check_outlier(reading("23.0"), self.baseline) is None
        assert rules.check_outlier(reading("17.0"), self.baseline) is None

    def test_no_baseline(self, rules):
        assert rules.check_outlier(reading("1000"), None) is None


class TestExpectedRange:
    def test_outside_range(self, rules):
        metric = EnvironmentalMetric(name="ph", unit="pH", expected_min=Decimal("6.0"), expected_max=Decimal("8.5"))
        flag = rules.check_expected_range(reading("9.1"), metric)

        assert flag.type == "unexpected_range"
        assert flag.severity == "info"
        assert flag.expected_min == 6.0
        assert "ph" in flag.reason

    def test_inside_range(self, rules):
        metric = EnvironmentalMetric(name="ph", unit="pH", expected_min=Decimal("6.0"), expected_max=Decimal("8.5"))
        assert rules.check_expected_range(reading("8.5"), metric) is None

    def test_unconfigured_range(self, rules):
        metric = EnvironmentalMetric(name="ph", unit="pH")
        assert rules.check_expected_range(reading("99"), metric) is None
        assert rules.check_expected_range(reading("99"), None) is None


class TestOutsideZone:
    def test_point_inside_a_zone(self, rules):
        zones = [square_zone(0, 0, 1, 1), square_zone(10, 10, 11, 11)]
        assert rules.check_outside_zone(reading(latitude="10.5", longitude="10.5"), zones) is None

    def test_point_outside_all_zones(self, rules):
        zones = [square_zone(0, 0, 1, 1)]
        flag = rules.check_outside_zone(reading(latitude="5", longitude="0.5"), zones)

        assert flag.type == "outside_zone"
        assert flag.severity == "critical"
        assert flag.zone_count == 1

    def test_boundary_counts_as_inside(self, rules):
        assert rules.check_outside_zone(reading(latitude="1", longitude="0.5"), [square_zone(0, 0, 1, 1)]) is None

    def test_coordinates_are_lon_lat(self, rules):
        """A tall, narrow zone tells latitude and longitude apart"""
        zones = [square_zone(12.0, 55.0, 12.1, 56.0)]
        assert rules.check_outside_zone(reading(latitude="55.5", longitude="12.05"), zones) is None
        assert rules.check_outside_zone(reading(latitude="12.05", longitude="55.5"), zones) is not None

    def test_no_zones_or_no_location(self, rules):
        assert rules.check_outside_zone(reading(latitude="5", longitude="5"), []) is None
        assert rules.check_outside_zone(reading(), [square_zone(0, 0, 1, 1)]) is None
