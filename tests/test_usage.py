"""Tests for langop_api.quota.usage."""

import pytest

from langop_api.quota.quantity import Dimension
from langop_api.quota.usage import UtilizationReport, percent, report


class TestPercent:
    def test_cpu_limit_and_used_in_same_unit(self):
        # Bare cores on one side and millicores on the other.
        assert percent("cpu", "2", "500m") == 25.0
        assert percent("cpu", "2000m", "1") == 50.0

    def test_memory(self):
        assert percent(Dimension.memory, "1Gi", "512Mi") == 50.0

    def test_count(self):
        assert percent(Dimension.count, "10", "3") == 30.0

    @pytest.mark.parametrize(
        "dimension,limit,used",
        [
            (Dimension.cpu, "1", "3"),
            (Dimension.memory, "1Gi", "2Gi"),
            (Dimension.count, "5", "6"),
        ],
    )
    def test_over_quota_clamps_to_100(self, dimension, limit, used):
        assert percent(dimension, limit, used) == 100.0

    @pytest.mark.parametrize("dimension", list(Dimension))
    @pytest.mark.parametrize("used", ["0", "1", "999Gi", "5000m"])
    def test_zero_limit_is_zero_percent(self, dimension, used):
        assert percent(dimension, "0", used) == 0.0

    def test_zero_limit_with_unit_is_zero_percent(self):
        assert percent(Dimension.cpu, "0m", "100m") == 0.0


class TestReport:
    def test_threshold_boundary(self):
        r = report(
            {"count/at": "100000", "count/below": "100000"},
            {"count/at": "80000", "count/below": "79999"},
        )
        assert r.percent_used == {"count/at": 80.0, "count/below": 80.0}
        assert r.warnings == ["count/at: 80.0% used"]
        assert r.is_near_limit is True

    def test_missing_usage_defaults_to_zero(self):
        r = report({"limits.cpu": "2"}, {})
        assert r.percent_used == {"limits.cpu": 0.0}
        assert r.warnings == []
        assert r.is_near_limit is False

    def test_usage_without_quota_ignored(self):
        r = report({"limits.cpu": "2"}, {"limits.cpu": "1", "count/pods": "40"})
        assert set(r.percent_used) == {"limits.cpu"}

    def test_dimension_from_resource_name(self):
        r = report(
            {"requests.cpu": "1", "limits.memory": "1Gi", "count/languagetools": "4"},
            {"requests.cpu": "900m", "limits.memory": "256Mi", "count/languagetools": "1"},
        )
        assert r.percent_used == {"requests.cpu": 90.0, "limits.memory": 25.0, "count/languagetools": 25.0}
        assert r.warnings == ["requests.cpu: 90.0% used"]

    def test_custom_threshold(self):
        r = report({"count/pods": "10"}, {"count/pods": "5"}, warn_threshold=50)
        assert r.is_near_limit is True

    def test_malformed_quantity_becomes_warning(self):
        r = report(
            {"limits.memory": "lots", "limits.cpu": "2"},
            {"limits.memory": "1Gi", "limits.cpu": "2"},
        )
        assert "limits.memory" not in r.percent_used
        assert r.percent_used["limits.cpu"] == 100.0
        assert r.warnings[0].startswith("limits.memory: unparseable quantity")
        assert r.warnings[1] == "limits.cpu: 100.0% used"

    def test_malformed_only_is_not_near_limit(self):
        r = report({"limits.memory": "lots"}, {})
        assert r.warnings and r.is_near_limit is False

    def test_inputs_not_mutated(self):
        quota = {"limits.cpu": "2"}
        used = {}
        report(quota, used)
        assert quota == {"limits.cpu": "2"} and used == {}

    def test_empty_report(self):
        assert report({}, {}) == UtilizationReport()
