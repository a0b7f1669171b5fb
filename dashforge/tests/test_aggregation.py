"""
Pytest test module for period aggregation of daily metric rows.
"""

import math

import pytest

from dashforge.services.aggregation import (
    compute_aggregates,
    is_rate_field,
    lookup_metric,
    numeric_columns,
    sum_columns,
)
from dashforge.tests.conftest import make_daily_rows


class TestHelpers:
    """Tests for column classification helpers."""

    def test_numeric_columns(self) -> None:
        rows = [
            {"date": "2024-06-01", "spend": 10.0, "campaign": "a", "leads": None},
            {"date": "2024-06-02", "spend": 12, "campaign": "b", "leads": 3},
        ]
        assert numeric_columns(rows) == ["spend", "leads"]

    def test_booleans_are_not_numeric(self) -> None:
        assert numeric_columns([{"active": True}]) == []

    @pytest.mark.parametrize("name,expected", [
        ("entry_rate", True),
        ("ctr", True),
        ("conversion_rate", True),
        ("leads", False),
    ])
    def test_is_rate_field(self, name: str, expected: bool) -> None:
        assert is_rate_field(name) is expected

    def test_lookup_metric_aliases(self) -> None:
        assert lookup_metric({"cost_total": 120.0}, "spend") == 120.0
        assert lookup_metric({"leads_new": 7.0}, "leads") == 7.0
        assert lookup_metric({}, "spend") is None
        assert lookup_metric({"custom": 1.0}, "custom") == 1.0


class TestSumColumns:
    """Tests for sum_columns()."""

    def test_sums_numeric_columns(self) -> None:
        totals = sum_columns(make_daily_rows(3, spend=100.0, leads=10))
        assert totals == {"spend": 300.0, "leads": 30.0}

    def test_missing_values_skipped(self) -> None:
        rows = [{"spend": 10.0}, {"spend": None}, {"spend": 5.0}]
        assert sum_columns(rows) == {"spend": 15.0}

    def test_nan_propagates(self) -> None:
        rows = [{"spend": 10.0}, {"spend": float("nan")}]
        assert math.isnan(sum_columns(rows)["spend"])

    def test_rate_columns_not_summed(self) -> None:
        rows = [{"leads": 10, "conversion_rate": 20.0}, {"leads": 10, "conversion_rate": 30.0}]
        assert sum_columns(rows) == {"leads": 20.0}

    def test_empty(self) -> None:
        assert sum_columns([]) == {}


class TestComputeAggregates:
    """Tests for compute_aggregates()."""

    def test_cpl_and_cac(self) -> None:
        aggregates = compute_aggregates(make_daily_rows(5, spend=100.0, leads=10, sales=1))
        assert aggregates["spend"] == 500.0
        assert aggregates["leads"] == 50.0
        assert aggregates["cpl"] == pytest.approx(10.0)
        assert aggregates["cac"] == pytest.approx(100.0)

    def test_aliases_resolved(self) -> None:
        rows = [{"date": "2024-06-01", "cost_total": 90.0, "leads_new": 9}]
        aggregates = compute_aggregates(rows)
        assert aggregates["spend"] == 90.0
        assert aggregates["leads"] == 9.0
        assert aggregates["cpl"] == pytest.approx(10.0)

    def test_funnel_rates_in_percent(self) -> None:
        rows = [{"leads": 100, "entries": 40, "meetings_scheduled": 10, "meetings_held": 8, "sales": 2}]
        aggregates = compute_aggregates(rows)
        assert aggregates["entry_rate"] == pytest.approx(40.0)
        assert aggregates["meeting_scheduled_rate"] == pytest.approx(25.0)
        assert aggregates["attendance_rate"] == pytest.approx(80.0)
        assert aggregates["sale_after_meeting_rate"] == pytest.approx(25.0)

    def test_zero_denominators_skip_ratios(self) -> None:
        aggregates = compute_aggregates([{"spend": 50.0, "leads": 0, "sales": 0}])
        assert "cpl" not in aggregates
        assert "cac" not in aggregates

    def test_no_numeric_data(self) -> None:
        assert compute_aggregates([{"date": "2024-06-01", "campaign": "a"}]) == {}
