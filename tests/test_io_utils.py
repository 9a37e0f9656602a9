"""
Tests for input loading and configuration validation.
"""
import json
from datetime import date

import pytest

from resource_loading.io_utils import (
    load_allocations,
    load_config,
    load_periods,
    load_repository,
    load_resources,
)
from resource_loading.models import DEFAULT_MAX_SPAN_DAYS, InvalidCurveError, category_from_label


def _write_json(path, payload):
    path.write_text(json.dumps(payload))
    return path


class TestLoadResources:
    def test_parses_rates_and_categories(self, tmp_path):
        path = _write_json(
            tmp_path / "resources.json",
            [
                {"id": "R1", "name": "Carpenter", "daily_capacity": 8, "hourly_rate": 45.5, "category": "WORK"},
                {"id": 2, "category": "Equipment", "overtime_rate": "70"},
            ],
        )
        resources = load_resources(path)
        assert resources[0].category == "labor"
        assert resources[0].hourly_rate == 45.5
        assert resources[1].id == "2"
        assert resources[1].name == "2"
        assert resources[1].daily_capacity == 8.0
        assert resources[1].overtime_rate == 70.0
        assert resources[1].category == "equipment"

    def test_tier_rates(self, tmp_path):
        path = _write_json(
            tmp_path / "resources.json",
            [{"id": "R1", "hourly_rate": 40, "rates": {"external": 55, "emergency": "90"}}],
        )
        resource = load_resources(path)[0]
        assert resource.tier_rates == {"external": 55.0, "emergency": 90.0}
        assert resource.rate_for("emergency") == 90.0
        assert resource.rate_for("special") == pytest.approx(52.0)

    def test_unknown_tier_rejected(self, tmp_path):
        path = _write_json(tmp_path / "resources.json", [{"id": "R1", "rates": {"weekend": 10}}])
        with pytest.raises(ValueError, match="weekend"):
            load_resources(path)

    def test_duplicate_ids_rejected(self, tmp_path):
        path = _write_json(tmp_path / "resources.json", [{"id": "R1"}, {"id": "R1"}])
        with pytest.raises(ValueError, match="duplicate"):
            load_resources(path)

    def test_must_be_array(self, tmp_path):
        path = _write_json(tmp_path / "resources.json", {"id": "R1"})
        with pytest.raises(ValueError):
            load_resources(path)

    def test_invalid_number_rejected(self, tmp_path):
        path = _write_json(tmp_path / "resources.json", [{"id": "R1", "daily_capacity": "lots"}])
        with pytest.raises(ValueError, match="daily_capacity"):
            load_resources(path)

    @pytest.mark.parametrize(
        "label,expected",
        [("WORK", "labor"), ("Labour", "labor"), ("material", "material"), ("SUBCONTRACTOR", "subcontractor"),
         ("BUDGET", "other"), (None, "other")],
    )
    def test_category_labels(self, label, expected):
        assert category_from_label(label) == expected


class TestLoadAllocations:
    def test_defaults_for_optional_columns(self, tmp_path):
        path = tmp_path / "allocations.csv"
        path.write_text(
            "id,resource_id,activity_id,date_start,date_end,percent_units,curve_reference\n"
            "1,R1,ACT-1,2024-03-04,2024-03-06,60,BELL\n"
            "2,R1,ACT-2,2024-03-05,2024-03-05,,\n"
        )
        allocations = load_allocations(path)
        assert allocations[0].id == "1"
        assert allocations[0].date_start == date(2024, 3, 4)
        assert allocations[0].percent_units == 60
        assert allocations[0].curve_reference == "BELL"
        assert allocations[1].percent_units == 100
        assert allocations[1].curve_reference is None
        assert allocations[1].rate_type == "standard"

    def test_missing_columns(self, tmp_path):
        path = tmp_path / "allocations.csv"
        path.write_text("id,resource_id\n1,R1\n")
        with pytest.raises(ValueError, match="activity_id"):
            load_allocations(path)

    def test_bad_date(self, tmp_path):
        path = tmp_path / "allocations.csv"
        path.write_text("id,resource_id,activity_id,date_start,date_end\n1,R1,A,yesterday,2024-03-05\n")
        with pytest.raises(ValueError, match="date_start"):
            load_allocations(path)

    def test_all_rate_tiers_accepted(self, tmp_path):
        path = tmp_path / "allocations.csv"
        rows = "".join(
            f"{idx},R1,A,2024-03-04,2024-03-05,{tier}\n"
            for idx, tier in enumerate(["standard", "overtime", "external", "special", "emergency"])
        )
        path.write_text("id,resource_id,activity_id,date_start,date_end,rate_type\n" + rows)
        assert [a.rate_type for a in load_allocations(path)] == [
            "standard",
            "overtime",
            "external",
            "special",
            "emergency",
        ]

    def test_unknown_rate_type(self, tmp_path):
        path = tmp_path / "allocations.csv"
        path.write_text(
            "id,resource_id,activity_id,date_start,date_end,rate_type\n1,R1,A,2024-03-04,2024-03-05,holiday\n"
        )
        with pytest.raises(ValueError, match="rate_type"):
            load_allocations(path)


class TestLoadPeriods:
    def test_missing_numeric_columns_default_to_zero(self, tmp_path):
        path = tmp_path / "periods.csv"
        path.write_text(
            "allocation_id,resource_id,activity_id,period_start,planned_cost,earned_value\n"
            "1,R1,ACT,2024-03-04,100,\n"
        )
        periods = load_periods(path)
        assert periods[0].planned_cost == 100
        assert periods[0].earned_value == 0
        assert periods[0].actual_cost == 0
        assert periods[0].period_start == date(2024, 3, 4)

    def test_non_numeric_value_rejected(self, tmp_path):
        path = tmp_path / "periods.csv"
        path.write_text("allocation_id,resource_id,period_start,planned_cost\n1,R1,2024-03-04,abc\n")
        with pytest.raises(ValueError, match="planned_cost"):
            load_periods(path)


class TestLoadConfig:
    def test_defaults(self, tmp_path):
        cfg = load_config(_write_json(tmp_path / "config.json", {}))
        assert cfg.max_span_days == DEFAULT_MAX_SPAN_DAYS
        assert cfg.skip_weekends is False
        assert cfg.default_curve == "LINEAR"
        assert cfg.max_workers is None

    def test_custom_curves(self, tmp_path):
        ramp = [0, 2, 4, 6, 8, 10, 20, 30, 40, 50, 60, 70, 80, 90, 92, 94, 96, 97, 98, 99, 100]
        cfg = load_config(
            _write_json(
                tmp_path / "config.json",
                {"curves": {"RAMP": ramp}, "default_curve": "RAMP", "skip_weekends": True, "max_workers": 4},
            )
        )
        assert cfg.get_curve_spec("RAMP") == ramp
        assert cfg.skip_weekends is True
        assert cfg.max_workers == 4

    @pytest.mark.parametrize(
        "payload",
        [
            {"max_span_days": 0},
            {"max_span_days": "ten"},
            {"skip_weekends": "yes"},
            {"curves": []},
            {"default_curve": "ZIGZAG"},
            {"max_workers": -1},
            {"max_workers": True},
            {"curves": {"A": "B", "B": "A"}},
        ],
    )
    def test_invalid_values(self, tmp_path, payload):
        with pytest.raises(ValueError):
            load_config(_write_json(tmp_path / "config.json", payload))

    def test_invalid_curve_table(self, tmp_path):
        with pytest.raises(InvalidCurveError):
            load_config(_write_json(tmp_path / "config.json", {"curves": {"BAD": [0, 50, 40, 100]}}))


def test_load_repository(tmp_path):
    resources = _write_json(tmp_path / "resources.json", [{"id": "R1", "daily_capacity": 8}])
    allocations = tmp_path / "allocations.csv"
    allocations.write_text("id,resource_id,activity_id,date_start,date_end\nA1,R1,ACT,2024-03-04,2024-03-05\n")
    repo = load_repository(resources, allocations)
    assert [r.id for r in repo.list_resources()] == ["R1"]
    assert [a.id for a in repo.list_allocations()] == ["A1"]
    assert repo.list_periods() == ()
