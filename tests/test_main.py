"""
End-to-end tests for the batch CLI.
"""
import json

import pandas as pd
import pytest

from resource_loading.main import main


@pytest.fixture
def project_dir(tmp_path):
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    (input_dir / "resources.json").write_text(
        json.dumps(
            [
                {"id": "R1", "name": "Carpenter", "daily_capacity": 8, "hourly_rate": 50, "category": "WORK"},
                {"id": "R2", "name": "Concrete", "daily_capacity": 20, "hourly_rate": 100, "category": "MATERIAL"},
            ]
        )
    )
    (input_dir / "allocations.csv").write_text(
        "id,resource_id,activity_id,date_start,date_end,percent_units,curve_reference\n"
        "A1,R1,ACT-1,2024-03-04,2024-03-06,60,LINEAR\n"
        "A2,R1,ACT-2,2024-03-04,2024-03-06,60,BELL\n"
        "A3,R2,ACT-3,2024-03-04,2024-03-08,50,FLAT\n"
    )
    return tmp_path


def test_conflicts_written_to_output(project_dir, capsys):
    main(["--project-dir", str(project_dir), "conflicts"])
    out = capsys.readouterr().out
    assert "conflicts.csv" in out
    df = pd.read_csv(project_dir / "output" / "conflicts.csv")
    assert len(df) == 1
    row = df.iloc[0]
    assert row["resource_id"] == "R1"
    assert row["date_start"] == "2024-03-04"
    assert row["date_end"] == "2024-03-06"
    assert row["severity"] == "LOW"
    assert row["max_excess"] == pytest.approx(1.6)
    assert row["allocation_ids"] == "A1;A2"


def test_histogram(project_dir):
    main(["--project-dir", str(project_dir), "histogram", "--resource", "R1", "--start", "2024-03-03", "--end", "2024-03-07"])
    df = pd.read_csv(project_dir / "output" / "histogram_R1.csv")
    assert list(df["allocated"]) == pytest.approx([0.0, 9.6, 9.6, 9.6, 0.0])
    summary = pd.read_csv(project_dir / "output" / "histogram_R1_summary.csv").iloc[0]
    assert summary["total_overallocation"] == pytest.approx(4.8)
    assert summary["utilization_rate"] == pytest.approx(60.0)


def test_scurve_and_metrics(project_dir):
    main(["--project-dir", str(project_dir), "scurve", "--group-by", "day"])
    series = pd.read_csv(project_dir / "output" / "s_curve.csv")
    metrics = pd.read_csv(project_dir / "output" / "evm_metrics.csv")
    assert len(series) == 5
    assert series["planned_cumulative"].iloc[-1] == pytest.approx(2 * 14.4 * 50 + 50 * 100)
    assert metrics["bac"].iloc[0] == pytest.approx(series["planned_cumulative"].iloc[-1])


def test_scurve_scoped_to_resource(project_dir):
    main(["--project-dir", str(project_dir), "scurve", "--group-by", "day", "--resource", "R2"])
    series = pd.read_csv(project_dir / "output" / "s_curve.csv")
    assert series["planned_cumulative"].iloc[-1] == pytest.approx(50 * 100)


def test_commodity_distribution(project_dir):
    main(["--project-dir", str(project_dir), "commodity", "--group-by", "week"])
    dist = pd.read_csv(project_dir / "output" / "commodity_distribution.csv")
    shares = dict(zip(dist["category"], dist["percent"]))
    assert sum(shares.values()) == pytest.approx(100)
    assert shares["labor"] == pytest.approx(1440 / 6440 * 100)


def test_distribute_without_input_files(tmp_path, capsys):
    main(["--outdir", str(tmp_path), "--dry-run", "distribute", "--total", "100",
          "--start", "2024-01-01", "--end", "2024-01-20"])
    out = capsys.readouterr().out
    assert "distribution.csv" in out
    assert not (tmp_path / "distribution.csv").exists()

    main(["--outdir", str(tmp_path), "distribute", "--total", "100",
          "--start", "2024-01-01", "--end", "2024-01-20", "--curve", "LINEAR"])
    df = pd.read_csv(tmp_path / "distribution.csv")
    assert len(df) == 20
    assert df["cumulative"].iloc[-1] == pytest.approx(100)


def test_configured_weekend_flag(project_dir):
    (project_dir / "input" / "config.json").write_text(json.dumps({"skip_weekends": True}))
    main(["--project-dir", str(project_dir), "histogram", "--resource", "R2", "--start", "2024-03-08", "--end", "2024-03-10"])
    df = pd.read_csv(project_dir / "output" / "histogram_R2.csv")
    assert list(df["capacity"]) == [20.0, 0.0, 0.0]


def test_missing_inputs_exit_code(tmp_path):
    with pytest.raises(SystemExit) as exc_info:
        main(["--outdir", str(tmp_path), "conflicts"])
    assert exc_info.value.code == 2


def test_invalid_range_exit_code(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["--outdir", str(tmp_path), "distribute", "--total", "10",
              "--start", "2024-01-05", "--end", "2024-01-01"])
    assert exc_info.value.code == 1
    assert "ends before it starts" in capsys.readouterr().err
