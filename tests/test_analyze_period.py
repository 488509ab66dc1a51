"""
Tests for the analyze_period date-range diagnostic script.
"""

import json
import sys
from datetime import date

import pytest

import analyze_period
from circadian_phase.serialization import records_to_dict

from helpers import make_n24_records, make_record


def run_script(monkeypatch, capsys, *args) -> tuple[dict, int]:
    monkeypatch.setattr(sys, "argv", ["analyze_period.py", *args])
    code = 0
    try:
        analyze_period.main()
    except SystemExit as e:
        code = e.code
    return json.loads(capsys.readouterr().out), code


@pytest.fixture
def sleep_file(tmp_path):
    path = tmp_path / "sleep.json"
    path.write_text(json.dumps(records_to_dict(make_n24_records(days=30))))
    return path


class TestParseArgs:
    def test_defaults(self):
        options = analyze_period.parse_args(["sleep.json"])

        assert options == {"sleep_file": "sleep.json", "start_date": None, "end_date": None, "timezone": None}

    def test_dates_and_timezone(self):
        options = analyze_period.parse_args(["sleep.json", "2024-01-10", "2024-01-19", "--timezone", "UTC"])

        assert options["start_date"] == date(2024, 1, 10)
        assert options["end_date"] == date(2024, 1, 19)
        assert options["timezone"] == "UTC"

    def test_bad_date(self):
        with pytest.raises(ValueError):
            analyze_period.parse_args(["sleep.json", "January"])

    def test_too_many_arguments(self):
        with pytest.raises(ValueError):
            analyze_period.parse_args(["sleep.json", "2024-01-01", "2024-01-02", "extra"])


class TestAnalyzePeriod:
    def test_range_filters(self):
        records = make_n24_records(days=30)

        result = analyze_period.analyze_period(records, date(2024, 1, 10), date(2024, 1, 19))

        assert result["startDate"] == "2024-01-10"
        assert result["endDate"] == "2024-01-19"
        assert result["anchorCount"] == 30
        assert len(result["anchors"]) == 10
        assert len(result["records"]) == 10
        assert [d["date"] for d in result["days"]] == [f"2024-01-{n}" for n in range(10, 20)]

    def test_record_rows_carry_anchor_classification(self):
        records = make_n24_records(days=20) + [make_record(5, 15, duration=2, log_id=99)]

        result = analyze_period.analyze_period(records)

        short = next(r for r in result["records"] if r["logId"] == 99)
        assert short["anchorWeight"] is None
        assert short["tier"] is None
        assert result["records"][0]["tier"] == "A"

    def test_defaults_to_whole_log(self):
        records = make_n24_records(days=30)

        result = analyze_period.analyze_period(records)

        assert result["startDate"] == "2024-01-02"
        assert result["endDate"] == "2024-01-31"
        assert len(result["records"]) == 30

    def test_periodogram_of_range(self):
        result = analyze_period.analyze_period(make_n24_records(days=30))

        assert len(result["periodogram"]["points"]) == 301
        assert result["periodogram"]["peakPeriod"] == pytest.approx(24.5, abs=0.2)

    def test_no_records(self):
        with pytest.raises(ValueError, match="No sleep records"):
            analyze_period.analyze_period([])


class TestMain:
    def test_prints_range(self, monkeypatch, capsys, sleep_file):
        output, code = run_script(monkeypatch, capsys, str(sleep_file), "2024-01-10", "2024-01-12")

        assert code == 0
        assert len(output["days"]) == 3
        assert "periodogram" in output

    def test_usage_error(self, monkeypatch, capsys):
        output, code = run_script(monkeypatch, capsys)

        assert code == 1
        assert output["error"].startswith("Usage:")

    def test_missing_file(self, monkeypatch, capsys, tmp_path):
        output, code = run_script(monkeypatch, capsys, str(tmp_path / "nope.json"))

        assert code == 1
        assert "Sleep file not found" in output["error"]
