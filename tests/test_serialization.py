"""
Tests for JSON conversion of records and analyses.
"""

import json
from dataclasses import replace

import pytest

from circadian_phase.csf import CSFEstimator
from circadian_phase.kalman import KalmanEstimator
from circadian_phase.regression import RegressionEstimator
from circadian_phase.serialization import (
    analysis_to_dict,
    record_from_dict,
    record_to_dict,
    records_from_dict,
    records_to_dict,
)
from circadian_phase.types import SleepStageEntry, SleepStages

from helpers import make_record


class TestRecordConversion:
    def test_record_to_dict_keys(self):
        d = record_to_dict(make_record(0, 3, log_id=42))

        assert d["logId"] == 42
        assert d["dateOfSleep"] == "2024-01-01"
        assert d["startTime"] == "2023-12-31T23:00:00"
        assert d["durationMs"] == 28_800_000
        assert d["isMainSleep"] is True
        assert d["sleepScore"] == 0.85

    def test_round_trip(self):
        records = [make_record(d, 3 + 0.5 * d) for d in range(3)]

        assert records_from_dict(records_to_dict(records)) == records

    def test_stage_fields_omitted_when_absent(self):
        d = record_to_dict(make_record(0, 3))

        assert "stages" not in d
        assert "stageData" not in d

    def test_stages_round_trip(self):
        record = replace(
            make_record(0, 3),
            stages=SleepStages(deep=90, light=260, rem=100, wake=30),
            stage_data=(SleepStageEntry(date_time="2023-12-31T23:00:00.000", level="wake", seconds=300),),
        )

        d = record_to_dict(record)

        assert d["stages"] == {"deep": 90, "light": 260, "rem": 100, "wake": 30}
        assert d["stageData"] == [{"dateTime": "2023-12-31T23:00:00.000", "level": "wake", "seconds": 300}]
        assert record_from_dict(json.loads(json.dumps(d))) == record

    def test_duration_from_ms(self):
        d = record_to_dict(make_record(0, 3))
        del d["durationHours"]

        assert record_from_dict(d).duration_hours == pytest.approx(8.0)


class TestAnalysisToDict:
    def test_regression_diagnostics(self, n24_records):
        d = analysis_to_dict(RegressionEstimator().analyze(n24_records, forecast_days=2))

        assert d["algorithmId"] == "regression-v1"
        assert d["anchorCount"] == len(d["anchors"]) == 60
        assert set(d["anchorTierCounts"]) == {"A", "B", "C"}
        assert "medianResidualHours" in d
        assert "gatedOutlierCount" not in d
        assert len(d["days"]) == 62

    def test_kalman_diagnostics(self, n24_records):
        d = analysis_to_dict(KalmanEstimator().analyze(n24_records))

        assert d["algorithmId"] == "kalman-v1"
        assert d["gatedOutlierCount"] == 0
        assert d["observationCount"] > 0
        assert "avgInnovation" in d
        assert "anchors" not in d

    def test_circular_filter_diagnostics(self, n24_records):
        d = analysis_to_dict(CSFEstimator().analyze(n24_records))

        assert d["algorithmId"] == "csf-v1"
        assert d["anchorCount"] == 60
        assert d["anchorTierCounts"] == {"A": 60, "B": 0, "C": 0}
        assert len(d["states"]) == len(d["days"])
        assert "gatedOutlierCount" not in d

    def test_day_keys(self, n24_records):
        d = analysis_to_dict(RegressionEstimator().analyze(n24_records))
        day = d["days"][0]

        assert set(day) >= {
            "date",
            "nightStartHour",
            "nightEndHour",
            "confidenceScore",
            "confidence",
            "localTau",
            "localDrift",
            "isForecast",
            "isGap",
        }
        assert day["anchorSleep"]["logId"] == n24_records[0].log_id

    def test_json_serializable(self, two_cluster_records):
        d = analysis_to_dict(KalmanEstimator().analyze(two_cluster_records, forecast_days=3))

        assert json.loads(json.dumps(d)) == d
