"""
JSON conversion for analyses and sleep records.

Output keys are camelCase to match what chart front ends read.
"""

from datetime import date, datetime

from .circadian_math import to_local_naive
from .periodogram import PeriodogramPoint, PeriodogramResult
from .types import (
    AnchorPoint,
    CircadianAnalysis,
    CircadianDay,
    CSFAnalysis,
    KalmanAnalysis,
    RegressionAnalysis,
    SleepRecord,
    SleepStageEntry,
    SleepStages,
    SmoothedState,
)

MS_PER_HOUR = 3_600_000


def stages_to_dict(stages: SleepStages) -> dict:
    return {"deep": stages.deep, "light": stages.light, "rem": stages.rem, "wake": stages.wake}


def stages_from_dict(d: dict) -> SleepStages:
    """Stage minutes from `{"deep": .., "light": .., "rem": .., "wake": ..}`."""
    return SleepStages(deep=d["deep"], light=d["light"], rem=d["rem"], wake=d["wake"])


def stage_data_to_list(entries: tuple[SleepStageEntry, ...]) -> list[dict]:
    return [{"dateTime": e.date_time, "level": e.level, "seconds": e.seconds} for e in entries]


def stage_data_from_list(data: list[dict]) -> tuple[SleepStageEntry, ...]:
    """Stage intervals in tracker order; `dateTime` is kept as the tracker wrote it."""
    return tuple(SleepStageEntry(date_time=e["dateTime"], level=e["level"], seconds=e["seconds"]) for e in data)


def record_to_dict(record: SleepRecord) -> dict:
    """Convert a record to the exported format (stage fields only when present)."""
    result = {
        "logId": record.log_id,
        "dateOfSleep": record.date_of_sleep.isoformat(),
        "startTime": record.start_time.isoformat(),
        "endTime": record.end_time.isoformat(),
        "durationMs": round(record.duration_hours * MS_PER_HOUR),
        "durationHours": record.duration_hours,
        "efficiency": record.efficiency,
        "minutesAsleep": record.minutes_asleep,
        "minutesAwake": record.minutes_awake,
        "isMainSleep": record.is_main_sleep,
        "sleepScore": record.sleep_score,
    }
    if record.stages is not None:
        result["stages"] = stages_to_dict(record.stages)
    if record.stage_data is not None:
        result["stageData"] = stage_data_to_list(record.stage_data)
    return result


def records_to_dict(records: list[SleepRecord]) -> list[dict]:
    """Convert records to JSON-serializable dicts."""
    return [record_to_dict(r) for r in records]


def record_from_dict(d: dict, timezone: str | None = None) -> SleepRecord:
    """
    Re-hydrate a record from the exported format.

    `durationHours` is derived from `durationMs` when absent. Missing
    `isMainSleep` means main sleep and missing `sleepScore` means 0.
    """
    duration_hours = d.get("durationHours")
    if duration_hours is None:
        duration_hours = d["durationMs"] / MS_PER_HOUR

    return SleepRecord(
        log_id=int(d["logId"]),
        date_of_sleep=date.fromisoformat(d["dateOfSleep"]),
        start_time=to_local_naive(datetime.fromisoformat(d["startTime"]), timezone),
        end_time=to_local_naive(datetime.fromisoformat(d["endTime"]), timezone),
        duration_hours=duration_hours,
        sleep_score=d.get("sleepScore") if d.get("sleepScore") is not None else 0.0,
        is_main_sleep=d.get("isMainSleep") if d.get("isMainSleep") is not None else True,
        efficiency=d.get("efficiency"),
        minutes_asleep=d.get("minutesAsleep"),
        minutes_awake=d.get("minutesAwake"),
        stages=stages_from_dict(d["stages"]) if d.get("stages") else None,
        stage_data=stage_data_from_list(d["stageData"]) if d.get("stageData") is not None else None,
    )


def records_from_dict(data: list[dict], timezone: str | None = None) -> list[SleepRecord]:
    """Convert exported-format dicts to SleepRecord objects."""
    return [record_from_dict(d, timezone) for d in data]


def day_to_dict(day: CircadianDay) -> dict:
    result = {
        "date": day.date,
        "nightStartHour": day.night_start_hour,
        "nightEndHour": day.night_end_hour,
        "confidenceScore": day.confidence_score,
        "confidence": day.confidence,
        "localTau": day.local_tau,
        "localDrift": day.local_drift,
        "isForecast": day.is_forecast,
        "isGap": day.is_gap,
    }
    if day.anchor_sleep is not None:
        result["anchorSleep"] = record_to_dict(day.anchor_sleep)
    return result


def anchors_to_dict(anchors: list[AnchorPoint]) -> list[dict]:
    return [
        {
            "dayNumber": a.day_number,
            "midpointHour": a.midpoint_hour,
            "weight": a.weight,
            "date": a.date,
        }
        for a in anchors
    ]


def states_to_dict(states: list[SmoothedState]) -> list[dict]:
    return [
        {
            "phase": s.phase,
            "tau": s.tau,
            "phaseVar": s.phase_var,
            "tauVar": s.tau_var,
            "cov": s.cov,
            "smoothedPhase": s.smoothed_phase,
            "smoothedTau": s.smoothed_tau,
            "smoothedPhaseVar": s.smoothed_phase_var,
            "smoothedTauVar": s.smoothed_tau_var,
        }
        for s in states
    ]


def analysis_to_dict(analysis: CircadianAnalysis) -> dict:
    """
    Convert an analysis to a JSON-serializable dict.

    Estimator-specific diagnostics are included for the result types that
    carry them.
    """
    result = {
        "algorithmId": analysis.algorithm_id,
        "globalTau": analysis.global_tau,
        "globalDailyDrift": analysis.global_daily_drift,
        "rSquared": analysis.r_squared,
        "days": [day_to_dict(d) for d in analysis.days],
    }

    if isinstance(analysis, RegressionAnalysis):
        result.update(
            {
                "anchors": anchors_to_dict(analysis.anchors),
                "medianResidualHours": analysis.median_residual_hours,
                "anchorCount": analysis.anchor_count,
                "anchorTierCounts": dict(analysis.anchor_tier_counts),
            }
        )
    elif isinstance(analysis, KalmanAnalysis):
        result.update(
            {
                "gatedOutlierCount": analysis.gated_outlier_count,
                "observationCount": analysis.observation_count,
                "avgInnovation": analysis.avg_innovation,
            }
        )
    elif isinstance(analysis, CSFAnalysis):
        result.update(
            {
                "states": states_to_dict(analysis.states),
                "medianResidualHours": analysis.median_residual_hours,
                "anchorCount": analysis.anchor_count,
                "anchorTierCounts": dict(analysis.anchor_tier_counts),
            }
        )

    return result


def periodogram_to_dict(result: PeriodogramResult) -> dict:
    def points(pts: list[PeriodogramPoint]) -> list[dict]:
        return [{"period": p.period, "power": p.power} for p in pts]

    return {
        "points": points(result.points),
        "trimmedPoints": points(result.trimmed_points),
        "peakPeriod": result.peak_period,
        "peakPower": result.peak_power,
        "significanceThreshold": result.significance_threshold,
        "power24h": result.power_24h,
    }
