"""
Loading sleep logs from JSON.

Accepted shapes:
- Tracker API v1.2 single page: {"sleep": [...], "pagination": {...}}
- Tracker API v1.2 multi-page: [{"sleep": [...]}, ...]
- Flat list of records, either v1.2 records or this package's exported format

Records are returned sorted by start time with duplicate log ids removed.
"""

import json
import logging
from datetime import date, datetime
from pathlib import Path

from .circadian_math import clamp, get_current_datetime_in_tz, to_local_naive
from .serialization import MS_PER_HOUR, record_from_dict, stage_data_from_list
from .types import SleepRecord, SleepStages

logger = logging.getLogger(__name__)


class SleepDataFormatError(ValueError):
    """Raised when a sleep file or record has an unrecognized shape."""


# =============================================================================
# Sleep score
# =============================================================================

# Linear model fit against tracker-reported sleep scores
SCORE_INTERCEPT = 66.60654843292923
SCORE_W_DURATION = 9.071460795887447
SCORE_W_DEEP_PLUS_REM = 0.1110083920616658  # Per minute
SCORE_W_WAKE_PCT = -102.526819077646

CLASSIC_DEEP_PLUS_REM_FRACTION = 0.39  # Typical deep (~17%) + REM (~22%) share of sleep
MANUAL_WAKE_PCT = 0.15  # Manual logs carry no wake data


def duration_score(asleep_hours: float) -> float:
    """
    Piecewise 0-1 score for time asleep.

    Ramps 0 -> 0.5 over 0-4h and 0.5 -> 1.0 over 4-7h, plateaus for 7-9h,
    then declines to 0 at 12h.
    """
    if asleep_hours < 4:
        return asleep_hours / 4 * 0.5
    if asleep_hours < 7:
        return 0.5 + (asleep_hours - 4) / 3 * 0.5
    if asleep_hours <= 9:
        return 1.0
    if asleep_hours < 12:
        return 1.0 - (asleep_hours - 9) / 3
    return 0.0


def calculate_sleep_score(raw: dict) -> float:
    """
    Estimate a 0-1 sleep quality score for a v1.2 record.

    Args:
        raw: Tracker record with minutesAsleep, minutesAwake, timeInBed and,
            for "stages" records, levels.summary

    Returns:
        Score rounded to two decimals
    """
    minutes_asleep = raw.get("minutesAsleep", 0)
    time_in_bed = raw.get("timeInBed", 0)
    summary = (raw.get("levels") or {}).get("summary") or {}
    is_stages = raw.get("type") == "stages"

    if is_stages and summary.get("deep"):
        deep_plus_rem = summary["deep"]["minutes"] + summary["rem"]["minutes"]
    else:
        deep_plus_rem = minutes_asleep * CLASSIC_DEEP_PLUS_REM_FRACTION

    if is_stages and summary.get("wake"):
        wake_pct = summary["wake"]["minutes"] / time_in_bed if time_in_bed > 0 else 0.0
    elif raw.get("logType") == "manual":
        wake_pct = MANUAL_WAKE_PCT
    else:
        wake_pct = raw.get("minutesAwake", 0) / time_in_bed if time_in_bed > 0 else 0.0

    score = (
        SCORE_INTERCEPT
        + SCORE_W_DURATION * duration_score(minutes_asleep / 60)
        + SCORE_W_DEEP_PLUS_REM * deep_plus_rem
        + SCORE_W_WAKE_PCT * wake_pct
    )
    return round(clamp(score, 0, 100)) / 100


# =============================================================================
# Parsing
# =============================================================================


STAGE_LEVELS = ("deep", "light", "rem", "wake")


def parse_stage_summary(levels: dict) -> SleepStages | None:
    """Stage minutes from a "stages" summary; None for "classic" records (asleep/restless/awake)."""
    summary = levels.get("summary") or {}
    if not all(summary.get(level) for level in STAGE_LEVELS):
        return None
    return SleepStages(**{level: summary[level]["minutes"] for level in STAGE_LEVELS})


def parse_v12_record(raw: dict, timezone: str | None = None) -> SleepRecord:
    """Convert a tracker API v1.2 record."""
    levels = raw.get("levels") or {}
    stage_data = levels.get("data")

    return SleepRecord(
        log_id=int(raw["logId"]),
        date_of_sleep=date.fromisoformat(raw["dateOfSleep"]),
        start_time=to_local_naive(datetime.fromisoformat(raw["startTime"]), timezone),
        end_time=to_local_naive(datetime.fromisoformat(raw["endTime"]), timezone),
        duration_hours=raw["duration"] / MS_PER_HOUR,
        sleep_score=calculate_sleep_score(raw),
        is_main_sleep=raw.get("isMainSleep", True),
        efficiency=raw.get("efficiency"),
        minutes_asleep=raw.get("minutesAsleep"),
        minutes_awake=raw.get("minutesAwake"),
        stages=parse_stage_summary(levels),
        stage_data=stage_data_from_list(stage_data) if stage_data is not None else None,
    )


def parse_record(raw: dict, timezone: str | None = None) -> SleepRecord:
    """
    Parse one record in either supported format.

    Raises:
        SleepDataFormatError: If the record is neither format
    """
    if not isinstance(raw, dict):
        raise SleepDataFormatError(f"Expected a sleep record object, got {type(raw).__name__}")
    if "durationMs" in raw:
        return record_from_dict(raw, timezone)
    if "levels" in raw or "type" in raw:
        return parse_v12_record(raw, timezone)
    raise SleepDataFormatError("Unrecognized sleep record format: expected v1.2 (stages) data")


def _raw_records(data: object) -> list[dict]:
    if isinstance(data, list):
        if not data:
            return []
        first = data[0]
        if isinstance(first, dict) and isinstance(first.get("sleep"), list):
            return [r for page in data for r in (page.get("sleep") or [])]
        return data
    if isinstance(data, dict) and "sleep" in data:
        return data["sleep"] or []
    raise SleepDataFormatError("Unrecognized sleep data format")


def parse_sleep_data(data: object, timezone: str | None = None) -> list[SleepRecord]:
    """
    Parse decoded JSON into sleep records.

    Args:
        data: A page dict, a list of pages or a flat list of records
        timezone: IANA zone that timestamps with an offset are converted to

    Returns:
        Records sorted by start time, first occurrence of each log id kept

    Raises:
        SleepDataFormatError: If the data or a record has an unrecognized shape
    """
    records = sorted(
        (parse_record(raw, timezone) for raw in _raw_records(data)),
        key=lambda r: r.start_time,
    )

    seen: set[int] = set()
    unique: list[SleepRecord] = []
    for record in records:
        if record.log_id in seen:
            continue
        seen.add(record.log_id)
        unique.append(record)

    if len(unique) < len(records):
        logger.debug("Dropped %d duplicate sleep records", len(records) - len(unique))

    return unique


def load_sleep_file(path: str | Path, timezone: str | None = None) -> list[SleepRecord]:
    """Read and parse a sleep JSON file."""
    with open(path) as f:
        data = json.load(f)
    return parse_sleep_data(data, timezone)


# =============================================================================
# Forecast horizon
# =============================================================================

RECENT_DATA_DAYS = 2  # Data ending more recently than this gets a forecast day


def default_forecast_days(records: list[SleepRecord], timezone: str | None = None) -> int:
    """
    One forecast day when the log is current, otherwise none.

    Args:
        records: Parsed sleep records
        timezone: IANA zone the log's wall-clock times are in (host zone if None)
    """
    if not records:
        return 0

    now = get_current_datetime_in_tz(timezone) if timezone else datetime.now()
    last_end = max(r.end_time for r in records)
    return 1 if (now - last_end).total_seconds() < RECENT_DATA_DAYS * 86400 else 0
