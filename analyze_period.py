#!/usr/bin/env python3
"""
Diagnose a date range of a sleep log and print the result as JSON.

Usage: python3 analyze_period.py <sleep.json> [start_date] [end_date] [--timezone TZ]

Dates are ISO (YYYY-MM-DD) and default to the first and last attributed
sleep dates of the log. The output holds the default estimator's global tau,
its anchors, estimated days and the raw records inside the range (with the
anchor weight and tier each record would get), plus a periodogram of the
records in the range.

Security: This script only reads from the specified JSON file and writes
to stdout. It does not accept any code or commands as input.
"""

import json
import sys
from datetime import date

from circadian_phase import (
    analysis_to_dict,
    analyze_circadian,
    build_periodogram_anchors,
    compute_periodogram,
    load_sleep_file,
    periodogram_to_dict,
)
from circadian_phase.regression.anchors import classify_tier, compute_anchor_weight
from circadian_phase.serialization import anchors_to_dict, record_to_dict


def usage() -> str:
    return "Usage: analyze_period.py <sleep.json> [start_date] [end_date] [--timezone TZ]"


def parse_args(argv: list[str]) -> dict:
    """Split positional arguments from the --timezone option; dates are validated here."""
    positional: list[str] = []
    options: dict = {"timezone": None}

    args = iter(argv)
    for arg in args:
        if arg == "--timezone":
            options["timezone"] = next(args)
        elif arg.startswith("--"):
            raise ValueError(f"Unknown option: {arg}")
        else:
            positional.append(arg)

    if not 1 <= len(positional) <= 3:
        raise ValueError("Expected a sleep file and an optional start and end date")

    options["sleep_file"] = positional[0]
    options["start_date"] = date.fromisoformat(positional[1]) if len(positional) > 1 else None
    options["end_date"] = date.fromisoformat(positional[2]) if len(positional) > 2 else None
    return options


def analyze_period(records: list, start_date: date | None = None, end_date: date | None = None) -> dict:
    """
    Range diagnostics for already-loaded records.

    Returns:
        Dict with "startDate", "endDate", "globalTau", "globalDailyDrift",
        "anchorCount", "anchors", "records", "days" and "periodogram"
    """
    if not records:
        raise ValueError("No sleep records to analyze")

    start = start_date or min(r.date_of_sleep for r in records)
    end = end_date or max(r.date_of_sleep for r in records)
    start_str, end_str = start.isoformat(), end.isoformat()

    analysis = analyze_circadian(records)
    in_range = sorted((r for r in records if start <= r.date_of_sleep <= end), key=lambda r: r.start_time)

    record_rows = []
    for record in in_range:
        row = record_to_dict(record)
        row["anchorWeight"] = compute_anchor_weight(record)
        row["tier"] = classify_tier(record) if row["anchorWeight"] is not None else None
        record_rows.append(row)

    days = analysis_to_dict(analysis)["days"]

    return {
        "startDate": start_str,
        "endDate": end_str,
        "globalTau": analysis.global_tau,
        "globalDailyDrift": analysis.global_daily_drift,
        "anchorCount": len(analysis.anchors),
        "anchors": anchors_to_dict([a for a in analysis.anchors if start_str <= a.date <= end_str]),
        "records": record_rows,
        "days": [d for d in days if start_str <= d["date"] <= end_str and not d["isForecast"]],
        "periodogram": periodogram_to_dict(compute_periodogram(build_periodogram_anchors(in_range))),
    }


def main() -> None:
    try:
        options = parse_args(sys.argv[1:])
    except (ValueError, StopIteration):
        print(json.dumps({"error": usage()}))
        sys.exit(1)

    sleep_file = options["sleep_file"]

    try:
        records = load_sleep_file(sleep_file, options["timezone"])
        result = analyze_period(records, options["start_date"], options["end_date"])

        print(json.dumps(result))

    except FileNotFoundError:
        print(json.dumps({"error": f"Sleep file not found: {sleep_file}"}))
        sys.exit(1)
    except json.JSONDecodeError as e:
        print(json.dumps({"error": f"Invalid JSON in sleep file: {e}"}))
        sys.exit(1)
    except KeyError as e:
        print(json.dumps({"error": f"Missing required field: {e}"}))
        sys.exit(1)
    except Exception as e:
        print(json.dumps({"error": f"Analysis failed: {e}"}))
        sys.exit(1)


if __name__ == "__main__":
    main()
