#!/usr/bin/env python3
"""
Analyze a sleep log and print the circadian analysis as JSON.

Usage: python3 analyze_sleep.py <sleep.json> [algorithm_id] [--forecast-days N] [--timezone TZ]

The sleep file may be a tracker API v1.2 export (single page or list of
pages) or a flat list of exported records. Without --forecast-days, one
forecast day is added when the log ends within the last two days.

Security: This script only reads from the specified JSON file and writes
to stdout. It does not accept any code or commands as input.
"""

import json
import sys

from circadian_phase import (
    DEFAULT_ALGORITHM_ID,
    analysis_to_dict,
    analyze_with_algorithm,
    default_forecast_days,
    list_algorithms,
    load_sleep_file,
)


def usage() -> str:
    algorithms = ", ".join(a.algorithm_id for a in list_algorithms())
    return (
        "Usage: analyze_sleep.py <sleep.json> [algorithm_id] [--forecast-days N] [--timezone TZ] "
        f"(algorithms: {algorithms})"
    )


def parse_args(argv: list[str]) -> dict:
    """Split positional arguments from --forecast-days / --timezone options."""
    positional: list[str] = []
    options: dict = {"forecast_days": None, "timezone": None}

    args = iter(argv)
    for arg in args:
        if arg == "--forecast-days":
            options["forecast_days"] = int(next(args))
        elif arg == "--timezone":
            options["timezone"] = next(args)
        elif arg.startswith("--"):
            raise ValueError(f"Unknown option: {arg}")
        else:
            positional.append(arg)

    if not 1 <= len(positional) <= 2:
        raise ValueError("Expected a sleep file and an optional algorithm id")

    options["sleep_file"] = positional[0]
    options["algorithm_id"] = positional[1] if len(positional) == 2 else DEFAULT_ALGORITHM_ID
    return options


def main() -> None:
    try:
        options = parse_args(sys.argv[1:])
    except (ValueError, StopIteration):
        print(json.dumps({"error": usage()}))
        sys.exit(1)

    sleep_file = options["sleep_file"]

    try:
        records = load_sleep_file(sleep_file, options["timezone"])

        forecast_days = options["forecast_days"]
        if forecast_days is None:
            forecast_days = default_forecast_days(records, options["timezone"])

        analysis = analyze_with_algorithm(options["algorithm_id"], records, forecast_days)

        print(json.dumps(analysis_to_dict(analysis)))

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
