"""
Segment splitting for sleep logs with long data gaps.

Phase cannot be tracked across weeks without observations, so each run of
records is analyzed on its own and the results are stitched afterwards.
"""

from .types import GAP_THRESHOLD_DAYS, SleepRecord


def split_into_segments(records: list[SleepRecord]) -> list[list[SleepRecord]]:
    """
    Split records into runs separated by gaps longer than GAP_THRESHOLD_DAYS.

    Records are sorted by start time first. The gap is measured from the
    latest attributed date seen so far, so an out-of-order date never opens
    a spurious segment.

    Args:
        records: Sleep records in any order

    Returns:
        List of record groups, oldest first (empty for no records)
    """
    if not records:
        return []

    ordered = sorted(records, key=lambda r: r.start_time)
    segments: list[list[SleepRecord]] = [[ordered[0]]]
    latest_date = ordered[0].date_of_sleep

    for record in ordered[1:]:
        gap_days = (record.date_of_sleep - latest_date).days
        if gap_days > GAP_THRESHOLD_DAYS:
            segments.append([record])
        else:
            segments[-1].append(record)
        latest_date = max(latest_date, record.date_of_sleep)

    return segments
