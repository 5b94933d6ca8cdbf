"""Service for detecting overlapping activities within a plan."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, time

from dateutil.parser import isoparse

from tripplanner.domain.models import Activity, Interval

START_OF_DAY = time(0, 0, 0)
END_OF_DAY = time(23, 59, 59)


def to_instant(day: date, clock: str | None, default: time) -> datetime:
    """Combine a calendar day with an ``HH:MM`` clock time, or *default* when absent."""
    if not clock:
        return datetime.combine(day, default)
    hours, minutes = clock.split(":")
    return datetime.combine(day, time(int(hours), int(minutes)))


def derive_interval(activity: Activity) -> Interval:
    """Return the interval of an activity whose fields were already validated."""
    return Interval(
        start=to_instant(isoparse(activity.start_date).date(), activity.start_time, START_OF_DAY),
        end=to_instant(isoparse(activity.end_date).date(), activity.end_time, END_OF_DAY),
    )


def intervals_overlap(a: Interval, b: Interval) -> bool:
    """Closed-interval overlap test.

    Overlap rule: conflict if a.start <= b.end AND a.end >= b.start.
    Touching endpoints (a.end == b.start) ARE considered conflicts.
    """
    return a.start <= b.end and a.end >= b.start


def find_first_conflict(
    candidate: Interval,
    activities: Iterable[Activity],
    exclude_id: str | None = None,
) -> Activity | None:
    """Return the first activity, in iteration order, whose interval overlaps *candidate*."""
    for activity in activities:
        if exclude_id is not None and activity.id == exclude_id:
            continue
        if intervals_overlap(candidate, derive_interval(activity)):
            return activity
    return None
