"""Activity validation, normalization and conflict checks.

Every write path that creates or edits activities goes through the
``prepare_*`` functions here before anything is persisted.  The functions are
pure: they hold no state and never touch storage.  Callers must hand in a
consistent, ordered snapshot of the plan's activities and serialize writes per
plan; the first conflict reported depends on the order of that snapshot.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from datetime import date

from dateutil.parser import isoparse

from tripplanner.domain.errors import ConflictError, ValidationError
from tripplanner.domain.models import Activity, ActivityInput, ActivityUpdate, Interval
from tripplanner.services.conflicts import (
    END_OF_DAY,
    START_OF_DAY,
    find_first_conflict,
    intervals_overlap,
    to_instant,
)

logger = logging.getLogger(__name__)

_STRICT_TIME = re.compile(r"([01][0-9]|2[0-3]):[0-5][0-9]")
_LENIENT_TIME = re.compile(r"([0-9]{1,2}):([0-9]{2})\s*(上午|下午|AM|PM)?", re.IGNORECASE)
_ISO_DATE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")

_PM_MARKERS = {"pm", "下午"}
_AM_MARKERS = {"am", "上午"}

# Fields an update may explicitly clear by sending null.
_NULLABLE_FIELDS = {"start_time", "end_time", "details"}


def normalize_time(raw: str | None) -> str | None:
    """Normalize a free-form clock time to 24-hour ``HH:MM``.

    Blank input means "no time" and yields ``None``.  Strict ``HH:MM`` is
    returned as-is.  ``H:MM`` / ``HH:MM`` with an optional AM/PM or 上午/下午
    marker is converted.  Anything else is returned unchanged so the strict
    format check can reject it.
    """
    if raw is None or not raw.strip():
        return None
    if _STRICT_TIME.fullmatch(raw):
        return raw

    match = _LENIENT_TIME.fullmatch(raw.strip())
    if match is None:
        return raw

    hours, minutes, period = match.groups()
    hour = int(hours)
    if period:
        period = period.lower()
        if period in _PM_MARKERS and hour < 12:
            hour += 12
        elif period in _AM_MARKERS and hour == 12:
            hour = 0
    return f"{hour:02d}:{minutes}"


def _parse_date(raw: str | None, field: str) -> date:
    if not isinstance(raw, str) or not _ISO_DATE.fullmatch(raw.strip()):
        raise ValidationError("invalid date", field)
    try:
        return isoparse(raw.strip()).date()
    except ValueError:
        raise ValidationError("invalid date", field) from None


def _checked_time(raw: str | None, field: str) -> str | None:
    normalized = normalize_time(raw)
    if normalized is not None and not _STRICT_TIME.fullmatch(normalized):
        raise ValidationError("invalid time format", field)
    return normalized


def validate_and_derive_interval(activity: ActivityInput) -> Interval:
    """Validate one activity and return its derived interval.

    Checks run in a fixed order so the reported error is deterministic:
    title, destination, dates, times, then start/end ordering.

    Raises:
        ValidationError: on the first failed check.
    """
    if not (activity.title or "").strip():
        raise ValidationError("title required", "title")
    if not (activity.destination or "").strip():
        raise ValidationError("destination required", "destination")

    start_day = _parse_date(activity.start_date, "start_date")
    end_day = _parse_date(activity.end_date, "end_date")
    start_time = _checked_time(activity.start_time, "start_time")
    end_time = _checked_time(activity.end_time, "end_time")

    interval = Interval(
        start=to_instant(start_day, start_time, START_OF_DAY),
        end=to_instant(end_day, end_time, END_OF_DAY),
    )
    if interval.start > interval.end:
        raise ValidationError("start after end")
    return interval


def check_conflicts(
    candidate: Interval,
    existing: Sequence[Activity],
    exclude_id: str | None = None,
) -> None:
    """Raise ``ConflictError`` naming the first sibling that overlaps *candidate*."""
    conflict = find_first_conflict(candidate, existing, exclude_id=exclude_id)
    if conflict is not None:
        logger.debug("Interval %s-%s overlaps %s", candidate.start, candidate.end, conflict.id)
        raise ConflictError(conflict.title)


def _normalized_fields(activity: ActivityInput) -> dict:
    return {
        "title": activity.title.strip(),
        "destination": activity.destination.strip(),
        "start_date": activity.start_date.strip(),
        "end_date": activity.end_date.strip(),
        "start_time": normalize_time(activity.start_time),
        "end_time": normalize_time(activity.end_time),
        "details": activity.details,
    }


def _explicit_changes(update: ActivityUpdate) -> dict:
    changes = {}
    for name in update.model_fields_set:
        value = getattr(update, name)
        if value is None and name not in _NULLABLE_FIELDS:
            continue
        changes[name] = value
    return changes


def prepare_create(
    data: ActivityInput,
    existing_siblings: Sequence[Activity],
    *,
    plan_id: str,
    owner_id: str,
) -> Activity:
    """Validate a new activity against its plan and return the record to persist."""
    interval = validate_and_derive_interval(data)
    check_conflicts(interval, existing_siblings)
    return Activity(**_normalized_fields(data), plan_id=plan_id, owner_id=owner_id)


def prepare_update(
    activity_id: str,
    update: ActivityUpdate,
    existing: Activity,
    siblings: Sequence[Activity],
) -> Activity:
    """Merge *update* onto *existing*, re-validate, and re-check conflicts.

    The activity itself is excluded from the conflict scan, so *siblings* may
    include it.
    """
    merged = existing.model_copy(update=_explicit_changes(update))
    interval = validate_and_derive_interval(merged)
    check_conflicts(interval, siblings, exclude_id=activity_id)
    return Activity(
        **_normalized_fields(merged),
        id=existing.id,
        plan_id=existing.plan_id,
        owner_id=existing.owner_id,
    )


def prepare_bulk_create(
    inputs: Sequence[ActivityInput],
    *,
    plan_id: str,
    owner_id: str,
) -> list[Activity]:
    """Validate a batch of new activities against each other.

    All-or-nothing: every activity is validated in input order, then every
    ordered pair is compared, so a clash between the third and the first
    activity is reported even though the first was accepted earlier.
    """
    intervals = [validate_and_derive_interval(data) for data in inputs]

    for i, interval in enumerate(intervals):
        for j, other in enumerate(intervals):
            if i != j and intervals_overlap(interval, other):
                title = inputs[i].title.strip()
                other_title = inputs[j].title.strip()
                logger.debug("Batch activities %d and %d overlap", i, j)
                raise ConflictError(other_title, title=title)

    return [
        Activity(**_normalized_fields(data), plan_id=plan_id, owner_id=owner_id)
        for data in inputs
    ]
