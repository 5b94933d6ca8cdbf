"""Domain models for travel plans and their activities."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class TimelineEntryType(StrEnum):
    PLAN_CREATED = "plan_created"
    PLAN_RENAMED = "plan_renamed"
    ACTIVITY_ADDED = "activity_added"
    ACTIVITY_UPDATED = "activity_updated"
    ACTIVITY_REMOVED = "activity_removed"
    SHARED = "shared"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class ActivityInput(BaseModel):
    """Raw activity fields as submitted by a client.

    Values are kept as text; the scheduler decides whether they are valid.
    """

    title: str | None = None
    destination: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    details: str | None = None


class ActivityUpdate(BaseModel):
    """Partial activity edit. Only explicitly set fields are merged."""

    title: str | None = None
    destination: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    details: str | None = None


class Activity(ActivityInput):
    id: str = Field(default_factory=_new_id)
    plan_id: str
    owner_id: str


class Interval(BaseModel):
    """Derived wall-clock range of an activity, both ends inclusive."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime


class Plan(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    owner_id: str
    created_at: datetime = Field(default_factory=_utcnow)


class PlanDetail(Plan):
    activities: list[Activity] = Field(default_factory=list)
    shared_with: list[str] = Field(default_factory=list)


class TimelineEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    plan_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    type: TimelineEntryType
    payload: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class CreatePlanRequest(BaseModel):
    title: str
    activities: list[ActivityInput] = Field(default_factory=list)
    shared_with: list[str] = Field(default_factory=list)


class RenamePlanRequest(BaseModel):
    title: str


class SharePlanRequest(BaseModel):
    user_ids: list[str] = Field(min_length=1)


class ShareResponse(BaseModel):
    plan_id: str
    shared_with: list[str]


class ItineraryRequest(BaseModel):
    destination: str = Field(min_length=1)
    start_date: str
    end_date: str
    start_time: str | None = None
    end_time: str | None = None


class ItineraryDraft(BaseModel):
    destination: str
    activities: list[ActivityInput] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list)
