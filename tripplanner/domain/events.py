"""Domain events emitted when plans and activities change."""

from __future__ import annotations

from pydantic import BaseModel


class PlanCreated(BaseModel):
    """Fired when a plan and its initial activities are persisted."""

    plan_id: str
    title: str
    activity_ids: list[str]


class PlanRenamed(BaseModel):
    plan_id: str
    title: str


class PlanShared(BaseModel):
    """Fired when a plan is shared read-only with other users."""

    plan_id: str
    user_ids: list[str]


class ActivityAdded(BaseModel):
    plan_id: str
    activity_id: str
    title: str


class ActivityUpdated(BaseModel):
    plan_id: str
    activity_id: str
    changed_fields: list[str]


class ActivityRemoved(BaseModel):
    plan_id: str
    activity_id: str
    title: str
