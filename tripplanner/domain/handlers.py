"""Domain event handlers that record plan history."""

from __future__ import annotations

from tripplanner.domain.bus import EventBus
from tripplanner.domain.events import (
    ActivityAdded,
    ActivityRemoved,
    ActivityUpdated,
    PlanCreated,
    PlanRenamed,
    PlanShared,
)
from tripplanner.domain.models import TimelineEntry, TimelineEntryType
from tripplanner.repos.memory import PlanRepository, TimelineRepository


class HandlerRegistry:
    """Wires history handlers to the bus."""

    def __init__(
        self,
        bus: EventBus,
        plan_repo: PlanRepository,
        timeline_repo: TimelineRepository,
    ) -> None:
        self.bus = bus
        self.plan_repo = plan_repo
        self.timeline_repo = timeline_repo
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(PlanCreated, self.on_plan_created)
        self.bus.subscribe(PlanRenamed, self.on_plan_renamed)
        self.bus.subscribe(PlanShared, self.on_plan_shared)
        self.bus.subscribe(ActivityAdded, self.on_activity_added)
        self.bus.subscribe(ActivityUpdated, self.on_activity_updated)
        self.bus.subscribe(ActivityRemoved, self.on_activity_removed)

    def _record(self, plan_id: str, entry_type: TimelineEntryType, payload: dict) -> None:
        # Events for a plan deleted in the meantime are dropped.
        if self.plan_repo.get(plan_id) is None:
            return
        self.timeline_repo.add(
            TimelineEntry(plan_id=plan_id, type=entry_type, payload=payload)
        )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_plan_created(self, event: PlanCreated) -> None:
        self._record(
            event.plan_id,
            TimelineEntryType.PLAN_CREATED,
            {"title": event.title, "activity_ids": event.activity_ids},
        )

    def on_plan_renamed(self, event: PlanRenamed) -> None:
        self._record(event.plan_id, TimelineEntryType.PLAN_RENAMED, {"title": event.title})

    def on_plan_shared(self, event: PlanShared) -> None:
        self._record(event.plan_id, TimelineEntryType.SHARED, {"user_ids": event.user_ids})

    def on_activity_added(self, event: ActivityAdded) -> None:
        self._record(
            event.plan_id,
            TimelineEntryType.ACTIVITY_ADDED,
            {"activity_id": event.activity_id, "title": event.title},
        )

    def on_activity_updated(self, event: ActivityUpdated) -> None:
        self._record(
            event.plan_id,
            TimelineEntryType.ACTIVITY_UPDATED,
            {"activity_id": event.activity_id, "changed_fields": event.changed_fields},
        )

    def on_activity_removed(self, event: ActivityRemoved) -> None:
        self._record(
            event.plan_id,
            TimelineEntryType.ACTIVITY_REMOVED,
            {"activity_id": event.activity_id, "title": event.title},
        )
