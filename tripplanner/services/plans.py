"""Plan service: the thin layer between storage and the activity scheduler."""

from __future__ import annotations

import logging

from tripplanner.domain.bus import EventBus
from tripplanner.domain.errors import NotFoundError, PermissionDeniedError, ValidationError
from tripplanner.domain.events import (
    ActivityAdded,
    ActivityRemoved,
    ActivityUpdated,
    PlanCreated,
    PlanRenamed,
    PlanShared,
)
from tripplanner.domain.models import (
    Activity,
    ActivityInput,
    ActivityUpdate,
    Plan,
    PlanDetail,
    TimelineEntry,
)
from tripplanner.repos.memory import (
    ActivityRepository,
    PlanLocks,
    PlanRepository,
    ShareRepository,
    TimelineRepository,
)
from tripplanner.services.scheduler import (
    prepare_bulk_create,
    prepare_create,
    prepare_update,
)

logger = logging.getLogger(__name__)


class PlanService:
    """Plan and activity use cases over explicitly injected repositories.

    Writes to one plan are serialized with ``PlanLocks`` so the scheduler
    always checks against the same snapshot that the write lands on.
    """

    def __init__(
        self,
        bus: EventBus,
        plan_repo: PlanRepository,
        activity_repo: ActivityRepository,
        share_repo: ShareRepository,
        timeline_repo: TimelineRepository,
        locks: PlanLocks | None = None,
    ) -> None:
        self.bus = bus
        self.plan_repo = plan_repo
        self.activity_repo = activity_repo
        self.share_repo = share_repo
        self.timeline_repo = timeline_repo
        self.locks = locks or PlanLocks()

    # ------------------------------------------------------------------
    # Access checks
    # ------------------------------------------------------------------

    def _get_plan(self, plan_id: str) -> Plan:
        plan = self.plan_repo.get(plan_id)
        if plan is None:
            raise NotFoundError("Plan not found")
        return plan

    def _require_owner(self, user_id: str, plan_id: str, action: str) -> None:
        owner_id = self.plan_repo.owner_of(plan_id)
        if owner_id is None:
            raise NotFoundError("Plan not found")
        if owner_id != user_id:
            raise PermissionDeniedError(f"Only the plan owner can {action}")

    def _get_visible_plan(self, user_id: str, plan_id: str) -> Plan:
        plan = self._get_plan(plan_id)
        if plan.owner_id != user_id and not self.share_repo.is_shared(plan_id, user_id):
            raise PermissionDeniedError("You do not have access to this plan")
        return plan

    def _get_activity(self, activity_id: str) -> Activity:
        activity = self.activity_repo.get(activity_id)
        if activity is None:
            raise NotFoundError("Activity not found")
        return activity

    def _detail(self, plan: Plan) -> PlanDetail:
        return PlanDetail(
            **plan.model_dump(),
            activities=self.activity_repo.list_for_plan(plan.id),
            shared_with=self.share_repo.users_for_plan(plan.id),
        )

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def create_plan(
        self,
        user_id: str,
        title: str,
        activities: list[ActivityInput],
        shared_with: list[str] | None = None,
    ) -> PlanDetail:
        """Create a plan with its initial activities in one all-or-nothing step."""
        title = (title or "").strip()
        if not title:
            raise ValidationError("plan title required", "title")

        plan = Plan(title=title, owner_id=user_id)
        prepared = prepare_bulk_create(activities, plan_id=plan.id, owner_id=user_id)

        with self.locks.hold(plan.id):
            self.plan_repo.add(plan)
            self.activity_repo.add_many(prepared)
            shared = [uid for uid in dict.fromkeys(shared_with or []) if uid and uid != user_id]
            for uid in shared:
                self.share_repo.add(plan.id, uid)

        logger.info("Created plan %s with %d activities", plan.id, len(prepared))
        self.bus.publish(
            PlanCreated(plan_id=plan.id, title=plan.title, activity_ids=[a.id for a in prepared])
        )
        if shared:
            self.bus.publish(PlanShared(plan_id=plan.id, user_ids=shared))
        return self._detail(plan)

    def get_plan(self, user_id: str, plan_id: str) -> PlanDetail:
        return self._detail(self._get_visible_plan(user_id, plan_id))

    def list_plans(self, user_id: str) -> list[PlanDetail]:
        """Return every plan the user owns or that was shared with them."""
        shared_ids = self.share_repo.plans_for_user(user_id)
        return [
            self._detail(plan)
            for plan in self.plan_repo.list_all()
            if plan.owner_id == user_id or plan.id in shared_ids
        ]

    def rename_plan(self, user_id: str, plan_id: str, title: str) -> Plan:
        self._require_owner(user_id, plan_id, "edit this plan")
        title = (title or "").strip()
        if not title:
            raise ValidationError("plan title required", "title")

        with self.locks.hold(plan_id):
            self._require_owner(user_id, plan_id, "edit this plan")
            plan = self.plan_repo.rename(plan_id, title)
        logger.info("Renamed plan %s", plan_id)
        self.bus.publish(PlanRenamed(plan_id=plan_id, title=title))
        return plan

    def delete_plan(self, user_id: str, plan_id: str) -> None:
        self._require_owner(user_id, plan_id, "delete this plan")
        with self.locks.hold(plan_id):
            self._require_owner(user_id, plan_id, "delete this plan")
            self.share_repo.delete_for_plan(plan_id)
            self.activity_repo.delete_for_plan(plan_id)
            self.timeline_repo.delete_for_plan(plan_id)
            self.plan_repo.delete(plan_id)
        logger.info("Deleted plan %s", plan_id)

    def share_plan(self, user_id: str, plan_id: str, user_ids: list[str]) -> list[str]:
        """Share a plan read-only. Returns everyone the plan is now shared with."""
        self._require_owner(user_id, plan_id, "share this plan")
        added = []
        with self.locks.hold(plan_id):
            self._require_owner(user_id, plan_id, "share this plan")
            for uid in dict.fromkeys(user_ids):
                if not uid or uid == user_id or self.share_repo.is_shared(plan_id, uid):
                    continue
                self.share_repo.add(plan_id, uid)
                added.append(uid)

        if added:
            logger.info("Shared plan %s with %d user(s)", plan_id, len(added))
            self.bus.publish(PlanShared(plan_id=plan_id, user_ids=added))
        return self.share_repo.users_for_plan(plan_id)

    def plan_history(self, user_id: str, plan_id: str) -> list[TimelineEntry]:
        self._get_visible_plan(user_id, plan_id)
        return self.timeline_repo.list_for_plan(plan_id)

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    def add_activity(self, user_id: str, plan_id: str, data: ActivityInput) -> Activity:
        self._require_owner(user_id, plan_id, "add activities")
        with self.locks.hold(plan_id):
            # The plan may have been deleted since the first check.
            self._require_owner(user_id, plan_id, "add activities")
            siblings = self.activity_repo.list_for_plan(plan_id)
            activity = prepare_create(data, siblings, plan_id=plan_id, owner_id=user_id)
            self.activity_repo.add(activity)

        logger.info("Added activity %s to plan %s", activity.id, plan_id)
        self.bus.publish(
            ActivityAdded(plan_id=plan_id, activity_id=activity.id, title=activity.title)
        )
        return activity

    def update_activity(
        self, user_id: str, activity_id: str, update: ActivityUpdate
    ) -> Activity:
        existing = self._get_activity(activity_id)
        plan_id = existing.plan_id
        self._require_owner(user_id, plan_id, "edit activities")

        with self.locks.hold(plan_id):
            # Re-read under the lock; the record or its plan may be gone by now.
            self._require_owner(user_id, plan_id, "edit activities")
            existing = self._get_activity(activity_id)
            siblings = self.activity_repo.list_for_plan(plan_id)
            updated = prepare_update(activity_id, update, existing, siblings)
            self.activity_repo.replace(updated)

        logger.info("Updated activity %s in plan %s", activity_id, plan_id)
        self.bus.publish(
            ActivityUpdated(
                plan_id=plan_id,
                activity_id=activity_id,
                changed_fields=sorted(update.model_fields_set),
            )
        )
        return updated

    def delete_activity(self, user_id: str, activity_id: str) -> None:
        """Remove an activity. Removal never needs a conflict check."""
        activity = self._get_activity(activity_id)
        self._require_owner(user_id, activity.plan_id, "delete activities")

        with self.locks.hold(activity.plan_id):
            self._require_owner(user_id, activity.plan_id, "delete activities")
            self._get_activity(activity_id)
            self.activity_repo.delete(activity_id)

        logger.info("Deleted activity %s from plan %s", activity_id, activity.plan_id)
        self.bus.publish(
            ActivityRemoved(
                plan_id=activity.plan_id, activity_id=activity_id, title=activity.title
            )
        )
