"""Tests for the plan service: access rules, persistence and plan history."""

from __future__ import annotations

import threading

import pytest

from tripplanner.domain.bus import EventBus
from tripplanner.domain.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tripplanner.domain.handlers import HandlerRegistry
from tripplanner.domain.models import ActivityInput, ActivityUpdate, TimelineEntryType
from tripplanner.repos.memory import (
    ActivityRepository,
    PlanLocks,
    PlanRepository,
    ShareRepository,
    TimelineRepository,
)
from tripplanner.services.plans import PlanService

OWNER = "alice"
FRIEND = "bob"
STRANGER = "mallory"


@pytest.fixture()
def env():
    """Fresh bus + repos + service for each test."""
    bus = EventBus()
    plan_repo = PlanRepository()
    activity_repo = ActivityRepository()
    share_repo = ShareRepository()
    timeline_repo = TimelineRepository()
    HandlerRegistry(bus=bus, plan_repo=plan_repo, timeline_repo=timeline_repo)

    class Env:
        pass

    e = Env()
    e.plan_repo = plan_repo
    e.activity_repo = activity_repo
    e.share_repo = share_repo
    e.timeline_repo = timeline_repo
    e.service = PlanService(
        bus=bus,
        plan_repo=plan_repo,
        activity_repo=activity_repo,
        share_repo=share_repo,
        timeline_repo=timeline_repo,
        locks=PlanLocks(),
    )
    return e


def _activity(title: str, day: str = "2025-06-01", start=None, end=None) -> ActivityInput:
    return ActivityInput(
        title=title,
        destination="Lisbon",
        start_date=day,
        end_date=day,
        start_time=start,
        end_time=end,
    )


def _make_plan(env, *activities, shared_with=None):
    return env.service.create_plan(OWNER, "Portugal", list(activities), shared_with)


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


def test_create_plan_persists_activities_and_shares(env):
    plan = _make_plan(
        env,
        _activity("Tram 28", start="09:00", end="10:00"),
        _activity("Belem", day="2025-06-02"),
        shared_with=[FRIEND, OWNER, FRIEND],
    )

    assert plan.title == "Portugal"
    assert plan.owner_id == OWNER
    assert [a.title for a in plan.activities] == ["Tram 28", "Belem"]
    assert plan.shared_with == [FRIEND]
    assert len(env.activity_repo.list_for_plan(plan.id)) == 2


def test_create_plan_requires_title(env):
    with pytest.raises(ValidationError, match="plan title required"):
        env.service.create_plan(OWNER, "   ", [])


def test_create_plan_conflict_persists_nothing(env):
    with pytest.raises(ConflictError):
        _make_plan(
            env,
            _activity("One", start="09:00", end="10:00"),
            _activity("Two", start="10:00", end="11:00"),
        )
    assert env.plan_repo.list_all() == []
    assert env.activity_repo._store == {}


def test_list_plans_includes_shared(env):
    shared = _make_plan(env, shared_with=[FRIEND])
    env.service.create_plan(OWNER, "Private", [])

    assert [p.id for p in env.service.list_plans(FRIEND)] == [shared.id]
    assert len(env.service.list_plans(OWNER)) == 2
    assert env.service.list_plans(STRANGER) == []


def test_shared_user_can_read_but_not_write(env):
    plan = _make_plan(env, shared_with=[FRIEND])

    assert env.service.get_plan(FRIEND, plan.id).id == plan.id
    with pytest.raises(PermissionDeniedError, match="Only the plan owner can add activities"):
        env.service.add_activity(FRIEND, plan.id, _activity("Sneaky"))
    with pytest.raises(PermissionDeniedError):
        env.service.rename_plan(FRIEND, plan.id, "Mine now")


def test_stranger_cannot_read(env):
    plan = _make_plan(env)
    with pytest.raises(PermissionDeniedError):
        env.service.get_plan(STRANGER, plan.id)


def test_missing_plan(env):
    with pytest.raises(NotFoundError, match="Plan not found"):
        env.service.get_plan(OWNER, "nope")


def test_rename_plan_trims(env):
    plan = _make_plan(env)
    renamed = env.service.rename_plan(OWNER, plan.id, "  Lisbon & Porto ")
    assert renamed.title == "Lisbon & Porto"


def test_rename_plan_rejects_blank(env):
    plan = _make_plan(env)
    with pytest.raises(ValidationError):
        env.service.rename_plan(OWNER, plan.id, "")


def test_delete_plan_cascades(env):
    plan = _make_plan(env, _activity("Tram 28"), shared_with=[FRIEND])
    env.service.delete_plan(OWNER, plan.id)

    assert env.plan_repo.get(plan.id) is None
    assert env.activity_repo.list_for_plan(plan.id) == []
    assert env.share_repo.users_for_plan(plan.id) == []
    assert env.timeline_repo.list_for_plan(plan.id) == []


def test_share_plan_ignores_owner_and_duplicates(env):
    plan = _make_plan(env)
    assert env.service.share_plan(OWNER, plan.id, [FRIEND, OWNER]) == [FRIEND]
    assert env.service.share_plan(OWNER, plan.id, [FRIEND, "carol"]) == [FRIEND, "carol"]


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------


def test_add_activity_checks_existing(env):
    plan = _make_plan(env, _activity("Tram 28", start="09:00", end="10:00"))

    with pytest.raises(ConflictError, match="Tram 28"):
        env.service.add_activity(OWNER, plan.id, _activity("Fado", start="10:00", end="12:00"))

    added = env.service.add_activity(OWNER, plan.id, _activity("Fado", start="20:00", end="22:00"))
    assert added.plan_id == plan.id
    assert added.owner_id == OWNER


def test_activities_listed_in_schedule_order(env):
    plan = _make_plan(env)
    env.service.add_activity(OWNER, plan.id, _activity("Evening", start="18:00", end="19:00"))
    env.service.add_activity(OWNER, plan.id, _activity("All day", day="2025-05-31"))
    env.service.add_activity(OWNER, plan.id, _activity("Morning", start="08:00", end="09:00"))

    titles = [a.title for a in env.service.get_plan(OWNER, plan.id).activities]
    assert titles == ["All day", "Morning", "Evening"]


def test_update_activity_excludes_itself(env):
    plan = _make_plan(env, _activity("Tram 28", start="09:00", end="10:00"))
    activity = plan.activities[0]

    updated = env.service.update_activity(OWNER, activity.id, ActivityUpdate(end_time="10:30"))
    assert updated.end_time == "10:30"
    assert env.activity_repo.get(activity.id).end_time == "10:30"


def test_update_activity_conflict_keeps_stored_record(env):
    plan = _make_plan(
        env,
        _activity("Tram 28", start="09:00", end="10:00"),
        _activity("Lunch", start="12:00", end="13:00"),
    )
    tram = plan.activities[0]

    with pytest.raises(ConflictError, match="Lunch"):
        env.service.update_activity(OWNER, tram.id, ActivityUpdate(end_time="12:30"))
    assert env.activity_repo.get(tram.id).end_time == "10:00"


def test_update_missing_activity(env):
    with pytest.raises(NotFoundError, match="Activity not found"):
        env.service.update_activity(OWNER, "nope", ActivityUpdate(title="x"))


def test_delete_activity_frees_the_slot(env):
    plan = _make_plan(env, _activity("Tram 28", start="09:00", end="10:00"))
    env.service.delete_activity(OWNER, plan.activities[0].id)

    added = env.service.add_activity(OWNER, plan.id, _activity("Fado", start="09:00", end="10:00"))
    assert [a.id for a in env.activity_repo.list_for_plan(plan.id)] == [added.id]


def test_delete_activity_requires_owner(env):
    plan = _make_plan(env, _activity("Tram 28"), shared_with=[FRIEND])
    with pytest.raises(PermissionDeniedError):
        env.service.delete_activity(FRIEND, plan.activities[0].id)


def test_concurrent_adds_store_at_most_one_of_two_clashing_activities(env):
    plan = _make_plan(env)
    errors = []

    def add(title):
        try:
            env.service.add_activity(OWNER, plan.id, _activity(title, start="09:00", end="10:00"))
        except ConflictError as exc:
            errors.append(exc)

    threads = [threading.Thread(target=add, args=(f"Tour {i}",)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(env.activity_repo.list_for_plan(plan.id)) == 1
    assert len(errors) == 7


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


def test_history_records_changes_in_order(env):
    plan = _make_plan(env, _activity("Tram 28"), shared_with=[FRIEND])
    activity = env.service.add_activity(OWNER, plan.id, _activity("Sintra", day="2025-06-03"))
    env.service.update_activity(OWNER, activity.id, ActivityUpdate(title="Sintra palaces"))
    env.service.delete_activity(OWNER, activity.id)
    env.service.rename_plan(OWNER, plan.id, "Portugal 2025")

    types = [e.type for e in env.service.plan_history(FRIEND, plan.id)]
    assert types == [
        TimelineEntryType.PLAN_CREATED,
        TimelineEntryType.SHARED,
        TimelineEntryType.ACTIVITY_ADDED,
        TimelineEntryType.ACTIVITY_UPDATED,
        TimelineEntryType.ACTIVITY_REMOVED,
        TimelineEntryType.PLAN_RENAMED,
    ]


def test_history_update_lists_changed_fields(env):
    plan = _make_plan(env, _activity("Tram 28"))
    env.service.update_activity(
        OWNER, plan.activities[0].id, ActivityUpdate(start_time="09:00", title="Tram")
    )
    entry = env.service.plan_history(OWNER, plan.id)[-1]
    assert entry.payload["changed_fields"] == ["start_time", "title"]


# ---------------------------------------------------------------------------
# Deletes racing with writes
# ---------------------------------------------------------------------------


class _HookedPlanRepository(PlanRepository):
    """Runs ``after_owner_lookup`` once, right after the next ownership lookup."""

    def __init__(self) -> None:
        super().__init__()
        self.after_owner_lookup = None

    def owner_of(self, plan_id: str) -> str | None:
        owner = super().owner_of(plan_id)
        hook, self.after_owner_lookup = self.after_owner_lookup, None
        if hook is not None:
            hook()
        return owner


@pytest.fixture()
def racing():
    bus = EventBus()
    plan_repo = _HookedPlanRepository()
    activity_repo = ActivityRepository()
    timeline_repo = TimelineRepository()
    HandlerRegistry(bus=bus, plan_repo=plan_repo, timeline_repo=timeline_repo)
    service = PlanService(
        bus=bus,
        plan_repo=plan_repo,
        activity_repo=activity_repo,
        share_repo=ShareRepository(),
        timeline_repo=timeline_repo,
    )
    return service, plan_repo, activity_repo


def test_add_activity_after_plan_deleted_leaves_no_orphan(racing):
    service, plan_repo, activity_repo = racing
    plan = service.create_plan(OWNER, "Portugal", [])
    plan_repo.after_owner_lookup = lambda: service.delete_plan(OWNER, plan.id)

    with pytest.raises(NotFoundError, match="Plan not found"):
        service.add_activity(OWNER, plan.id, _activity("Tram 28"))

    assert plan_repo.get(plan.id) is None
    assert activity_repo._store == {}


def test_rename_after_plan_deleted_is_not_found(racing):
    service, plan_repo, _ = racing
    plan = service.create_plan(OWNER, "Portugal", [])
    plan_repo.after_owner_lookup = lambda: service.delete_plan(OWNER, plan.id)

    with pytest.raises(NotFoundError, match="Plan not found"):
        service.rename_plan(OWNER, plan.id, "Spain")


def test_update_activity_after_plan_deleted_is_not_found(racing):
    service, plan_repo, activity_repo = racing
    plan = service.create_plan(OWNER, "Portugal", [_activity("Tram 28")])
    plan_repo.after_owner_lookup = lambda: service.delete_plan(OWNER, plan.id)

    with pytest.raises(NotFoundError):
        service.update_activity(OWNER, plan.activities[0].id, ActivityUpdate(title="Tram"))

    assert activity_repo._store == {}


def test_plan_lock_survives_plan_deletion(env):
    """Deleting a plan keeps its lock, so late waiters and new writers share one lock."""
    plan = _make_plan(env)
    with env.service.locks.hold(plan.id):
        before = env.service.locks._locks[plan.id]

    env.service.delete_plan(OWNER, plan.id)

    assert env.service.locks._locks[plan.id] is before
