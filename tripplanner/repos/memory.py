"""In-memory repositories for plans, activities, shares and plan history."""

from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager

from tripplanner.domain.models import Activity, Plan, TimelineEntry


def _schedule_key(activity: Activity) -> tuple:
    # Missing times sort before any clock time, like NULLs in an ascending SQL sort.
    return (
        activity.start_date,
        activity.start_time is not None,
        activity.start_time or "",
        activity.end_date,
        activity.end_time is not None,
        activity.end_time or "",
    )


class PlanRepository:
    """Dict-backed store for Plan instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Plan] = {}

    def add(self, plan: Plan) -> None:
        self._store[plan.id] = plan

    def get(self, plan_id: str) -> Plan | None:
        return self._store.get(plan_id)

    def owner_of(self, plan_id: str) -> str | None:
        plan = self._store.get(plan_id)
        return plan.owner_id if plan is not None else None

    def list_all(self) -> list[Plan]:
        return sorted(self._store.values(), key=lambda p: p.created_at)

    def rename(self, plan_id: str, title: str) -> Plan | None:
        plan = self._store.get(plan_id)
        if plan is not None:
            plan.title = title
        return plan

    def delete(self, plan_id: str) -> None:
        self._store.pop(plan_id, None)


class ActivityRepository:
    """Dict-backed store for Activity instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Activity] = {}

    def add(self, activity: Activity) -> None:
        self._store[activity.id] = activity

    def add_many(self, activities: list[Activity]) -> None:
        for activity in activities:
            self._store[activity.id] = activity

    def get(self, activity_id: str) -> Activity | None:
        return self._store.get(activity_id)

    def replace(self, activity: Activity) -> None:
        self._store[activity.id] = activity

    def list_for_plan(self, plan_id: str) -> list[Activity]:
        """Return a plan's activities ordered by start, then end, date and time."""
        return sorted(
            (a for a in self._store.values() if a.plan_id == plan_id),
            key=_schedule_key,
        )

    def delete(self, activity_id: str) -> None:
        self._store.pop(activity_id, None)

    def delete_for_plan(self, plan_id: str) -> None:
        to_remove = [aid for aid, a in self._store.items() if a.plan_id == plan_id]
        for aid in to_remove:
            del self._store[aid]


class ShareRepository:
    """Set-backed store of (plan_id, user_id) read-only shares."""

    def __init__(self) -> None:
        self._shares: set[tuple[str, str]] = set()

    def add(self, plan_id: str, user_id: str) -> None:
        self._shares.add((plan_id, user_id))

    def users_for_plan(self, plan_id: str) -> list[str]:
        return sorted(uid for pid, uid in self._shares if pid == plan_id)

    def plans_for_user(self, user_id: str) -> set[str]:
        return {pid for pid, uid in self._shares if uid == user_id}

    def is_shared(self, plan_id: str, user_id: str) -> bool:
        return (plan_id, user_id) in self._shares

    def delete_for_plan(self, plan_id: str) -> None:
        self._shares = {(pid, uid) for pid, uid in self._shares if pid != plan_id}


class TimelineRepository:
    """List-backed store for TimelineEntry instances."""

    def __init__(self) -> None:
        self._entries: list[TimelineEntry] = []

    def add(self, entry: TimelineEntry) -> None:
        self._entries.append(entry)

    def list_for_plan(self, plan_id: str) -> list[TimelineEntry]:
        return sorted(
            [e for e in self._entries if e.plan_id == plan_id],
            key=lambda e: e.timestamp,
        )

    def delete_for_plan(self, plan_id: str) -> None:
        self._entries = [e for e in self._entries if e.plan_id != plan_id]


class PlanLocks:
    """One lock per plan, so read-check-write sequences on a plan never interleave."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = defaultdict(threading.Lock)

    @contextmanager
    def hold(self, plan_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks[plan_id]
        with lock:
            yield
