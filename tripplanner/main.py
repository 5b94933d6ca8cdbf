"""FastAPI application: entry point for the travel plan service."""

from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from tripplanner.config import Settings
from tripplanner.domain.bus import EventBus
from tripplanner.domain.errors import ERROR_STATUS, TripPlannerError
from tripplanner.domain.handlers import HandlerRegistry
from tripplanner.domain.models import (
    Activity,
    ActivityInput,
    ActivityUpdate,
    CreatePlanRequest,
    ItineraryDraft,
    ItineraryRequest,
    Plan,
    PlanDetail,
    RenamePlanRequest,
    SharePlanRequest,
    ShareResponse,
    TimelineEntry,
)
from tripplanner.logger import configure_logging
from tripplanner.repos.memory import (
    ActivityRepository,
    PlanLocks,
    PlanRepository,
    ShareRepository,
    TimelineRepository,
)
from tripplanner.services.itinerary import draft_itinerary
from tripplanner.services.plans import PlanService

settings = Settings.from_env()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Travel Plan Service")

# ── Singletons (created at import time for simplicity) ────────────────
event_bus = EventBus()
plan_repo = PlanRepository()
activity_repo = ActivityRepository()
share_repo = ShareRepository()
timeline_repo = TimelineRepository()

handler_registry = HandlerRegistry(
    bus=event_bus,
    plan_repo=plan_repo,
    timeline_repo=timeline_repo,
)

plan_service = PlanService(
    bus=event_bus,
    plan_repo=plan_repo,
    activity_repo=activity_repo,
    share_repo=share_repo,
    timeline_repo=timeline_repo,
    locks=PlanLocks(),
)


@app.exception_handler(TripPlannerError)
async def domain_error_handler(request: Request, exc: TripPlannerError) -> JSONResponse:
    status_code = ERROR_STATUS.get(type(exc), 500)
    logger.warning("%s at %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def current_user(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, established by the authentication layer in front of us."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()


# ── Plans ─────────────────────────────────────────────────────────────


@app.post("/plans", response_model=PlanDetail, status_code=201)
def create_plan(payload: CreatePlanRequest, user_id: str = Depends(current_user)) -> PlanDetail:
    """Create a plan together with its initial activities."""
    return plan_service.create_plan(
        user_id, payload.title, payload.activities, payload.shared_with
    )


@app.get("/plans", response_model=list[PlanDetail])
def list_plans(user_id: str = Depends(current_user)) -> list[PlanDetail]:
    """Return the caller's own plans and plans shared with them."""
    return plan_service.list_plans(user_id)


@app.get("/plans/{plan_id}", response_model=PlanDetail)
def get_plan(plan_id: str, user_id: str = Depends(current_user)) -> PlanDetail:
    return plan_service.get_plan(user_id, plan_id)


@app.patch("/plans/{plan_id}", response_model=Plan)
def rename_plan(
    plan_id: str, payload: RenamePlanRequest, user_id: str = Depends(current_user)
) -> Plan:
    return plan_service.rename_plan(user_id, plan_id, payload.title)


@app.delete("/plans/{plan_id}", status_code=204)
def delete_plan(plan_id: str, user_id: str = Depends(current_user)) -> Response:
    plan_service.delete_plan(user_id, plan_id)
    return Response(status_code=204)


@app.post("/plans/{plan_id}/share", response_model=ShareResponse)
def share_plan(
    plan_id: str, payload: SharePlanRequest, user_id: str = Depends(current_user)
) -> ShareResponse:
    """Share a plan read-only with other users."""
    shared_with = plan_service.share_plan(user_id, plan_id, payload.user_ids)
    return ShareResponse(plan_id=plan_id, shared_with=shared_with)


@app.get("/plans/{plan_id}/history", response_model=list[TimelineEntry])
def plan_history(plan_id: str, user_id: str = Depends(current_user)) -> list[TimelineEntry]:
    return plan_service.plan_history(user_id, plan_id)


# ── Activities ────────────────────────────────────────────────────────


@app.post("/plans/{plan_id}/activities", response_model=Activity, status_code=201)
def add_activity(
    plan_id: str, payload: ActivityInput, user_id: str = Depends(current_user)
) -> Activity:
    return plan_service.add_activity(user_id, plan_id, payload)


@app.patch("/activities/{activity_id}", response_model=Activity)
def update_activity(
    activity_id: str, payload: ActivityUpdate, user_id: str = Depends(current_user)
) -> Activity:
    """Apply a partial edit; send ``null`` for a time to clear it."""
    return plan_service.update_activity(user_id, activity_id, payload)


@app.delete("/activities/{activity_id}", status_code=204)
def delete_activity(activity_id: str, user_id: str = Depends(current_user)) -> Response:
    plan_service.delete_activity(user_id, activity_id)
    return Response(status_code=204)


# ── Itinerary drafts ──────────────────────────────────────────────────


@app.post("/itineraries/draft", response_model=ItineraryDraft)
def draft(payload: ItineraryRequest, user_id: str = Depends(current_user)) -> ItineraryDraft:
    """Suggest activities for a trip. Nothing is saved."""
    return draft_itinerary(payload, settings)
