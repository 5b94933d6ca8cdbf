"""Service for drafting an itinerary with an LLM.

Drafts are suggestions only: they are returned to the client, which submits
the ones it keeps through the normal plan-creation path.
"""

from __future__ import annotations

import json
import logging
import re

import dateparser
import openai

from tripplanner.config import Settings
from tripplanner.domain.errors import ItineraryUnavailableError, SchedulerError
from tripplanner.domain.models import ActivityInput, ItineraryDraft, ItineraryRequest
from tripplanner.services.scheduler import (
    normalize_time,
    prepare_bulk_create,
    validate_and_derive_interval,
)

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """\
You are a travel-planning assistant. Given a destination and a date range, \
produce a day-by-day itinerary as JSON:

{
  "activities": [
    {
      "title": "<short activity name>",
      "destination": "<place where it happens>",
      "start_date": "<YYYY-MM-DD>",
      "end_date": "<YYYY-MM-DD>",
      "start_time": "<HH:MM in 24-hour form, or null>",
      "end_time": "<HH:MM in 24-hour form, or null>",
      "details": "<one sentence describing the activity, or null>"
    }
  ]
}

Rules:
- Every date must fall inside the requested range.
- Activities must not overlap in time, and must not share an endpoint.
- Leave start_time and end_time null only for all-day activities.
- Respond with ONLY the JSON object, no other text.
"""

_ISO_DATE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")

_DATE_SETTINGS = {
    "RETURN_AS_TIMEZONE_AWARE": False,
    "REQUIRE_PARTS": ["day", "month", "year"],
}


def _generate_with_llm(prompt: str, settings: Settings) -> dict:
    """Call OpenAI and return the decoded JSON reply."""
    client = openai.OpenAI(api_key=settings.openai_api_key)
    response = client.chat.completions.create(
        model=settings.openai_model,
        messages=[
            {"role": "system", "content": _SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        temperature=0.7,
        response_format={"type": "json_object"},
    )
    return json.loads(response.choices[0].message.content)


def _build_prompt(request: ItineraryRequest) -> str:
    prompt = (
        f"Destination: {request.destination}\n"
        f"From {request.start_date} to {request.end_date}."
    )
    if request.start_time:
        prompt += f"\nThe first activity starts no earlier than {request.start_time}."
    if request.end_time:
        prompt += f"\nThe last activity ends no later than {request.end_time}."
    return prompt


def coerce_date(raw: str | None) -> str | None:
    """Rewrite a loosely formatted date ("May 28, 2025") as ``YYYY-MM-DD``.

    Unparseable values are returned unchanged for the scheduler to reject.
    """
    if not raw or not raw.strip():
        return raw
    if _ISO_DATE.fullmatch(raw.strip()):
        return raw.strip()
    parsed = dateparser.parse(raw, settings=_DATE_SETTINGS)
    if parsed is None:
        return raw
    return parsed.date().isoformat()


def _text(item: dict, key: str) -> str | None:
    value = item.get(key)
    return None if value is None else str(value)


def _to_activity(item: dict, fallback_destination: str) -> ActivityInput:
    start_date = coerce_date(_text(item, "start_date"))
    return ActivityInput(
        title=_text(item, "title"),
        destination=_text(item, "destination") or fallback_destination,
        start_date=start_date,
        end_date=coerce_date(_text(item, "end_date")) or start_date,
        start_time=normalize_time(_text(item, "start_time")),
        end_time=normalize_time(_text(item, "end_time")),
        details=_text(item, "details"),
    )


def draft_itinerary(request: ItineraryRequest, settings: Settings) -> ItineraryDraft:
    """Ask the model for an itinerary and report anything the scheduler would reject.

    Raises ``ItineraryUnavailableError`` when no API key is configured or the
    reply is not the expected JSON shape.
    """
    if not settings.openai_api_key:
        raise ItineraryUnavailableError("Itinerary generation is not configured")

    try:
        reply = _generate_with_llm(_build_prompt(request), settings)
    except openai.OpenAIError as exc:
        logger.warning("Itinerary model call failed: %s", exc)
        raise ItineraryUnavailableError("The itinerary model is unavailable") from exc
    except (json.JSONDecodeError, TypeError) as exc:
        logger.warning("Model returned invalid JSON: %s", exc)
        raise ItineraryUnavailableError("Invalid response from the itinerary model") from exc

    items = reply.get("activities") if isinstance(reply, dict) else None
    if not isinstance(items, list):
        raise ItineraryUnavailableError("Invalid response from the itinerary model")

    activities = [
        _to_activity(item, request.destination) for item in items if isinstance(item, dict)
    ]

    issues: list[str] = []
    for index, activity in enumerate(activities, start=1):
        try:
            validate_and_derive_interval(activity)
        except SchedulerError as exc:
            issues.append(f"Activity {index} ({activity.title or 'untitled'}): {exc}")
    if not issues:
        try:
            prepare_bulk_create(activities, plan_id="draft", owner_id="draft")
        except SchedulerError as exc:
            issues.append(str(exc))

    logger.info(
        "Drafted %d activities for %s with %d issue(s)",
        len(activities),
        request.destination,
        len(issues),
    )
    return ItineraryDraft(destination=request.destination, activities=activities, issues=issues)
