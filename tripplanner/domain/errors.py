"""Typed errors raised by the scheduler and the plan service."""

from __future__ import annotations


class TripPlannerError(Exception):
    """Base class for every error the service surfaces to callers."""


class SchedulerError(TripPlannerError):
    """Caller-fault error raised while validating activities. Never retried."""


class ValidationError(SchedulerError):
    """Raised when a single activity is malformed or inconsistent."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class ConflictError(SchedulerError):
    """Raised when an activity's interval overlaps another one in the same plan."""

    def __init__(self, conflicting_title: str, title: str | None = None) -> None:
        self.conflicting_title = conflicting_title
        self.title = title
        if title is None:
            message = f'conflicts with "{conflicting_title}"'
        else:
            message = f'Activity "{title}" conflicts with "{conflicting_title}"'
        super().__init__(message)
        self.message = message


class NotFoundError(TripPlannerError):
    """Raised when a plan or activity does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PermissionDeniedError(TripPlannerError):
    """Raised when the caller may not read or change a plan."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ItineraryUnavailableError(TripPlannerError):
    """Raised when no itinerary draft can be produced (no model configured, bad reply)."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# Mapping of domain errors to HTTP status codes
ERROR_STATUS = {
    ValidationError: 400,
    ConflictError: 400,
    NotFoundError: 404,
    PermissionDeniedError: 403,
    ItineraryUnavailableError: 503,
}
