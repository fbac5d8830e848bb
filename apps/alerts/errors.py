"""
Error taxonomy for site incident operations.

Every error carries a machine-readable ``code`` and the HTTP status an API
surface should map it to:

- validation errors (400): bad input or a logic bug, never retried
- lookup errors (404): unknown incident or site
- conflict errors (409): expected under concurrent invocations, handled by
  re-querying rather than failing a whole batch
"""

from __future__ import annotations

from typing import Any


class IncidentError(Exception):
    """Base class for all site incident errors."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "error": type(self).__name__, "message": self.message}


class IncidentValidationError(IncidentError):
    code = "BAD_REQUEST"
    status_code = 400


class IncidentLookupError(IncidentError):
    code = "NOT_FOUND"
    status_code = 404


class IncidentConflictError(IncidentError):
    code = "CONFLICT"
    status_code = 409


# --- validation ---


class InvalidTransition(IncidentValidationError):
    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid incident state transition: {from_state} -> {to_state}")


class MissingRequiredField(IncidentValidationError):
    def __init__(self, state: str, fields: list[str]):
        self.state = state
        self.fields = list(fields)
        super().__init__(f"{state} incident must have {' and '.join(self.fields)}")


class InvalidTimestampOrder(IncidentValidationError):
    def __init__(self, message: str = "Start time must be before or equal to end time"):
        super().__init__(message)


class ClosedIncidentModification(IncidentValidationError):
    def __init__(self, incident_id: Any):
        self.incident_id = incident_id
        super().__init__(f"Cannot modify closed incident {incident_id}")


class InactiveIncident(IncidentValidationError):
    def __init__(self, incident_id: Any):
        self.incident_id = incident_id
        super().__init__(f"Cannot associate alerts with inactive incident {incident_id}")


class InvalidInactivityThreshold(IncidentValidationError):
    def __init__(self, threshold: Any = None):
        self.threshold = threshold
        super().__init__(f"Inactivity threshold must be a positive number (got {threshold!r})")


class InvalidReviewStatus(IncidentValidationError):
    def __init__(self, status: Any, allowed: list[str]):
        self.status = status
        super().__init__(f"Invalid review status: {status}. Must be one of: {', '.join(allowed)}")


# --- lookup ---


class IncidentNotFound(IncidentLookupError):
    def __init__(self, incident_id: Any):
        self.incident_id = incident_id
        super().__init__(f"Incident with id {incident_id} not found")


class SiteNotFound(IncidentLookupError):
    def __init__(self, site_id: Any):
        self.site_id = site_id
        super().__init__(f"Site with id {site_id} not found")


# --- conflict ---


class DuplicateActiveIncident(IncidentConflictError):
    def __init__(self, site_id: Any):
        self.site_id = site_id
        super().__init__(f"An active incident already exists for site {site_id}")


class AlertAlreadyLinked(IncidentConflictError):
    def __init__(self, alert_id: Any, linked_incident_id: Any, requested_incident_id: Any):
        self.alert_id = alert_id
        self.linked_incident_id = linked_incident_id
        self.requested_incident_id = requested_incident_id
        super().__init__(
            f"Site alert {alert_id} is already linked to incident {linked_incident_id}, "
            f"cannot link it to incident {requested_incident_id}"
        )
