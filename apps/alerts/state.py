"""
Site incident state machine.

The lifecycle is a first-class value (IncidentState). The persisted
``(is_active, is_processed)`` flag pair is only the storage encoding of that
value and is translated exclusively through STATE_FLAGS below.

    CREATED → ACTIVE → CLOSING → CLOSED

CREATED → ACTIVE happens when the start notification is recorded, ACTIVE →
CLOSING when the incident is resolved for inactivity, and CLOSING → CLOSED
when the end notification is recorded. CLOSED is terminal.

Nothing in this module performs I/O.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from django.db import models

from apps.alerts.errors import (
    ClosedIncidentModification,
    InactiveIncident,
    InvalidInactivityThreshold,
    InvalidTimestampOrder,
    InvalidTransition,
    MissingRequiredField,
)


class IncidentState(models.TextChoices):
    """Logical lifecycle state of a site incident."""

    CREATED = "CREATED", "Created"
    ACTIVE = "ACTIVE", "Active"
    CLOSING = "CLOSING", "Closing"
    CLOSED = "CLOSED", "Closed"


# state -> (is_active, is_processed)
STATE_FLAGS: dict[IncidentState, tuple[bool, bool]] = {
    IncidentState.CREATED: (True, False),
    IncidentState.ACTIVE: (True, True),
    IncidentState.CLOSING: (False, False),
    IncidentState.CLOSED: (False, True),
}

_FLAGS_STATE = {flags: state for state, flags in STATE_FLAGS.items()}

VALID_TRANSITIONS: dict[IncidentState, tuple[IncidentState, ...]] = {
    IncidentState.CREATED: (IncidentState.ACTIVE,),
    IncidentState.ACTIVE: (IncidentState.CLOSING,),
    IncidentState.CLOSING: (IncidentState.CLOSED,),
    IncidentState.CLOSED: (),
}

OPEN_STATES = (IncidentState.CREATED, IncidentState.ACTIVE)

# state -> incident attributes that must be set once the incident is in it
REQUIRED_FIELDS: dict[IncidentState, tuple[str, ...]] = {
    IncidentState.CREATED: ("start_site_alert_id", "started_at"),
    IncidentState.ACTIVE: ("start_notification_id",),
    IncidentState.CLOSING: ("ended_at", "end_site_alert_id"),
    IncidentState.CLOSED: ("end_notification_id",),
}


def state_from_flags(is_active: bool, is_processed: bool) -> IncidentState:
    """Decode the stored flag pair into a state."""
    return _FLAGS_STATE[(bool(is_active), bool(is_processed))]


def flags_for_state(state: IncidentState | str) -> tuple[bool, bool]:
    """Encode a state into its stored ``(is_active, is_processed)`` pair."""
    return STATE_FLAGS[IncidentState(state)]


def get_incident_state(incident: Any) -> IncidentState:
    """Return the current state of an incident from its stored flags."""
    return state_from_flags(incident.is_active, incident.is_processed)


def is_valid_transition(from_state: IncidentState | str, to_state: IncidentState | str) -> bool:
    return IncidentState(to_state) in VALID_TRANSITIONS[IncidentState(from_state)]


def validate_transition(from_state: IncidentState | str, to_state: IncidentState | str) -> None:
    if not is_valid_transition(from_state, to_state):
        raise InvalidTransition(IncidentState(from_state).value, IncidentState(to_state).value)


def validate_timestamp_ordering(started_at: datetime | None, ended_at: datetime | None) -> None:
    if started_at is not None and ended_at is not None and started_at > ended_at:
        raise InvalidTimestampOrder()


def validate_state_requirements(incident: Any, state: IncidentState | None = None) -> None:
    """
    Check the fields required by the incident's state, then timestamp order.

    Args:
        incident: Any object exposing the SiteIncident attributes.
        state: State to validate against; defaults to the incident's own.
    """
    state = IncidentState(state) if state is not None else get_incident_state(incident)

    missing = [name for name in REQUIRED_FIELDS[state] if not getattr(incident, name, None)]
    if missing:
        raise MissingRequiredField(state.label, missing)

    validate_timestamp_ordering(incident.started_at, incident.ended_at)


def validate_modifiable(incident: Any) -> None:
    if get_incident_state(incident) == IncidentState.CLOSED:
        raise ClosedIncidentModification(incident.pk)


def validate_can_accept_alerts(incident: Any) -> None:
    if not incident.is_active:
        raise InactiveIncident(incident.pk)


def validate_inactivity_threshold(threshold_hours: Any) -> None:
    if (
        isinstance(threshold_hours, bool)
        or not isinstance(threshold_hours, (int, float))
        or threshold_hours <= 0
    ):
        raise InvalidInactivityThreshold(threshold_hours)
