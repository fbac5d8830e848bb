"""
Inactivity-based incident resolution.

An open incident is closed once no new alert has arrived for the configured
number of hours. The incident ends at its last alert, not at the time the
resolver notices the inactivity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from django.utils import timezone

from apps.alerts.state import validate_inactivity_threshold

logger = logging.getLogger(__name__)

DEFAULT_INACTIVITY_HOURS = 6


@dataclass(frozen=True)
class Closure:
    """Closing attributes of an incident."""

    end_alert_id: int
    ended_at: datetime


@dataclass
class InactivityReport:
    """Inactivity snapshot of an incident at a point in time."""

    incident_id: int | None
    last_alert_at: datetime
    inactive_minutes: int
    should_close: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "incident_id": self.incident_id,
            "last_alert_at": self.last_alert_at.isoformat(),
            "inactive_minutes": self.inactive_minutes,
            "should_close": self.should_close,
        }


class IncidentResolver:
    """
    Decides when an incident must close and computes its closing attributes.

    Usage:
        resolver = IncidentResolver()
        if resolver.should_close(incident, last_alert.event_date, 6):
            closure = resolver.compute_closure(incident, last_alert)
    """

    def __init__(self, clock: Callable[[], datetime] | None = None):
        """
        Args:
            clock: Returns the current aware datetime. Defaults to timezone.now.
        """
        self.clock = clock or timezone.now

    def inactive_hours(self, last_alert_event_date: datetime) -> float:
        return (self.clock() - last_alert_event_date).total_seconds() / 3600

    def inactive_minutes(self, last_alert_event_date: datetime) -> int:
        return int((self.clock() - last_alert_event_date).total_seconds() // 60)

    def should_close(
        self,
        incident: Any,
        last_alert_event_date: datetime,
        threshold_hours: float,
    ) -> bool:
        """True iff at least ``threshold_hours`` passed since the last alert."""
        validate_inactivity_threshold(threshold_hours)

        hours = self.inactive_hours(last_alert_event_date)
        should = hours >= threshold_hours
        if should:
            logger.debug(f"Incident {incident.pk} should be resolved (inactive for {hours:.2f}h)")
        return should

    def compute_closure(self, incident: Any, last_alert: Any) -> Closure:
        return Closure(end_alert_id=last_alert.pk, ended_at=last_alert.event_date)

    def describe(
        self,
        incident: Any,
        last_alert_event_date: datetime,
        threshold_hours: float,
    ) -> InactivityReport:
        return InactivityReport(
            incident_id=incident.pk,
            last_alert_at=last_alert_event_date,
            inactive_minutes=self.inactive_minutes(last_alert_event_date),
            should_close=self.should_close(incident, last_alert_event_date, threshold_hours),
        )
