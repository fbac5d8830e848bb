"""
Site incident services.

This module contains the business logic that groups incoming SiteAlerts into
SiteIncidents and closes incidents that went quiet.
"""

import logging
from datetime import datetime
from typing import Callable

from django.conf import settings
from django.utils import timezone

from apps.alerts.errors import AlertAlreadyLinked, DuplicateActiveIncident, InactiveIncident
from apps.alerts.models import NotificationBoundary, SiteAlert, SiteIncident
from apps.alerts.repository import SiteIncidentRepository
from apps.alerts.resolver import DEFAULT_INACTIVITY_HOURS, Closure, IncidentResolver
from apps.alerts.state import (
    IncidentState,
    validate_can_accept_alerts,
    validate_inactivity_threshold,
)
from apps.orchestration.batch import BatchOutcome, process_batch

logger = logging.getLogger(__name__)

# (incident, closure) -> id of the dispatched end notification, or None
EndNotifier = Callable[[SiteIncident, Closure], "str | None"]


class SiteIncidentService:
    """
    Links site alerts to incidents and resolves inactive incidents.

    All dependencies are injected so the service can run against a fake
    clock or repository:

        service = SiteIncidentService(clock=lambda: frozen_now)
        incident = service.process_new_alert(alert)
        closed = service.resolve_inactive_incidents()
    """

    def __init__(
        self,
        repository: SiteIncidentRepository | None = None,
        resolver: IncidentResolver | None = None,
        clock: Callable[[], datetime] | None = None,
        inactivity_hours: float | None = None,
        batch_limit: int | None = None,
        end_notifier: EndNotifier | None = None,
    ):
        """
        Initialize the service.

        Args:
            repository: Incident persistence (default: SiteIncidentRepository()).
            resolver: Closing rules (default: IncidentResolver sharing ``clock``).
            clock: Returns the current aware datetime (default: timezone.now).
            inactivity_hours: Default inactivity threshold (default from settings).
            batch_limit: Default resolution batch size (default from settings).
            end_notifier: Optional hook dispatching the end notification of an
                incident being closed. Without it incidents stop at CLOSING.
        """
        self.clock = clock or timezone.now
        self.repository = repository or SiteIncidentRepository()
        self.resolver = resolver or IncidentResolver(clock=self.clock)
        self.inactivity_hours = (
            inactivity_hours
            if inactivity_hours is not None
            else float(getattr(settings, "INCIDENT_RESOLUTION_HOURS", DEFAULT_INACTIVITY_HOURS))
        )
        self.batch_limit = (
            batch_limit
            if batch_limit is not None
            else int(getattr(settings, "SITE_INCIDENT_RESOLVE_BATCH_SIZE", 100))
        )
        self.end_notifier = end_notifier
        self.last_resolution: BatchOutcome | None = None

    # --- linking ---

    def process_new_alert(self, alert: SiteAlert) -> SiteIncident:
        """
        Link ``alert`` to the open incident of its site, opening one if needed.

        Calling this again for an already linked alert returns its incident
        without writing, whatever state that incident is in. Concurrent calls
        for alerts of the same site end up on one incident.
        """
        if alert.site_incident_id is not None:
            logger.debug(f"SiteAlert {alert.pk} already linked to incident {alert.site_incident_id}")
            return self.repository.get_incident(alert.site_incident_id)

        incident = self._find_accepting_incident(alert.site_id)
        if incident is None:
            return self._open_incident(alert)

        try:
            self.repository.attach_alert_to_incident(incident.pk, alert)
        except AlertAlreadyLinked as e:
            alert.site_incident_id = e.linked_incident_id
            return self.repository.get_incident(e.linked_incident_id)
        except InactiveIncident:
            # Closed between lookup and attach.
            logger.info(
                f"Incident {incident.pk} stopped accepting alerts, opening a new one "
                f"for site {alert.site_id}"
            )
            return self._open_incident(alert)
        return incident

    def _find_accepting_incident(self, site_id: int) -> SiteIncident | None:
        incident = self.repository.find_open_incident_for_site(site_id)
        if incident is None:
            return None
        try:
            validate_can_accept_alerts(incident)
        except InactiveIncident:
            logger.warning(f"Open incident {incident.pk} for site {site_id} is not accepting alerts")
            return None
        return incident

    def _open_incident(self, alert: SiteAlert) -> SiteIncident:
        try:
            return self.repository.create_incident_with_alert(alert.site_id, alert)
        except AlertAlreadyLinked as e:
            # Linked elsewhere since ``alert`` was loaded.
            alert.site_incident_id = e.linked_incident_id
            return self.repository.get_incident(e.linked_incident_id)
        except DuplicateActiveIncident:
            incident = self._find_accepting_incident(alert.site_id)
            if incident is None:
                raise
            logger.info(
                f"Lost incident creation race for site {alert.site_id}, "
                f"linking alert {alert.pk} to incident {incident.pk}"
            )
            self.repository.attach_alert_to_incident(incident.pk, alert)
            return incident

    # --- resolution ---

    def resolve_inactive_incidents(
        self,
        threshold_hours: float | None = None,
        batch_limit: int | None = None,
        deadline: float | None = None,
    ) -> int:
        """
        Close open incidents without alerts for ``threshold_hours``.

        Args:
            threshold_hours: Inactivity threshold (default: service setting).
            batch_limit: Max incidents handled in this call (default: service setting).
            deadline: Optional time.monotonic() value after which remaining
                incidents are left for the next run.

        Returns:
            Number of incidents closed. Per-incident failures are logged and
            kept in ``last_resolution``.
        """
        threshold = self.inactivity_hours if threshold_hours is None else threshold_hours
        validate_inactivity_threshold(threshold)
        limit = self.batch_limit if batch_limit is None else batch_limit

        # CREATED incidents wait for their start notification before they can close.
        stale = self.repository.find_stale_open_incidents(
            threshold, limit, now=self.clock(), states=[IncidentState.ACTIVE]
        )
        outcome = process_batch(
            stale,
            lambda incident: self._resolve_incident(incident, threshold),
            label="incident",
            deadline=deadline,
        )
        self.last_resolution = outcome

        closed = sum(1 for _, was_closed in outcome.succeeded if was_closed)
        if stale:
            logger.info(
                f"Resolution complete: {closed}/{len(stale)} closed, "
                f"{len(outcome.errors)} errors, {len(outcome.skipped)} deferred"
            )
        return closed

    def _resolve_incident(self, incident: SiteIncident, threshold_hours: float) -> bool:
        last_alert = self.repository.last_alert_for_incident(incident.pk)
        if last_alert is None:
            logger.warning(f"Incident {incident.pk} has no linked alerts, skipping")
            return False
        if not self.resolver.should_close(incident, last_alert.event_date, threshold_hours):
            return False

        closure = self.resolver.compute_closure(incident, last_alert)
        notification_id = self._dispatch_end_notification(incident, closure)
        self.repository.close_incident(
            incident.pk,
            closure.end_alert_id,
            closure.ended_at,
            notification_id,
        )
        return True

    def _dispatch_end_notification(self, incident: SiteIncident, closure: Closure) -> str | None:
        if self.end_notifier is None:
            return None
        try:
            return self.end_notifier(incident, closure)
        except Exception:
            # The incident still closes; the id can be recorded later.
            logger.exception(f"Failed to dispatch end notification for incident {incident.pk}")
            return None

    # --- notifications & review ---

    def record_start_notification(self, incident_id: int, notification_id: str) -> SiteIncident:
        return self.repository.record_notification(
            incident_id, NotificationBoundary.START, notification_id
        )

    def record_end_notification(self, incident_id: int, notification_id: str) -> SiteIncident:
        return self.repository.record_notification(
            incident_id, NotificationBoundary.END, notification_id
        )

    def update_review_status(self, incident_id: int, status: str) -> SiteIncident:
        return self.repository.update_review_status(incident_id, status)

    def get_incidents_by_date_range(
        self,
        site_id: int,
        start_date: datetime,
        end_date: datetime,
    ) -> list[SiteIncident]:
        return self.repository.incidents_for_site(site_id, start_date, end_date)
