"""
Persistence for site incidents.

SiteIncidentRepository is the only writer of SiteIncident rows and of the
SiteAlert → SiteIncident link. Cross-record invariants are enforced by the
database, never by in-process locks, because several manager runs may
overlap:

- at most one open incident per site: partial unique constraint
  ``alerts_one_open_incident_per_site`` on ``site`` where ``is_active``
- an alert is linked at most once: conditional ``UPDATE ... WHERE
  site_incident_id IS NULL``
- lifecycle updates: row lock (``select_for_update``) inside a transaction,
  validated against the state machine before the single save
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable

from django.db import IntegrityError, transaction
from django.db.models import Max, Q
from django.utils import timezone

from apps.alerts.errors import (
    AlertAlreadyLinked,
    DuplicateActiveIncident,
    IncidentNotFound,
    InvalidReviewStatus,
    InvalidTimestampOrder,
    SiteNotFound,
)
from apps.alerts.models import (
    NotificationBoundary,
    ReviewStatus,
    Site,
    SiteAlert,
    SiteIncident,
)
from apps.alerts.state import (
    OPEN_STATES,
    IncidentState,
    flags_for_state,
    validate_can_accept_alerts,
    validate_inactivity_threshold,
    validate_modifiable,
    validate_state_requirements,
    validate_transition,
)

logger = logging.getLogger(__name__)


def _flags_filter(states: Iterable[IncidentState]) -> Q:
    """Match incidents in any of ``states`` through their stored flags."""
    condition = Q()
    for state in states:
        is_active, is_processed = flags_for_state(state)
        condition |= Q(is_active=is_active, is_processed=is_processed)
    if not condition:
        raise ValueError("states must name at least one incident state")
    return condition


class SiteIncidentRepository:
    """
    Data access for incident lifecycle operations.

    Usage:
        repository = SiteIncidentRepository()
        incident = repository.find_open_incident_for_site(site_id)
    """

    # --- reads ---

    def get_incident(self, incident_id: int) -> SiteIncident:
        try:
            return SiteIncident.objects.get(pk=incident_id)
        except SiteIncident.DoesNotExist:
            raise IncidentNotFound(incident_id)

    def find_open_incident_for_site(self, site_id: int) -> SiteIncident | None:
        """Return the CREATED or ACTIVE incident of a site, if any."""
        return (
            SiteIncident.objects.filter(site_id=site_id, is_active=True)
            .order_by("-started_at")
            .first()
        )

    def count_open_for_site(self, site_id: int) -> int:
        return SiteIncident.objects.filter(site_id=site_id, is_active=True).count()

    def find_unlinked_alerts(self, limit: int) -> list[SiteAlert]:
        """Alerts not linked to any incident yet, oldest event first."""
        return list(
            SiteAlert.objects.filter(site_incident__isnull=True).order_by("event_date", "pk")[:limit]
        )

    def last_alert_for_incident(self, incident_id: int) -> SiteAlert | None:
        return (
            SiteAlert.objects.filter(site_incident_id=incident_id)
            .order_by("-event_date", "-pk")
            .first()
        )

    def find_stale_open_incidents(
        self,
        threshold_hours: float,
        limit: int,
        now: datetime | None = None,
        states: Iterable[IncidentState] = OPEN_STATES,
    ) -> list[SiteIncident]:
        """
        Open incidents whose latest linked alert is at least ``threshold_hours`` old.

        Args:
            threshold_hours: Inactivity threshold in hours (positive).
            limit: Maximum number of incidents returned.
            now: Reference time; defaults to the current time.
            states: Open states to include (default: CREATED and ACTIVE).

        Returns:
            Incidents ordered by their latest alert, oldest first. Each carries
            the ``last_alert_at`` annotation.
        """
        validate_inactivity_threshold(threshold_hours)
        cutoff = (now or timezone.now()) - timedelta(hours=threshold_hours)

        incidents = list(
            SiteIncident.objects.filter(_flags_filter(states))
            .annotate(last_alert_at=Max("site_alerts__event_date"))
            .filter(last_alert_at__lte=cutoff)
            .order_by("last_alert_at", "pk")[:limit]
        )

        logger.debug(f"Found {len(incidents)} stale open incidents (>= {threshold_hours}h)")
        return incidents

    def incidents_for_site(
        self,
        site_id: int,
        start_date: datetime,
        end_date: datetime,
    ) -> list[SiteIncident]:
        """Incidents of a site that started within ``[start_date, end_date]``, newest first."""
        if not Site.objects.filter(pk=site_id).exists():
            raise SiteNotFound(site_id)
        if start_date > end_date:
            raise InvalidTimestampOrder("Start date must be before end date")

        return list(
            SiteIncident.objects.filter(
                site_id=site_id,
                started_at__gte=start_date,
                started_at__lte=end_date,
            )
            .select_related("site", "start_site_alert", "end_site_alert", "latest_site_alert")
            .prefetch_related("site_alerts")
            .order_by("-started_at")
        )

    # --- writes ---

    def create_incident_with_alert(self, site_id: int, alert: SiteAlert) -> SiteIncident:
        """
        Open a new CREATED incident for a site starting at ``alert`` and link the alert.

        Raises:
            DuplicateActiveIncident: Another caller already holds the open
                incident of this site. Re-query with find_open_incident_for_site.
            AlertAlreadyLinked: The alert was linked elsewhere meanwhile.
        """
        incident = SiteIncident(
            site_id=site_id,
            started_at=alert.event_date,
            start_site_alert_id=alert.pk,
            latest_site_alert_id=alert.pk,
            review_status=ReviewStatus.TO_REVIEW,
        )
        incident.apply_state(IncidentState.CREATED)
        validate_state_requirements(incident)

        try:
            with transaction.atomic():
                incident.save(force_insert=True)
                linked = SiteAlert.objects.filter(pk=alert.pk, site_incident__isnull=True).update(
                    site_incident=incident
                )
                if not linked:
                    current = (
                        SiteAlert.objects.filter(pk=alert.pk)
                        .values_list("site_incident_id", flat=True)
                        .first()
                    )
                    raise AlertAlreadyLinked(alert.pk, current, incident.pk)
        except IntegrityError as e:
            if self.count_open_for_site(site_id):
                raise DuplicateActiveIncident(site_id) from e
            raise

        alert.site_incident_id = incident.pk
        logger.info(f"Created SiteIncident {incident.pk} for site {site_id} (start alert {alert.pk})")
        return incident

    def attach_alert_to_incident(self, incident_id: int, alert: SiteAlert) -> bool:
        """
        Link ``alert`` to an open incident.

        Re-attaching an alert already linked to the same incident is a no-op.

        Returns:
            True if the link was written, False for the no-op.

        Raises:
            AlertAlreadyLinked: The alert belongs to a different incident.
            InactiveIncident: The incident stopped accepting alerts.
        """
        with transaction.atomic():
            current = (
                SiteAlert.objects.select_for_update()
                .values_list("site_incident_id", flat=True)
                .get(pk=alert.pk)
            )
            if current == incident_id:
                alert.site_incident_id = incident_id
                logger.debug(f"SiteAlert {alert.pk} already linked to incident {incident_id}")
                return False
            if current is not None:
                raise AlertAlreadyLinked(alert.pk, current, incident_id)

            incident = self._get_for_update(incident_id)
            validate_can_accept_alerts(incident)

            SiteAlert.objects.filter(pk=alert.pk, site_incident__isnull=True).update(
                site_incident_id=incident_id
            )

            latest_date = (
                SiteAlert.objects.filter(pk=incident.latest_site_alert_id)
                .values_list("event_date", flat=True)
                .first()
            )
            if latest_date is None or latest_date <= alert.event_date:
                incident.latest_site_alert_id = alert.pk
                incident.save(update_fields=["latest_site_alert", "updated_at"])

        alert.site_incident_id = incident_id
        logger.debug(f"Associated alert {alert.pk} with incident {incident_id}")
        return True

    def close_incident(
        self,
        incident_id: int,
        end_alert_id: int,
        ended_at: datetime,
        end_notification_id: str | None = None,
    ) -> SiteIncident:
        """
        Close an ACTIVE incident in one durable update.

        With ``end_notification_id`` the incident moves ACTIVE → CLOSING →
        CLOSED. Without it, it stops at CLOSING until the end notification is
        recorded via record_notification.
        """
        with transaction.atomic():
            incident = self._get_for_update(incident_id)
            validate_modifiable(incident)

            incident.end_site_alert_id = end_alert_id
            incident.ended_at = ended_at
            targets = [IncidentState.CLOSING]
            if end_notification_id:
                incident.end_notification_id = end_notification_id
                targets.append(IncidentState.CLOSED)

            self._walk(incident, targets)
            incident.save(
                update_fields=[
                    "is_active",
                    "is_processed",
                    "end_site_alert",
                    "ended_at",
                    "end_notification_id",
                    "updated_at",
                ]
            )

        logger.info(
            f"Closed SiteIncident {incident.pk} for site {incident.site_id} "
            f"(state {incident.state}, ended_at {ended_at.isoformat()})"
        )
        return incident

    def record_notification(
        self,
        incident_id: int,
        boundary: NotificationBoundary | str,
        notification_id: str,
    ) -> SiteIncident:
        """
        Record the id of a dispatched start/end notification.

        START moves CREATED → ACTIVE, END moves CLOSING → CLOSED. Recording the
        same id twice is a no-op.
        """
        boundary = NotificationBoundary(boundary)
        if boundary == NotificationBoundary.START:
            field_name, target = "start_notification_id", IncidentState.ACTIVE
        else:
            field_name, target = "end_notification_id", IncidentState.CLOSED

        with transaction.atomic():
            incident = self._get_for_update(incident_id)
            if getattr(incident, field_name) == notification_id:
                logger.debug(f"{boundary} notification already recorded for incident {incident_id}")
                return incident

            validate_modifiable(incident)
            setattr(incident, field_name, notification_id)
            self._walk(incident, [target])
            incident.save(update_fields=["is_active", "is_processed", field_name, "updated_at"])

        logger.info(
            f"Recorded {boundary} notification {notification_id} for incident {incident_id}"
        )
        return incident

    def update_review_status(self, incident_id: int, status: str) -> SiteIncident:
        if status not in ReviewStatus.values:
            raise InvalidReviewStatus(status, list(ReviewStatus.values))

        incident = self.get_incident(incident_id)
        incident.review_status = status
        incident.save(update_fields=["review_status", "updated_at"])

        logger.info(f"Updated review status for incident {incident_id} to {status}")
        return incident

    # --- helpers ---

    def _get_for_update(self, incident_id: int) -> SiteIncident:
        try:
            return SiteIncident.objects.select_for_update().get(pk=incident_id)
        except SiteIncident.DoesNotExist:
            raise IncidentNotFound(incident_id)

    def _walk(self, incident: SiteIncident, targets: list[IncidentState]) -> None:
        """Apply each target state in order, validating transition and fields per hop."""
        for target in targets:
            validate_transition(incident.state, target)
            incident.apply_state(target)
            validate_state_requirements(incident)
