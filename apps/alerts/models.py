"""
Site, SiteAlert and SiteIncident models.

SiteAlert rows are produced upstream by the spatial join of fire detections
against monitored sites. This app groups temporally contiguous alerts of a
site into SiteIncident rows and manages their lifecycle.
"""

from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from apps.alerts.state import (
    IncidentState,
    flags_for_state,
    get_incident_state,
)


class ReviewStatus(models.TextChoices):
    """Manual review progress of an incident."""

    TO_REVIEW = "to_review", "To review"
    IN_REVIEW = "in_review", "In review"
    REVIEWED = "reviewed", "Reviewed"


class NotificationBoundary(models.TextChoices):
    """Incident boundary a notification was dispatched for."""

    START = "START", "Start"
    END = "END", "End"


class Site(models.Model):
    """
    A monitored site.

    Sites are owned by the site management service; only the fields this app
    needs are mirrored here.
    """

    name = models.CharField(
        max_length=255,
        help_text="Display name of the site.",
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
    )

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name or f"Site {self.pk}"


class SiteAlert(models.Model):
    """
    A fire detection already attributed to a monitored site.

    ``site_incident`` starts out null and is set exactly once, when the alert
    is linked to an incident.
    """

    site = models.ForeignKey(
        Site,
        on_delete=models.CASCADE,
        related_name="site_alerts",
    )
    event_date = models.DateTimeField(
        db_index=True,
        help_text="When the fire was detected.",
    )

    # Detection details
    latitude = models.FloatField(
        null=True,
        blank=True,
    )
    longitude = models.FloatField(
        null=True,
        blank=True,
    )
    detected_by = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Detection source (e.g. 'MODIS', 'VIIRS', 'GOES-16').",
    )
    confidence = models.CharField(
        max_length=20,
        blank=True,
        default="",
    )

    # Link to incident
    site_incident = models.ForeignKey(
        "SiteIncident",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="site_alerts",
        help_text="Incident this alert belongs to (null until linked).",
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
    )

    class Meta:
        ordering = ["event_date"]
        indexes = [
            models.Index(fields=["site_incident", "event_date"], name="alerts_alert_incident_date"),
            models.Index(fields=["site", "event_date"], name="alerts_alert_site_date"),
        ]

    def __str__(self):
        return f"SiteAlert {self.pk} ({self.site_id} @ {self.event_date:%Y-%m-%d %H:%M})"

    @property
    def is_linked(self) -> bool:
        return self.site_incident_id is not None


class SiteIncident(models.Model):
    """
    A group of temporally contiguous SiteAlerts for one site.

    The lifecycle is exposed as ``state``; ``is_active``/``is_processed`` are
    its storage encoding and the field names other services read.
    """

    site = models.ForeignKey(
        Site,
        on_delete=models.CASCADE,
        related_name="incidents",
    )

    # State encoding (see apps.alerts.state.STATE_FLAGS)
    is_active = models.BooleanField(
        default=True,
        db_index=True,
    )
    is_processed = models.BooleanField(
        default=False,
        help_text="Set once the notification for the current boundary was recorded.",
    )

    # Boundaries
    started_at = models.DateTimeField(
        help_text="Event date of the first alert.",
    )
    ended_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Event date of the last alert (set on closing).",
    )
    start_site_alert = models.ForeignKey(
        SiteAlert,
        on_delete=models.PROTECT,
        related_name="+",
    )
    end_site_alert = models.ForeignKey(
        SiteAlert,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    latest_site_alert = models.ForeignKey(
        SiteAlert,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
        help_text="Most recent alert linked to this incident.",
    )

    # Notification evidence (ids of externally owned notification records)
    start_notification_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
    )
    end_notification_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
    )

    review_status = models.CharField(
        max_length=20,
        choices=ReviewStatus.choices,
        default=ReviewStatus.TO_REVIEW,
        db_index=True,
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
    )
    updated_at = models.DateTimeField(
        auto_now=True,
    )

    class Meta:
        ordering = ["-started_at"]
        indexes = [
            models.Index(fields=["site", "is_active"], name="alerts_incident_site_active"),
            models.Index(fields=["started_at"], name="alerts_incident_started"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["site"],
                condition=Q(is_active=True),
                name="alerts_one_open_incident_per_site",
            ),
            models.CheckConstraint(
                condition=Q(ended_at__isnull=True) | Q(started_at__lte=F("ended_at")),
                name="alerts_incident_started_before_ended",
            ),
        ]

    def __str__(self):
        return f"[{self.state}] Incident {self.pk} (site {self.site_id})"

    @property
    def state(self) -> IncidentState:
        return get_incident_state(self)

    @property
    def is_open(self) -> bool:
        return self.is_active

    @property
    def alert_count(self) -> int:
        return self.site_alerts.count()

    @property
    def duration(self):
        """Time between the first and last alert (up to now while open)."""
        end = self.ended_at or timezone.now()
        return end - self.started_at

    def apply_state(self, state: IncidentState) -> None:
        """Write the storage encoding of ``state``; does not save."""
        self.is_active, self.is_processed = flags_for_state(state)
