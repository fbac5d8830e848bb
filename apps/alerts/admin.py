"""Admin configuration for site incident models."""

from django.contrib import admin, messages
from django.utils.html import format_html
from django_object_actions import DjangoObjectActions
from django_object_actions import action as object_action

from apps.alerts.errors import IncidentError
from apps.alerts.models import ReviewStatus, Site, SiteAlert, SiteIncident
from apps.alerts.services import SiteIncidentService
from apps.alerts.state import IncidentState

STATE_COLORS = {
    IncidentState.CREATED: "#ffc107",
    IncidentState.ACTIVE: "#dc3545",
    IncidentState.CLOSING: "#17a2b8",
    IncidentState.CLOSED: "#6c757d",
}

REVIEW_COLORS = {
    ReviewStatus.TO_REVIEW: "#dc3545",
    ReviewStatus.IN_REVIEW: "#ffc107",
    ReviewStatus.REVIEWED: "#28a745",
}


def _badge(color: str, label: str):
    return format_html(
        '<span style="background-color: {}; color: white; padding: 3px 8px; '
        'border-radius: 3px; font-size: 11px;">{}</span>',
        color,
        label,
    )


class SiteAlertInline(admin.TabularInline):
    """Inline display of alerts within an incident."""

    model = SiteAlert
    extra = 0
    readonly_fields = ["event_date", "detected_by", "confidence", "latitude", "longitude"]
    fields = ["event_date", "detected_by", "confidence", "latitude", "longitude"]
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Site)
class SiteAdmin(admin.ModelAdmin):
    """Admin for Site model."""

    list_display = ["name", "open_incident_display", "created_at"]
    search_fields = ["name"]

    @admin.display(description="Open incident")
    def open_incident_display(self, obj):
        incident = obj.incidents.filter(is_active=True).first()
        if incident is None:
            return "-"
        return format_html(
            '<a href="/admin/alerts/siteincident/{}/change/">#{}</a>',
            incident.pk,
            incident.pk,
        )


@admin.register(SiteAlert)
class SiteAlertAdmin(DjangoObjectActions, admin.ModelAdmin):
    """Admin for SiteAlert model."""

    list_display = [
        "id",
        "site",
        "event_date",
        "detected_by",
        "confidence",
        "incident_link",
    ]
    list_filter = ["detected_by"]
    search_fields = ["site__name"]
    readonly_fields = ["site_incident", "created_at"]
    date_hierarchy = "event_date"
    actions = ["link_selected"]
    change_actions = ["link_alert"]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("site", "site_incident")

    @admin.action(description="Link selected alerts to incidents")
    def link_selected(self, request, queryset):
        service = SiteIncidentService()
        linked = 0
        for alert in queryset.filter(site_incident__isnull=True).order_by("event_date", "pk"):
            try:
                service.process_new_alert(alert)
                linked += 1
            except IncidentError as e:
                self.message_user(request, f"Alert {alert.pk}: {e.message}", level=messages.WARNING)
        self.message_user(request, f"{linked} alert(s) linked.")

    @object_action(label="Link", description="Link this alert to its site's open incident")
    def link_alert(self, request, obj):
        if obj.is_linked:
            self.message_user(
                request, f"Already linked to incident {obj.site_incident_id}.", level="warning"
            )
            return
        try:
            incident = SiteIncidentService().process_new_alert(obj)
        except IncidentError as e:
            self.message_user(request, e.message, level="error")
            return
        self.message_user(request, f"Alert linked to incident {incident.pk}.")

    @admin.display(description="Incident")
    def incident_link(self, obj):
        if obj.site_incident_id:
            return format_html(
                '<a href="/admin/alerts/siteincident/{}/change/">#{}</a>',
                obj.site_incident_id,
                obj.site_incident_id,
            )
        return "-"


@admin.register(SiteIncident)
class SiteIncidentAdmin(DjangoObjectActions, admin.ModelAdmin):
    """Admin for SiteIncident model."""

    list_display = [
        "id",
        "site",
        "state_badge",
        "review_badge",
        "alert_count_display",
        "started_at",
        "ended_at",
    ]
    list_filter = ["is_active", "is_processed", "review_status"]
    search_fields = ["site__name", "start_notification_id", "end_notification_id"]
    readonly_fields = [
        "site",
        "state_badge",
        "is_active",
        "is_processed",
        "started_at",
        "ended_at",
        "start_site_alert",
        "end_site_alert",
        "latest_site_alert",
        "start_notification_id",
        "end_notification_id",
        "alert_count_display",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "started_at"
    inlines = [SiteAlertInline]
    actions = ["mark_in_review", "mark_reviewed"]
    change_actions = ["start_review", "complete_review"]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("site")

    fieldsets = [
        (
            None,
            {
                "fields": ["site", "state_badge", "review_status"],
            },
        ),
        (
            "Boundaries",
            {
                "fields": [
                    "started_at",
                    "ended_at",
                    "start_site_alert",
                    "end_site_alert",
                    "latest_site_alert",
                    "alert_count_display",
                ],
            },
        ),
        (
            "Notifications",
            {
                "fields": ["start_notification_id", "end_notification_id"],
            },
        ),
        (
            "State encoding",
            {
                "fields": ["is_active", "is_processed"],
                "classes": ["collapse"],
            },
        ),
        (
            "Timestamps",
            {
                "fields": ["created_at", "updated_at"],
            },
        ),
    ]

    def _set_review_status(self, request, incidents, status: str) -> int:
        service = SiteIncidentService()
        count = 0
        for incident in incidents:
            try:
                service.update_review_status(incident.pk, status)
                count += 1
            except IncidentError as e:
                self.message_user(request, f"Incident {incident.pk}: {e.message}", level="error")
        return count

    @admin.action(description="Mark selected incidents as in review")
    def mark_in_review(self, request, queryset):
        count = self._set_review_status(request, queryset, ReviewStatus.IN_REVIEW)
        self.message_user(request, f"{count} incident(s) marked in review.")

    @admin.action(description="Mark selected incidents as reviewed")
    def mark_reviewed(self, request, queryset):
        count = self._set_review_status(request, queryset, ReviewStatus.REVIEWED)
        self.message_user(request, f"{count} incident(s) marked reviewed.")

    @object_action(label="Start review", description="Mark this incident as in review")
    def start_review(self, request, obj):
        if obj.review_status == ReviewStatus.TO_REVIEW:
            self._set_review_status(request, [obj], ReviewStatus.IN_REVIEW)
            self.message_user(request, f"Incident {obj.pk} in review.")
        else:
            self.message_user(
                request, f"Cannot start review, status is '{obj.review_status}'.", level="warning"
            )

    @object_action(label="Reviewed", description="Mark this incident as reviewed")
    def complete_review(self, request, obj):
        if obj.review_status != ReviewStatus.REVIEWED:
            self._set_review_status(request, [obj], ReviewStatus.REVIEWED)
            self.message_user(request, f"Incident {obj.pk} reviewed.")
        else:
            self.message_user(request, "Already reviewed.", level="warning")

    @admin.display(description="State")
    def state_badge(self, obj):
        state = obj.state
        return _badge(STATE_COLORS.get(state, "#6c757d"), state.label.upper())

    @admin.display(description="Review")
    def review_badge(self, obj):
        return _badge(
            REVIEW_COLORS.get(obj.review_status, "#6c757d"),
            obj.get_review_status_display(),
        )

    @admin.display(description="Alerts")
    def alert_count_display(self, obj):
        return obj.alert_count
