"""
URL configuration for the alerts app.
"""

from django.urls import path

from apps.alerts.views import (
    IncidentNotificationView,
    IncidentReviewStatusView,
    SiteIncidentListView,
)

app_name = "alerts"

urlpatterns = [
    path("sites/<int:site_id>/incidents/", SiteIncidentListView.as_view(), name="site-incidents"),
    path(
        "incidents/<int:incident_id>/notifications/",
        IncidentNotificationView.as_view(),
        name="incident-notifications",
    ),
    path(
        "incidents/<int:incident_id>/review-status/",
        IncidentReviewStatusView.as_view(),
        name="incident-review-status",
    ),
]
