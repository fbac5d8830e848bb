"""URL configuration for the orchestration app."""

from django.urls import path

from apps.orchestration.views import SiteIncidentManagerView

app_name = "orchestration"

urlpatterns = [
    path(
        "site-incident-manager/",
        SiteIncidentManagerView.as_view(),
        name="site-incident-manager",
    ),
]
