"""Django app configuration for the alerts app."""

from django.apps import AppConfig


class AlertsConfig(AppConfig):
    """Configuration for the Site Alerts & Incidents app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.alerts"
    verbose_name = "Site Alerts & Incidents"
