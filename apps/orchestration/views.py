"""
Views for the orchestration app.

Provides the HTTP trigger the external scheduler calls every few minutes.
"""

import logging

from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from apps.alerts.views import CronKeyMixin, JSONResponseMixin
from apps.orchestration.manager import SiteIncidentManager

logger = logging.getLogger(__name__)


@method_decorator(csrf_exempt, name="dispatch")
class SiteIncidentManagerView(JSONResponseMixin, CronKeyMixin, View):
    """
    Scheduler trigger for one site incident manager run.

    GET|POST /orchestration/site-incident-manager/?cron_key=<key>

    Response (200):
    {
        "message": "Site Incident Manager executed successfully",
        "stats": {
            "unlinkedAlertsFound": 3,
            "alertsProcessed": 3,
            "incidentsResolved": 1,
            "errors": [],
            "resolutionErrors": [],
            "durationMs": 42
        }
    }
    """

    def get(self, request):
        return self._run(request)

    def post(self, request):
        return self._run(request)

    def _run(self, request):
        if not self.has_valid_cron_key(request):
            logger.warning("Rejected site incident manager trigger: invalid cron key")
            return self.unauthorized_response()

        try:
            stats = SiteIncidentManager().run()
        except Exception as e:
            logger.exception("Site incident manager run failed")
            return self.json_response(
                {"message": "Internal Server Error", "error": str(e)},
                status=500,
            )

        return self.json_response(
            {
                "message": "Site Incident Manager executed successfully",
                "stats": stats.to_payload(),
            }
        )
