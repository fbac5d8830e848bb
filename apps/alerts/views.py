"""
HTTP endpoints for site incidents.

Used by the notification dispatch service (to record the notifications it
sent at incident boundaries) and by review tooling.
"""

import json
import logging
from typing import Any

from django.conf import settings
from django.http import JsonResponse
from django.utils.crypto import constant_time_compare
from django.utils.dateparse import parse_datetime
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from apps.alerts.errors import IncidentError
from apps.alerts.models import NotificationBoundary, SiteIncident
from apps.alerts.services import SiteIncidentService

logger = logging.getLogger(__name__)


class JSONResponseMixin:
    """Mixin for JSON responses."""

    def json_response(self, data: Any, status: int = 200) -> JsonResponse:
        return JsonResponse(data, status=status)

    def error_response(self, message: str, status: int = 400) -> JsonResponse:
        return JsonResponse({"error": message}, status=status)

    def incident_error_response(self, error: IncidentError) -> JsonResponse:
        return JsonResponse(error.to_dict(), status=error.status_code)


class CronKeyMixin:
    """
    Shared-secret check for scheduler and service callers.

    When settings.CRON_KEY is set, requests must pass it as ``?cron_key=``.
    """

    def has_valid_cron_key(self, request) -> bool:
        expected = getattr(settings, "CRON_KEY", "")
        if not expected:
            return True
        provided = request.GET.get("cron_key", "")
        return bool(provided) and constant_time_compare(provided, expected)

    def unauthorized_response(self) -> JsonResponse:
        return JsonResponse({"message": "Unauthorized: Invalid Cron Key"}, status=403)


def serialize_incident(incident: SiteIncident) -> dict[str, Any]:
    return {
        "id": incident.pk,
        "siteId": incident.site_id,
        "state": incident.state.value,
        "isActive": incident.is_active,
        "isProcessed": incident.is_processed,
        "startedAt": incident.started_at.isoformat(),
        "endedAt": incident.ended_at.isoformat() if incident.ended_at else None,
        "startSiteAlertId": incident.start_site_alert_id,
        "endSiteAlertId": incident.end_site_alert_id,
        "latestSiteAlertId": incident.latest_site_alert_id,
        "startNotificationId": incident.start_notification_id,
        "endNotificationId": incident.end_notification_id,
        "reviewStatus": incident.review_status,
    }


def _parse_body(request) -> dict[str, Any]:
    return json.loads(request.body) if request.body else {}


@method_decorator(csrf_exempt, name="dispatch")
class SiteIncidentListView(JSONResponseMixin, CronKeyMixin, View):
    """
    GET /alerts/sites/<site_id>/incidents/?start=<iso>&end=<iso>

    Incidents of a site that started within the range, newest first.
    """

    def get(self, request, site_id: int):
        if not self.has_valid_cron_key(request):
            return self.unauthorized_response()

        start = parse_datetime(request.GET.get("start", "")) if request.GET.get("start") else None
        end = parse_datetime(request.GET.get("end", "")) if request.GET.get("end") else None
        if start is None or end is None:
            return self.error_response("start and end must be ISO 8601 datetimes", status=400)

        try:
            incidents = SiteIncidentService().get_incidents_by_date_range(site_id, start, end)
        except IncidentError as e:
            return self.incident_error_response(e)

        return self.json_response(
            {
                "count": len(incidents),
                "incidents": [
                    {**serialize_incident(i), "alertCount": len(i.site_alerts.all())}
                    for i in incidents
                ],
            }
        )


@method_decorator(csrf_exempt, name="dispatch")
class IncidentNotificationView(JSONResponseMixin, CronKeyMixin, View):
    """
    POST /alerts/incidents/<incident_id>/notifications/

    Body: {"boundary": "START" | "END", "notification_id": "..."}
    """

    def post(self, request, incident_id: int):
        if not self.has_valid_cron_key(request):
            return self.unauthorized_response()

        try:
            body = _parse_body(request)
        except json.JSONDecodeError:
            return self.error_response("Invalid JSON body", status=400)

        boundary = body.get("boundary")
        notification_id = body.get("notification_id")
        if boundary not in NotificationBoundary.values:
            return self.error_response(
                f"boundary must be one of: {', '.join(NotificationBoundary.values)}", status=400
            )
        if not notification_id:
            return self.error_response("notification_id is required", status=400)

        service = SiteIncidentService()
        try:
            if boundary == NotificationBoundary.START:
                incident = service.record_start_notification(incident_id, str(notification_id))
            else:
                incident = service.record_end_notification(incident_id, str(notification_id))
        except IncidentError as e:
            logger.warning(f"Rejected {boundary} notification for incident {incident_id}: {e.message}")
            return self.incident_error_response(e)

        return self.json_response(serialize_incident(incident))


@method_decorator(csrf_exempt, name="dispatch")
class IncidentReviewStatusView(JSONResponseMixin, CronKeyMixin, View):
    """
    POST /alerts/incidents/<incident_id>/review-status/

    Body: {"review_status": "to_review" | "in_review" | "reviewed"}
    """

    def post(self, request, incident_id: int):
        if not self.has_valid_cron_key(request):
            return self.unauthorized_response()

        try:
            body = _parse_body(request)
        except json.JSONDecodeError:
            return self.error_response("Invalid JSON body", status=400)

        try:
            incident = SiteIncidentService().update_review_status(
                incident_id, body.get("review_status", "")
            )
        except IncidentError as e:
            return self.incident_error_response(e)

        return self.json_response(serialize_incident(incident))
