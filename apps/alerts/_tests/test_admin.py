from datetime import datetime, timezone

import pytest

from apps.alerts.models import ReviewStatus, Site, SiteAlert, SiteIncident
from apps.alerts.services import SiteIncidentService

T0 = datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def incident(db):
    site = Site.objects.create(name="Forest Reserve")
    alert = SiteAlert.objects.create(site=site, event_date=T0)
    return SiteIncidentService().process_new_alert(alert)


@pytest.mark.django_db
class TestSiteIncidentAdmin:
    def test_changelist_loads(self, admin_client, incident):
        response = admin_client.get("/admin/alerts/siteincident/")

        assert response.status_code == 200
        assert b"CREATED" in response.content

    def test_change_page_loads(self, admin_client, incident):
        response = admin_client.get(f"/admin/alerts/siteincident/{incident.pk}/change/")

        assert response.status_code == 200

    def test_start_review_action(self, admin_client, incident):
        response = admin_client.get(
            f"/admin/alerts/siteincident/{incident.pk}/actions/start_review/"
        )

        assert response.status_code == 302
        incident.refresh_from_db()
        assert incident.review_status == ReviewStatus.IN_REVIEW

    def test_bulk_mark_reviewed(self, admin_client, incident):
        response = admin_client.post(
            "/admin/alerts/siteincident/",
            {"action": "mark_reviewed", "_selected_action": [incident.pk]},
        )

        assert response.status_code == 302
        incident.refresh_from_db()
        assert incident.review_status == ReviewStatus.REVIEWED


@pytest.mark.django_db
class TestSiteAlertAdmin:
    def test_changelist_loads(self, admin_client, incident):
        response = admin_client.get("/admin/alerts/sitealert/")

        assert response.status_code == 200

    def test_link_selected(self, admin_client):
        site = Site.objects.create(name="Hill Farm")
        alerts = [SiteAlert.objects.create(site=site, event_date=T0) for _ in range(2)]

        response = admin_client.post(
            "/admin/alerts/sitealert/",
            {"action": "link_selected", "_selected_action": [a.pk for a in alerts]},
        )

        assert response.status_code == 302
        assert SiteIncident.objects.filter(site=site).count() == 1
        assert SiteAlert.objects.filter(site=site, site_incident__isnull=True).count() == 0
