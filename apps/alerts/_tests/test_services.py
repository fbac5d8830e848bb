"""Tests for SiteIncidentService."""

from datetime import timedelta
from unittest import mock

import pytest
from django.test import override_settings

from apps.alerts.errors import (
    ClosedIncidentModification,
    DuplicateActiveIncident,
    IncidentNotFound,
    InvalidInactivityThreshold,
)
from apps.alerts.models import Site, SiteAlert, SiteIncident
from apps.alerts.services import SiteIncidentService
from apps.alerts.state import IncidentState


@pytest.fixture
def service(clock):
    return SiteIncidentService(clock=clock, inactivity_hours=6, batch_limit=100)


def _open_active(service, alert, notification_id="start-1"):
    incident = service.process_new_alert(alert)
    return service.record_start_notification(incident.pk, notification_id)


@pytest.mark.django_db
class TestProcessNewAlert:
    def test_first_alert_opens_incident(self, service, site, make_alert):
        alert = make_alert(0)

        incident = service.process_new_alert(alert)

        assert incident.state == IncidentState.CREATED
        assert incident.start_site_alert_id == alert.pk
        assert incident.started_at == alert.event_date
        alert.refresh_from_db()
        assert alert.site_incident_id == incident.pk

    def test_following_alerts_join_open_incident(self, service, site, make_alert):
        first = service.process_new_alert(make_alert(0))
        second = service.process_new_alert(make_alert(30))

        assert second.pk == first.pk
        assert SiteIncident.objects.filter(site=site).count() == 1
        assert first.alert_count == 2

    def test_alerts_of_other_sites_are_separate(self, service, site, other_site, make_alert):
        a = service.process_new_alert(make_alert(0))
        b = service.process_new_alert(make_alert(0, for_site=other_site))

        assert a.pk != b.pk
        assert a.site_id == site.pk
        assert b.site_id == other_site.pk

    def test_processing_same_alert_twice_is_noop(self, service, site, make_alert):
        alert = make_alert(0)

        first = service.process_new_alert(alert)
        second = service.process_new_alert(alert)

        assert first.pk == second.pk
        assert SiteIncident.objects.filter(site=site).count() == 1
        assert SiteAlert.objects.filter(site_incident=first).count() == 1

    def test_reprocessing_after_close_returns_closed_incident(self, service, site, make_alert, clock, t0):
        alert = make_alert(0)
        incident = _open_active(service, alert)
        clock.advance(hours=7)
        assert service.resolve_inactive_incidents() == 1

        again = service.process_new_alert(alert)

        assert again.pk == incident.pk
        assert again.state == IncidentState.CLOSING
        assert SiteIncident.objects.filter(site=site).count() == 1

    def test_alert_linked_since_it_was_loaded(self, service, site, make_alert, clock):
        alert = make_alert(0)
        stale_copy = SiteAlert.objects.get(pk=alert.pk)
        incident = _open_active(service, alert)
        clock.advance(hours=7)
        service.resolve_inactive_incidents()

        again = service.process_new_alert(stale_copy)

        assert again.pk == incident.pk
        assert stale_copy.site_incident_id == incident.pk
        assert SiteIncident.objects.filter(site=site).count() == 1

    def test_lost_creation_race_joins_winner(self, service, site, make_alert):
        """
        Two callers opening an incident for the same site.

        The race is simulated: the first lookup is patched to miss the
        winner's incident, so the insert runs into the partial unique
        constraint exactly as a concurrent loser would.
        """
        winner = service.process_new_alert(make_alert(0))
        alert = make_alert(5)
        real_find = service.repository.find_open_incident_for_site

        # First lookup misses the winner's incident, as a concurrent caller would.
        with mock.patch.object(
            service.repository,
            "find_open_incident_for_site",
            side_effect=[None, real_find(site.pk)],
        ):
            incident = service.process_new_alert(alert)

        assert incident.pk == winner.pk
        assert service.repository.count_open_for_site(site.pk) == 1
        alert.refresh_from_db()
        assert alert.site_incident_id == winner.pk

    def test_race_without_visible_winner_reraises(self, service, site, make_alert):
        service.process_new_alert(make_alert(0))

        with mock.patch.object(
            service.repository, "find_open_incident_for_site", return_value=None
        ):
            with pytest.raises(DuplicateActiveIncident):
                service.process_new_alert(make_alert(5))

    def test_alert_after_close_opens_new_incident(self, service, site, make_alert, clock, t0):
        first_alert = make_alert(0)
        old = _open_active(service, first_alert)
        clock.now = t0 + timedelta(hours=7)
        assert service.resolve_inactive_incidents() == 1
        service.record_end_notification(old.pk, "end-1")

        new_alert = make_alert(8 * 60)
        new = service.process_new_alert(new_alert)

        old.refresh_from_db()
        assert old.state == IncidentState.CLOSED
        assert new.pk != old.pk
        assert new.state == IncidentState.CREATED
        assert new.start_site_alert_id == new_alert.pk

    def test_alert_while_closing_opens_new_incident(self, service, site, make_alert, clock, t0):
        old = _open_active(service, make_alert(0))
        clock.now = t0 + timedelta(hours=7)
        service.resolve_inactive_incidents()

        new = service.process_new_alert(make_alert(7 * 60))

        old.refresh_from_db()
        assert old.state == IncidentState.CLOSING
        assert new.pk != old.pk
        assert service.repository.count_open_for_site(site.pk) == 1


@pytest.mark.django_db
class TestResolveInactiveIncidents:
    def test_resolves_after_threshold(self, service, make_alert, clock, t0):
        alert = make_alert(0)
        incident = _open_active(service, alert)
        clock.now = t0 + timedelta(hours=7)

        closed = service.resolve_inactive_incidents()

        assert closed == 1
        incident.refresh_from_db()
        assert incident.state == IncidentState.CLOSING
        assert incident.ended_at == t0
        assert incident.end_site_alert_id == alert.pk

    def test_ends_at_last_alert_not_now(self, service, make_alert, clock, t0):
        incident = _open_active(service, make_alert(0))
        last = make_alert(90)
        service.process_new_alert(last)
        clock.now = t0 + timedelta(hours=12)

        service.resolve_inactive_incidents()

        incident.refresh_from_db()
        assert incident.ended_at == last.event_date
        assert incident.end_site_alert_id == last.pk

    def test_threshold_boundary(self, service, make_alert, clock, t0):
        incident = _open_active(service, make_alert(0))

        clock.now = t0 + timedelta(hours=6) - timedelta(seconds=1)
        assert service.resolve_inactive_incidents() == 0

        clock.now = t0 + timedelta(hours=6)
        assert service.resolve_inactive_incidents() == 1
        incident.refresh_from_db()
        assert not incident.is_active

    def test_recent_incidents_stay_open(self, service, make_alert, clock, t0):
        incident = _open_active(service, make_alert(0))
        clock.now = t0 + timedelta(hours=1)

        assert service.resolve_inactive_incidents() == 0
        incident.refresh_from_db()
        assert incident.state == IncidentState.ACTIVE

    def test_threshold_override(self, service, make_alert, clock, t0):
        _open_active(service, make_alert(0))
        clock.now = t0 + timedelta(hours=2)

        assert service.resolve_inactive_incidents(threshold_hours=12) == 0
        assert service.resolve_inactive_incidents(threshold_hours=1) == 1

    def test_invalid_threshold(self, service):
        with pytest.raises(InvalidInactivityThreshold):
            service.resolve_inactive_incidents(threshold_hours=0)

    def test_end_notifier_closes_fully(self, make_alert, clock, t0):
        notifier = mock.Mock(return_value="end-42")
        service = SiteIncidentService(clock=clock, inactivity_hours=6, end_notifier=notifier)
        incident = _open_active(service, make_alert(0))
        clock.now = t0 + timedelta(hours=7)

        assert service.resolve_inactive_incidents() == 1

        incident.refresh_from_db()
        assert incident.state == IncidentState.CLOSED
        assert incident.end_notification_id == "end-42"
        closure = notifier.call_args[0][1]
        assert closure.ended_at == t0

    def test_failing_end_notifier_still_closes(self, make_alert, clock, t0):
        notifier = mock.Mock(side_effect=RuntimeError("smtp down"))
        service = SiteIncidentService(clock=clock, inactivity_hours=6, end_notifier=notifier)
        incident = _open_active(service, make_alert(0))
        clock.now = t0 + timedelta(hours=7)

        assert service.resolve_inactive_incidents() == 1

        incident.refresh_from_db()
        assert incident.state == IncidentState.CLOSING

    def test_one_failure_does_not_stop_the_batch(self, service, site, other_site, make_alert, clock, t0):
        stuck = _open_active(service, make_alert(0))
        ok = _open_active(service, make_alert(0, for_site=other_site), "start-2")
        clock.now = t0 + timedelta(hours=7)
        real_close = service.repository.close_incident

        def close(incident_id, *args):
            if incident_id == stuck.pk:
                raise ClosedIncidentModification(incident_id)
            return real_close(incident_id, *args)

        with mock.patch.object(service.repository, "close_incident", side_effect=close):
            closed = service.resolve_inactive_incidents()

        assert closed == 1
        ok.refresh_from_db()
        stuck.refresh_from_db()
        assert ok.state == IncidentState.CLOSING
        assert stuck.state == IncidentState.ACTIVE
        errors = service.last_resolution.errors
        assert [e.id for e in errors] == [stuck.pk]
        assert errors[0].error_type == ClosedIncidentModification.__name__

    def test_created_incidents_are_left_open_without_errors(self, service, make_alert, clock, t0):
        incident = service.process_new_alert(make_alert(0))
        clock.now = t0 + timedelta(hours=47)

        assert service.resolve_inactive_incidents() == 0

        incident.refresh_from_db()
        assert incident.state == IncidentState.CREATED
        assert service.last_resolution.errors == []

    def test_stale_created_incidents_do_not_hold_batch_slots(self, make_alert, clock, t0):
        service = SiteIncidentService(clock=clock, inactivity_hours=6, batch_limit=2)
        created = [
            service.process_new_alert(make_alert(0, for_site=Site.objects.create(name=f"Ridge {i}")))
            for i in range(3)
        ]
        active = _open_active(
            service, make_alert(60, for_site=Site.objects.create(name="Valley Farm"))
        )
        clock.now = t0 + timedelta(hours=48)

        closed = [service.resolve_inactive_incidents() for _ in range(3)]

        assert closed == [1, 0, 0]
        active.refresh_from_db()
        assert active.state == IncidentState.CLOSING
        for incident in created:
            incident.refresh_from_db()
            assert incident.state == IncidentState.CREATED
        assert service.last_resolution.errors == []

    def test_batch_limit(self, service, site, other_site, make_alert, clock, t0):
        _open_active(service, make_alert(0))
        _open_active(service, make_alert(10, for_site=other_site))
        clock.now = t0 + timedelta(hours=7)

        assert service.resolve_inactive_incidents(batch_limit=1) == 1
        assert service.resolve_inactive_incidents(batch_limit=1) == 1
        assert service.resolve_inactive_incidents(batch_limit=1) == 0

    def test_expired_deadline_defers_everything(self, service, make_alert, clock, t0):
        _open_active(service, make_alert(0))
        clock.now = t0 + timedelta(hours=7)

        assert service.resolve_inactive_incidents(deadline=0) == 0
        assert len(service.last_resolution.skipped) == 1


@pytest.mark.django_db
class TestNotificationsAndReview:
    def test_record_start_notification(self, service, make_alert):
        incident = service.process_new_alert(make_alert(0))

        incident = service.record_start_notification(incident.pk, "start-1")

        assert incident.state == IncidentState.ACTIVE

    def test_record_notification_unknown_incident(self, service):
        with pytest.raises(IncidentNotFound):
            service.record_end_notification(999, "end-1")

    def test_get_incidents_by_date_range(self, service, site, make_alert, t0):
        incident = service.process_new_alert(make_alert(0))

        found = service.get_incidents_by_date_range(site.pk, t0, t0 + timedelta(hours=1))

        assert found == [incident]

    @override_settings(INCIDENT_RESOLUTION_HOURS=12, SITE_INCIDENT_RESOLVE_BATCH_SIZE=5)
    def test_defaults_come_from_settings(self):
        service = SiteIncidentService()

        assert service.inactivity_hours == 12
        assert service.batch_limit == 5
