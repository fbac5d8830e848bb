"""Tests for SiteIncidentManager."""

from datetime import timedelta
from unittest import mock

import pytest
from django.db import OperationalError

from apps.alerts.errors import ClosedIncidentModification
from apps.alerts.models import SiteAlert, SiteIncident
from apps.alerts.state import IncidentState


class Ticker:
    """Monotonic clock advancing by ``step`` seconds on every read."""

    def __init__(self, step: float = 0.0):
        self.value = 0.0
        self.step = step

    def __call__(self) -> float:
        current = self.value
        self.value += self.step
        return current


@pytest.mark.django_db
class TestBackfill:
    def test_links_unlinked_alerts_into_one_incident(self, make_manager, site, make_alert):
        alerts = [make_alert(0), make_alert(1), make_alert(2)]

        stats = make_manager().run()

        incident = SiteIncident.objects.get(site=site)
        assert incident.start_site_alert_id == alerts[0].pk
        assert set(SiteAlert.objects.values_list("site_incident_id", flat=True)) == {incident.pk}
        assert stats.backfill.alerts_found == 3
        assert stats.backfill.alerts_linked == 3
        assert stats.backfill.incidents_opened == 1
        assert not stats.has_errors

    def test_second_run_has_nothing_to_do(self, make_manager, make_alert):
        make_alert(0)
        make_manager().run()

        stats = make_manager().run()

        assert stats.backfill.alerts_found == 0
        assert SiteIncident.objects.count() == 1

    def test_batch_size_bounds_the_run(self, make_manager, make_alert):
        for minute in range(5):
            make_alert(minute)

        stats = make_manager(backfill_batch_size=2).run()

        assert stats.backfill.alerts_found == 2
        assert SiteAlert.objects.filter(site_incident__isnull=True).count() == 3

    def test_one_bad_alert_does_not_abort_the_run(self, make_manager, make_alert):
        alerts = [make_alert(0), make_alert(1), make_alert(2)]
        manager = make_manager()
        real = manager.service.process_new_alert

        def flaky(alert):
            if alert.pk == alerts[1].pk:
                raise RuntimeError("corrupt row")
            return real(alert)

        with mock.patch.object(manager.service, "process_new_alert", side_effect=flaky):
            stats = manager.run()

        assert stats.backfill.alerts_linked == 2
        assert [e.to_dict() for e in stats.backfill.errors] == [
            {"id": alerts[1].pk, "error": "corrupt row"}
        ]
        payload = stats.to_payload()
        assert payload["errors"] == [{"id": alerts[1].pk, "error": "corrupt row"}]

    def test_store_failure_before_backfill_propagates(self, make_manager):
        manager = make_manager()

        with mock.patch.object(
            manager.service.repository,
            "find_unlinked_alerts",
            side_effect=OperationalError("database is locked"),
        ):
            with pytest.raises(OperationalError):
                manager.run()


@pytest.mark.django_db
class TestResolve:
    def test_resolves_inactive_active_incident(self, make_manager, now_holder, make_alert, t0):
        make_alert(0)
        manager = make_manager()
        manager.run()
        incident = SiteIncident.objects.get()
        manager.service.record_start_notification(incident.pk, "start-1")

        now_holder["now"] = t0 + timedelta(hours=7)
        stats = manager.run()

        assert stats.resolve.incidents_resolved == 1
        assert stats.to_payload()["incidentsResolved"] == 1
        incident.refresh_from_db()
        assert incident.ended_at == t0
        assert incident.state == IncidentState.CLOSING

    def test_resolution_errors_are_reported(self, make_manager, now_holder, make_alert, t0):
        make_alert(0)
        manager = make_manager()
        manager.run()
        incident = SiteIncident.objects.get()
        manager.service.record_start_notification(incident.pk, "start-1")

        now_holder["now"] = t0 + timedelta(hours=7)
        with mock.patch.object(
            manager.service.repository,
            "close_incident",
            side_effect=ClosedIncidentModification(incident.pk),
        ):
            stats = manager.run()

        assert stats.resolve.incidents_resolved == 0
        assert [e.id for e in stats.resolve.errors] == [incident.pk]
        assert stats.has_errors
        assert stats.to_payload()["resolutionErrors"][0]["id"] == incident.pk

    def test_incident_awaiting_start_notification_is_not_an_error(
        self, make_manager, now_holder, make_alert, t0
    ):
        make_alert(0)
        manager = make_manager()
        manager.run()

        now_holder["now"] = t0 + timedelta(hours=47)
        stats = manager.run()

        assert stats.resolve.incidents_resolved == 0
        assert stats.resolve.errors == []
        assert not stats.has_errors
        assert SiteIncident.objects.get().state == IncidentState.CREATED

    def test_unexpected_resolution_failure_keeps_backfill_stats(self, make_manager, make_alert):
        make_alert(0)
        manager = make_manager()

        with mock.patch.object(
            manager.service,
            "resolve_inactive_incidents",
            side_effect=OperationalError("connection lost"),
        ):
            stats = manager.run()

        assert stats.backfill.alerts_linked == 1
        assert stats.resolve.errors[0].error == "connection lost"
        assert stats.resolve.errors[0].id is None


@pytest.mark.django_db
class TestTimeBudget:
    def test_exhausted_budget_defers_work(self, make_manager, make_alert):
        for minute in range(3):
            make_alert(minute)

        stats = make_manager(time_budget_seconds=2, monotonic=Ticker(step=1)).run()

        assert stats.backfill.alerts_linked == 1
        assert stats.backfill.deferred == 2
        assert stats.resolve.skipped_for_budget
        assert SiteAlert.objects.filter(site_incident__isnull=True).count() == 2

    def test_deferred_alerts_are_picked_up_next_run(self, make_manager, make_alert):
        for minute in range(3):
            make_alert(minute)
        make_manager(time_budget_seconds=2, monotonic=Ticker(step=1)).run()

        stats = make_manager().run()

        assert stats.backfill.alerts_linked == 2
        assert SiteIncident.objects.count() == 1
        assert SiteAlert.objects.filter(site_incident__isnull=True).count() == 0


@pytest.mark.django_db
class TestRunMetadata:
    def test_run_id_and_timing(self, make_manager):
        stats = make_manager().run(run_id="run-123")

        assert stats.run_id == "run-123"
        assert stats.started_at is not None
        assert stats.completed_at >= stats.started_at
        assert stats.duration_ms >= 0

    def test_generates_run_id(self, make_manager):
        assert make_manager().run().run_id

    def test_emits_manager_signals(self, make_manager):
        with (
            mock.patch("apps.orchestration.manager.emit_manager_started") as started,
            mock.patch("apps.orchestration.manager.emit_manager_completed") as completed,
        ):
            make_manager().run(run_id="run-9")

        assert started.call_args[0][0].run_id == "run-9"
        summary = completed.call_args[0][2]
        assert summary["alerts_found"] == 0
        assert summary["error_count"] == 0
