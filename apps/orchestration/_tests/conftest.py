"""Shared test fixtures for orchestration app."""

from datetime import datetime, timedelta, timezone

import pytest

from apps.alerts.models import Site, SiteAlert
from apps.alerts.services import SiteIncidentService
from apps.orchestration.manager import SiteIncidentManager

T0 = datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def site(db):
    return Site.objects.create(name="Forest Reserve")


@pytest.fixture
def make_alert(db, site):
    def _make(minutes: float = 0, for_site: Site | None = None) -> SiteAlert:
        return SiteAlert.objects.create(
            site=for_site or site,
            event_date=T0 + timedelta(minutes=minutes),
        )

    return _make


@pytest.fixture
def now_holder():
    """Mutable "current time" shared by the service clock."""
    return {"now": T0}


@pytest.fixture
def make_manager(now_holder):
    def _make(**kwargs) -> SiteIncidentManager:
        service = kwargs.pop("service", None) or SiteIncidentService(
            clock=lambda: now_holder["now"]
        )
        kwargs.setdefault("inactivity_hours", 6)
        kwargs.setdefault("backfill_batch_size", 50)
        kwargs.setdefault("resolve_batch_size", 100)
        kwargs.setdefault("time_budget_seconds", 240)
        kwargs.setdefault("environment", "test")
        return SiteIncidentManager(service=service, **kwargs)

    return _make
