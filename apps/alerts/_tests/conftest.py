"""Shared test fixtures for the alerts app."""

from datetime import datetime, timedelta, timezone

import pytest

from apps.alerts.models import Site, SiteAlert
from apps.alerts.repository import SiteIncidentRepository

T0 = datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock returning aware datetimes."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def site(db):
    return Site.objects.create(name="Forest Reserve")


@pytest.fixture
def other_site(db):
    return Site.objects.create(name="Hill Farm")


@pytest.fixture
def make_alert(db, site):
    """Factory for SiteAlerts; ``minutes`` is the offset from T0."""

    def _make(minutes: float = 0, for_site: Site | None = None, **kwargs) -> SiteAlert:
        return SiteAlert.objects.create(
            site=for_site or site,
            event_date=T0 + timedelta(minutes=minutes),
            detected_by=kwargs.pop("detected_by", "VIIRS"),
            confidence=kwargs.pop("confidence", "high"),
            **kwargs,
        )

    return _make


@pytest.fixture
def repository():
    return SiteIncidentRepository()
