"""
Data Transfer Objects for the site incident manager.

ManagerStats is the contract between the manager and its callers (HTTP
trigger, Celery task, management command). ``to_payload`` renders the
camelCase shape the scheduler and dashboards read.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from apps.orchestration.batch import ItemError


@dataclass
class BackfillResult:
    """Result of the backfill phase (linking unlinked alerts)."""

    alerts_found: int = 0
    alerts_linked: int = 0
    incidents_opened: int = 0
    errors: list[ItemError] = field(default_factory=list)
    deferred: int = 0
    duration_ms: float = 0.0

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ResolveResult:
    """Result of the resolution phase (closing inactive incidents)."""

    incidents_resolved: int = 0
    errors: list[ItemError] = field(default_factory=list)
    deferred: int = 0
    skipped_for_budget: bool = False
    duration_ms: float = 0.0

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ManagerStats:
    """Aggregate result of one site incident manager run."""

    run_id: str
    backfill: BackfillResult = field(default_factory=BackfillResult)
    resolve: ResolveResult = field(default_factory=ResolveResult)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: float = 0.0

    @property
    def errors(self) -> list[ItemError]:
        return self.backfill.errors

    @property
    def has_errors(self) -> bool:
        return self.backfill.has_errors or self.resolve.has_errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "backfill": self.backfill.to_dict(),
            "resolve": self.resolve.to_dict(),
        }

    def to_payload(self) -> dict[str, Any]:
        return {
            "unlinkedAlertsFound": self.backfill.alerts_found,
            "alertsProcessed": self.backfill.alerts_linked,
            "incidentsResolved": self.resolve.incidents_resolved,
            "errors": [e.to_dict() for e in self.backfill.errors],
            "resolutionErrors": [e.to_dict() for e in self.resolve.errors],
            "durationMs": round(self.duration_ms),
        }
