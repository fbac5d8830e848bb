"""
Site incident manager.

The scheduled entry point of the incident lifecycle. One run has two phases:

1. Backfill: link SiteAlerts that have no incident yet (oldest first),
   opening incidents where a site has none.
2. Resolve: close incidents that have been inactive for the configured
   threshold.

Runs are bounded (batch sizes and a wall-clock budget) and every step is
idempotent, so an interrupted run is simply continued by the next one. Runs
may overlap; the database constraints in apps.alerts.repository keep them
consistent.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from django.conf import settings
from django.utils import timezone

from apps.alerts.services import SiteIncidentService
from apps.alerts.state import validate_inactivity_threshold
from apps.orchestration.batch import ItemError, process_batch
from apps.orchestration.dtos import BackfillResult, ManagerStats, ResolveResult
from apps.orchestration.signals import (
    PhaseTimer,
    SignalTags,
    emit_item_failed,
    emit_manager_completed,
    emit_manager_started,
)

logger = logging.getLogger(__name__)


class SiteIncidentManager:
    """
    Runs backfill and resolution over bounded batches.

    Usage:
        manager = SiteIncidentManager()
        stats = manager.run()
    """

    service: SiteIncidentService
    backfill_batch_size: int
    inactivity_hours: float
    resolve_batch_size: int
    time_budget_seconds: float

    def __init__(
        self,
        service: SiteIncidentService | None = None,
        backfill_batch_size: int | None = None,
        inactivity_hours: float | None = None,
        resolve_batch_size: int | None = None,
        time_budget_seconds: float | None = None,
        environment: str | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the manager.

        Args:
            service: Incident service (default: SiteIncidentService()).
            backfill_batch_size: Max unlinked alerts per run (default from settings).
            inactivity_hours: Resolution threshold (default from settings).
            resolve_batch_size: Max incidents resolved per run (default from settings).
            time_budget_seconds: Wall-clock budget of one run (default from settings).
            environment: Environment tag for monitoring signals.
            monotonic: Clock used for the time budget.

        Raises:
            InvalidInactivityThreshold: The resolution threshold is not positive.
        """
        self.service = service or SiteIncidentService()
        self.backfill_batch_size = (
            backfill_batch_size
            if backfill_batch_size is not None
            else int(getattr(settings, "SITE_INCIDENT_BACKFILL_BATCH_SIZE", 50))
        )
        self.inactivity_hours = (
            inactivity_hours
            if inactivity_hours is not None
            else float(getattr(settings, "INCIDENT_RESOLUTION_HOURS", 6))
        )
        validate_inactivity_threshold(self.inactivity_hours)
        self.resolve_batch_size = (
            resolve_batch_size
            if resolve_batch_size is not None
            else int(getattr(settings, "SITE_INCIDENT_RESOLVE_BATCH_SIZE", 100))
        )
        self.time_budget_seconds = (
            time_budget_seconds
            if time_budget_seconds is not None
            else float(getattr(settings, "SITE_INCIDENT_TIME_BUDGET_SECONDS", 240))
        )
        self.environment = environment or getattr(settings, "ENVIRONMENT", "production")
        self.monotonic = monotonic

    def run(self, run_id: str | None = None) -> ManagerStats:
        """
        Execute one manager run.

        Per-item failures are recorded in the returned stats. Only a failure
        before the backfill loop starts (e.g. the store is unreachable)
        propagates.
        """
        run_id = run_id or str(uuid.uuid4())
        tags = SignalTags(run_id=run_id, phase="run", environment=self.environment)
        start = self.monotonic()
        deadline = start + self.time_budget_seconds

        stats = ManagerStats(run_id=run_id, started_at=timezone.now())
        emit_manager_started(tags)
        logger.info(f"Starting site incident manager run {run_id}")

        unlinked = self.service.repository.find_unlinked_alerts(self.backfill_batch_size)

        stats.backfill = self._backfill(unlinked, tags.for_phase("backfill"), deadline)
        stats.resolve = self._resolve(tags.for_phase("resolve"), deadline)

        stats.duration_ms = (self.monotonic() - start) * 1000
        stats.completed_at = timezone.now()

        emit_manager_completed(
            tags,
            stats.duration_ms,
            {
                "alerts_found": stats.backfill.alerts_found,
                "alerts_linked": stats.backfill.alerts_linked,
                "incidents_resolved": stats.resolve.incidents_resolved,
                "error_count": len(stats.backfill.errors) + len(stats.resolve.errors),
            },
        )
        logger.info(
            f"Site incident manager finished in {stats.duration_ms:.0f}ms. "
            f"Linked: {stats.backfill.alerts_linked}, Resolved: {stats.resolve.incidents_resolved}"
        )
        return stats

    def _backfill(self, alerts: list, tags: SignalTags, deadline: float) -> BackfillResult:
        result = BackfillResult(alerts_found=len(alerts))
        if not alerts:
            logger.debug("No unlinked site alerts found")
            return result

        logger.info(f"Found {len(alerts)} unlinked site alerts. Processing...")
        with PhaseTimer(tags) as timer:
            outcome = process_batch(
                alerts,
                self.service.process_new_alert,
                label="site alert",
                deadline=deadline,
                clock=self.monotonic,
            )
            timer.succeeded = len(outcome.succeeded)
            timer.failed = len(outcome.errors)

        for error in outcome.errors:
            emit_item_failed(tags, error.id, error.error_type, error.error)

        result.alerts_linked = len(outcome.succeeded)
        result.incidents_opened = sum(
            1 for alert_id, incident in outcome.succeeded if incident.start_site_alert_id == alert_id
        )
        result.errors = outcome.errors
        result.deferred = len(outcome.skipped)
        result.duration_ms = timer.duration_ms
        return result

    def _resolve(self, tags: SignalTags, deadline: float) -> ResolveResult:
        result = ResolveResult()
        if self.monotonic() >= deadline:
            logger.warning("Time budget exhausted before resolution, skipping until the next run")
            result.skipped_for_budget = True
            return result

        try:
            with PhaseTimer(tags) as timer:
                result.incidents_resolved = self.service.resolve_inactive_incidents(
                    threshold_hours=self.inactivity_hours,
                    batch_limit=self.resolve_batch_size,
                    deadline=deadline,
                )
                outcome = self.service.last_resolution
                if outcome is not None:
                    result.errors = outcome.errors
                    result.deferred = len(outcome.skipped)
                timer.succeeded = result.incidents_resolved
                timer.failed = len(result.errors)
        except Exception as e:
            # Keep the backfill stats; the next run retries resolution.
            logger.exception("Error resolving inactive incidents")
            result.errors = [ItemError(id=None, error=str(e), error_type=type(e).__name__)]

        for error in result.errors:
            emit_item_failed(tags, error.id, error.error_type, error.error)

        result.duration_ms = timer.duration_ms
        return result
