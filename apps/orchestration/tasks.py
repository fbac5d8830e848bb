"""Celery tasks for the site incident manager.

run_site_incident_manager is scheduled by CELERY_BEAT_SCHEDULE and can also
be queued on demand.
"""

from __future__ import annotations

from typing import Any

from celery import shared_task


@shared_task(bind=True)
def run_site_incident_manager(
    self,
    inactivity_hours: float | None = None,
    backfill_batch_size: int | None = None,
    resolve_batch_size: int | None = None,
    time_budget_seconds: float | None = None,
) -> dict[str, Any]:
    """
    Celery task running one site incident manager pass.

    Args:
        inactivity_hours: Override of INCIDENT_RESOLUTION_HOURS.
        backfill_batch_size: Override of SITE_INCIDENT_BACKFILL_BATCH_SIZE.
        resolve_batch_size: Override of SITE_INCIDENT_RESOLVE_BATCH_SIZE.
        time_budget_seconds: Override of SITE_INCIDENT_TIME_BUDGET_SECONDS.

    Returns:
        ManagerStats as dict. The Celery task id is used as the run_id.
    """
    from apps.orchestration.manager import SiteIncidentManager

    manager = SiteIncidentManager(
        inactivity_hours=inactivity_hours,
        backfill_batch_size=backfill_batch_size,
        resolve_batch_size=resolve_batch_size,
        time_budget_seconds=time_budget_seconds,
    )
    stats = manager.run(run_id=self.request.id)
    return stats.to_dict()
