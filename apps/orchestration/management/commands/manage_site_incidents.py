"""
Management command to run the site incident manager once.

Usage:
    # One run with the configured settings
    python manage.py manage_site_incidents

    # Override the inactivity threshold and batch sizes
    python manage.py manage_site_incidents --threshold-hours 12 --batch-size 200

    # Shorter wall-clock budget
    python manage.py manage_site_incidents --time-budget 60

    # Machine-readable output
    python manage.py manage_site_incidents --json
"""

import json

from django.core.management.base import BaseCommand, CommandError

from apps.alerts.errors import IncidentError
from apps.orchestration.manager import SiteIncidentManager


class Command(BaseCommand):
    help = "Link unlinked site alerts to incidents and close inactive incidents"

    def add_arguments(self, parser):
        parser.add_argument(
            "--threshold-hours",
            type=float,
            help="Inactivity threshold in hours (default: INCIDENT_RESOLUTION_HOURS)",
        )
        parser.add_argument(
            "--batch-size",
            type=int,
            help="Max unlinked alerts and stale incidents handled per run",
        )
        parser.add_argument(
            "--time-budget",
            type=float,
            help="Wall-clock budget in seconds (default: SITE_INCIDENT_TIME_BUDGET_SECONDS)",
        )
        parser.add_argument(
            "--json",
            action="store_true",
            help="Output result as JSON",
        )

    def handle(self, *args, **options):
        try:
            manager = SiteIncidentManager(
                inactivity_hours=options.get("threshold_hours"),
                backfill_batch_size=options.get("batch_size"),
                resolve_batch_size=options.get("batch_size"),
                time_budget_seconds=options.get("time_budget"),
            )
        except IncidentError as e:
            raise CommandError(e.message)

        if not options["json"]:
            self.stdout.write(self.style.NOTICE("Running site incident manager..."))
            self.stdout.write(f"  Inactivity threshold: {manager.inactivity_hours}h")
            self.stdout.write(f"  Time budget: {manager.time_budget_seconds}s")
            self.stdout.write("")

        try:
            stats = manager.run()
        except IncidentError as e:
            raise CommandError(e.message)
        except Exception as e:
            raise CommandError(f"Site incident manager failed: {e}")

        if options["json"]:
            self.stdout.write(json.dumps(stats.to_payload(), indent=2, default=str))
            return

        self._display_stats(stats)

    def _display_stats(self, stats):
        """Display run stats in human-readable format."""
        self.stdout.write(self.style.HTTP_INFO(f"Run ID: {stats.run_id}"))
        self.stdout.write(f"Duration: {stats.duration_ms:.2f}ms")
        self.stdout.write("")

        self.stdout.write("--- BACKFILL ---")
        self.stdout.write(f"  Unlinked alerts found: {stats.backfill.alerts_found}")
        self.stdout.write(f"  Alerts linked: {stats.backfill.alerts_linked}")
        self.stdout.write(f"  Incidents opened: {stats.backfill.incidents_opened}")
        if stats.backfill.deferred:
            self.stdout.write(self.style.WARNING(f"  Deferred: {stats.backfill.deferred}"))
        for error in stats.backfill.errors:
            self.stdout.write(self.style.ERROR(f"  Alert {error.id}: {error.error}"))
        self.stdout.write("")

        self.stdout.write("--- RESOLVE ---")
        if stats.resolve.skipped_for_budget:
            self.stdout.write(self.style.WARNING("  (skipped, time budget exhausted)"))
        self.stdout.write(f"  Incidents resolved: {stats.resolve.incidents_resolved}")
        if stats.resolve.deferred:
            self.stdout.write(self.style.WARNING(f"  Deferred: {stats.resolve.deferred}"))
        for error in stats.resolve.errors:
            self.stdout.write(self.style.ERROR(f"  Incident {error.id}: {error.error}"))
        self.stdout.write("")

        if stats.has_errors:
            self.stdout.write(self.style.WARNING("Completed with errors"))
        else:
            self.stdout.write(self.style.SUCCESS("✓ Site incident manager completed"))
