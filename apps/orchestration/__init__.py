"""
Site incident orchestration app.

Runs the periodic incident lifecycle job:
unlinked site alerts → incidents (backfill) → inactive incidents closed (resolve)

Key concepts:
- One run per trigger, identified by a run_id
- Bounded work per run (batch sizes and a wall-clock budget)
- Per-item failure isolation; the next run continues where this one stopped
- Monitoring signals at every phase boundary
"""

default_app_config = "apps.orchestration.apps.OrchestrationConfig"
