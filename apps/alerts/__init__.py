"""
Site alerts and incidents app.

Groups fire-detection SiteAlerts into per-site SiteIncidents:
- state.py: incident state machine and field validators (no I/O)
- repository.py: the only writer of incident rows
- resolver.py: inactivity-based closing decisions
- services.py: link-or-create and batch resolution
"""
