"""
Monitoring signals for the site incident manager.

Emits structured signals at every phase boundary of a manager run:

- incidents.manager.started / incidents.manager.completed
- incidents.phase.started / incidents.phase.completed (backfill|resolve)
- incidents.item.failed (one per isolated item error)
- duration metrics and counters

Minimum tags/fields on every signal:
- run_id
- phase (run|backfill|resolve)
- environment
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from django.conf import settings

logger = logging.getLogger("apps.orchestration.signals")


@dataclass
class SignalTags:
    """Required tags for all monitoring signals."""

    run_id: str
    phase: str  # run, backfill, resolve
    environment: str = "production"
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        base = {
            "run_id": self.run_id,
            "phase": self.phase,
            "environment": self.environment,
        }
        base.update(self.extra)
        return base

    def for_phase(self, phase: str) -> "SignalTags":
        return SignalTags(run_id=self.run_id, phase=phase, environment=self.environment)


class MonitoringBackend:
    """
    Abstract monitoring backend.

    Override emit() to send signals to your preferred monitoring system.
    """

    def emit(
        self,
        signal_name: str,
        tags: SignalTags,
        value: float | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        raise NotImplementedError


class LoggingBackend(MonitoringBackend):
    """Default backend: structured logging."""

    def emit(
        self,
        signal_name: str,
        tags: SignalTags,
        value: float | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        data = {
            "signal": signal_name,
            "value": value,
            **tags.to_dict(),
            **(extra or {}),
        }
        logger.info(f"[SIGNAL] {signal_name}", extra={"signal_data": data})


class StatsdBackend(MonitoringBackend):
    """StatsD backend for metrics collection."""

    def __init__(self, host: str = "localhost", port: int = 8125, prefix: str = "site_incidents"):
        self.host = host
        self.port = port
        self.prefix = prefix
        self._client = None

    def _get_client(self):
        if self._client is None:
            import statsd

            self._client = statsd.StatsClient(self.host, self.port, prefix=self.prefix)
        return self._client

    def emit(
        self,
        signal_name: str,
        tags: SignalTags,
        value: float | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        client = self._get_client()

        # Format: prefix.signal_name.phase
        metric_name = f"{signal_name}.{tags.phase}"

        if value is not None:
            if "duration" in signal_name:
                client.timing(metric_name, value)
            else:
                client.gauge(metric_name, value)
        else:
            client.incr(metric_name)


def get_monitoring_backend() -> MonitoringBackend:
    """Get configured monitoring backend."""
    backend_name = getattr(settings, "ORCHESTRATION_METRICS_BACKEND", "logging")

    if backend_name == "statsd":
        return StatsdBackend(
            host=getattr(settings, "STATSD_HOST", "localhost"),
            port=getattr(settings, "STATSD_PORT", 8125),
            prefix=getattr(settings, "STATSD_PREFIX", "site_incidents"),
        )

    return LoggingBackend()


# Global backend instance (lazy initialized)
_backend: MonitoringBackend | None = None


def _get_backend() -> MonitoringBackend:
    global _backend
    if _backend is None:
        _backend = get_monitoring_backend()
    return _backend


def emit_manager_started(tags: SignalTags) -> None:
    _get_backend().emit("incidents.manager.started", tags)


def emit_manager_completed(tags: SignalTags, duration_ms: float, summary: dict[str, Any]) -> None:
    _get_backend().emit(
        "incidents.manager.completed",
        tags,
        extra={"duration_ms": duration_ms, **summary},
    )
    _get_backend().emit("incidents.manager.duration", tags, value=duration_ms)


def emit_phase_started(tags: SignalTags) -> None:
    _get_backend().emit("incidents.phase.started", tags)


def emit_phase_completed(tags: SignalTags, duration_ms: float, succeeded: int, failed: int) -> None:
    _get_backend().emit(
        "incidents.phase.completed",
        tags,
        extra={"duration_ms": duration_ms, "succeeded": succeeded, "failed": failed},
    )
    _get_backend().emit("incidents.phase.duration", tags, value=duration_ms)
    if failed:
        _get_backend().emit("incidents.phase.failure_count", tags, value=failed)


def emit_item_failed(tags: SignalTags, item_id: Any, error_type: str, error_message: str) -> None:
    _get_backend().emit(
        "incidents.item.failed",
        tags,
        extra={"item_id": item_id, "error_type": error_type, "error_message": error_message},
    )


class PhaseTimer:
    """Context manager timing one manager phase and emitting its signals."""

    def __init__(self, tags: SignalTags):
        self.tags = tags
        self.start_time: float = 0.0
        self.duration_ms: float = 0.0
        self.succeeded = 0
        self.failed = 0

    def __enter__(self) -> "PhaseTimer":
        self.start_time = time.perf_counter()
        emit_phase_started(self.tags)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        if exc_type is not None:
            self.failed = max(self.failed, 1)
        emit_phase_completed(self.tags, self.duration_ms, self.succeeded, self.failed)
        # Don't suppress exceptions
        return False
