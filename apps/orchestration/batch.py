"""
Per-item failure isolation for batch jobs.

process_batch runs a handler over a bounded list of items. Each item runs in
its own transaction; an exception on one item is recorded and the loop moves
on. Items not reached before the deadline are reported as skipped and are
picked up again by the next run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from django.db import transaction

from apps.alerts.errors import IncidentError

logger = logging.getLogger(__name__)


@dataclass
class ItemError:
    """A failure on one batch item."""

    id: Any
    error: str
    error_type: str = "Exception"

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "error": self.error}


@dataclass
class BatchOutcome:
    """Result of one process_batch call."""

    succeeded: list[tuple[Any, Any]] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)
    skipped: list[Any] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.errors)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def timed_out(self) -> bool:
        return len(self.skipped) > 0


def _default_key(item: Any) -> Any:
    return getattr(item, "pk", item)


def process_batch(
    items: Sequence[Any],
    handler: Callable[[Any], Any],
    key: Callable[[Any], Any] = _default_key,
    deadline: float | None = None,
    clock: Callable[[], float] = time.monotonic,
    label: str = "item",
) -> BatchOutcome:
    """
    Apply ``handler`` to every item, collecting a success or an error per item.

    Args:
        items: Items to process, in processing order.
        handler: Called with one item; its return value is kept on success.
        key: Identifies an item in the outcome (default: ``item.pk``).
        deadline: ``clock()`` value after which no new item is started.
        clock: Monotonic clock used against ``deadline``.
        label: Item name used in log lines.

    Returns:
        BatchOutcome with ``(key, result)`` pairs, errors and skipped keys.
    """
    outcome = BatchOutcome()

    for index, item in enumerate(items):
        if deadline is not None and clock() >= deadline:
            outcome.skipped.extend(key(rest) for rest in items[index:])
            logger.warning(
                f"Time budget exhausted, deferring {len(outcome.skipped)} {label}(s) to the next run"
            )
            break

        item_key = key(item)
        try:
            with transaction.atomic():
                result = handler(item)
        except IncidentError as e:
            logger.warning(f"Error processing {label} {item_key}: {e.message}")
            outcome.errors.append(ItemError(id=item_key, error=e.message, error_type=type(e).__name__))
        except Exception as e:
            logger.exception(f"Error processing {label} {item_key}")
            outcome.errors.append(ItemError(id=item_key, error=str(e), error_type=type(e).__name__))
        else:
            outcome.succeeded.append((item_key, result))

    return outcome
