"""Shared formatting helpers for notification sinks."""

from __future__ import annotations

from shipyard.core.hasher import short
from shipyard.models.events import EventKind, NotificationEvent

_KIND_LABELS: dict[EventKind, str] = {
    EventKind.STARTED: "Rollout started",
    EventKind.SUCCEEDED: "Rollout succeeded",
    EventKind.FAILED: "Rollout failed",
    EventKind.ROLLED_BACK: "Rollout rolled back",
}


def format_summary(event: NotificationEvent) -> str:
    """One-line human summary of an event.

    Examples
    --------
    >>> from shipyard.models.events import NotificationEvent, EventKind
    >>> format_summary(NotificationEvent(
    ...     kind=EventKind.SUCCEEDED, environment="prod", revision="abc123",
    ...     attempt_id="ra-1", to_artifact="sha256:" + "f" * 64,
    ... ))
    'Rollout succeeded: prod @ abc123 (- -> ffffffffffff)'
    """
    line = (
        f"{_KIND_LABELS[event.kind]}: {event.environment} @ {event.revision} "
        f"({short(event.from_artifact)} -> {short(event.to_artifact)})"
    )
    if event.reason:
        line += f": {event.reason}"
    return line
