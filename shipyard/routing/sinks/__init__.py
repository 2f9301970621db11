"""Sink protocol for Shipyard notification routing.

All sinks implement the ``BaseSink`` protocol: a ``sink_name`` property
and an ``accept(event)`` method.  The dispatcher calls ``accept`` on every
registered sink for every dispatched event.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from shipyard.models.events import NotificationEvent


@runtime_checkable
class BaseSink(Protocol):
    """Protocol that every notification sink must implement."""

    @property
    def sink_name(self) -> str:
        """Return the unique name of this sink."""
        ...

    def accept(self, event: NotificationEvent) -> None:
        """Deliver one event.  May raise; the dispatcher logs and moves on."""
        ...
