"""Fan-out of rollout notifications to every registered sink.

Called only from the Notifier's background thread, so a slow or failing
sink delays other notifications but never a rollout.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from shipyard.models.events import NotificationEvent

if TYPE_CHECKING:
    from shipyard.routing.sinks import BaseSink

logger = logging.getLogger(__name__)


class SinkDispatchError(RuntimeError):
    """No sink accepted the event."""


class SinkDispatcher:
    """Delivers each rollout event to all sinks, in registration order."""

    def __init__(self) -> None:
        self._sinks: list[BaseSink] = []

    def register_sink(self, sink: BaseSink) -> None:
        if sink in self._sinks:
            return
        self._sinks.append(sink)
        logger.info("Notifications for rollouts go to %s", sink.sink_name)

    def unregister_sink(self, sink: BaseSink) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    @property
    def registered_sinks(self) -> list[BaseSink]:
        return list(self._sinks)

    def dispatch(self, event: NotificationEvent) -> list[str]:
        """Hand ``event`` to every sink; return the names that took it.

        One failing sink is logged and skipped.  ``SinkDispatchError`` is
        raised only when there were sinks and none of them succeeded.
        """
        delivered: list[str] = []
        failed: dict[str, Exception] = {}
        for sink in self._sinks:
            try:
                sink.accept(event)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "%s could not record %s for %s: %s",
                    sink.sink_name, event.kind.value, event.environment, exc,
                )
                failed[sink.sink_name] = exc
            else:
                delivered.append(sink.sink_name)

        if failed and not delivered:
            details = "; ".join(f"{name}: {exc}" for name, exc in failed.items())
            raise SinkDispatchError(
                f"{event.kind.value} event for {event.environment} reached no sink ({details})"
            )
        return delivered
