"""Sinks that hand events to the log or to an arbitrary callable."""

from __future__ import annotations

import logging
from collections.abc import Callable

from shipyard.models.events import EventKind, NotificationEvent
from shipyard.routing.sinks._formatting import format_summary

logger = logging.getLogger(__name__)


class LoggingSink:
    """Logs each event: failures at WARNING, everything else at INFO."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    @property
    def sink_name(self) -> str:
        return "log"

    def accept(self, event: NotificationEvent) -> None:
        level = (
            logging.WARNING
            if event.kind in (EventKind.FAILED, EventKind.ROLLED_BACK)
            else logging.INFO
        )
        self._log.log(level, "%s [attempt %s]", format_summary(event), event.attempt_id)


class CallbackSink:
    """Adapts a plain callable into a sink."""

    def __init__(self, callback: Callable[[NotificationEvent], None], name: str = "callback") -> None:
        self._callback = callback
        self._name = name

    @property
    def sink_name(self) -> str:
        return self._name

    def accept(self, event: NotificationEvent) -> None:
        self._callback(event)
