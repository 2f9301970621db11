"""Asynchronous, best-effort notifier.

``notify()`` only enqueues.  A daemon thread drains the queue into the
``SinkDispatcher``.  Nothing a sink does, including raising or hanging,
can fail or block a rollout; at worst an event is dropped and logged.
"""

from __future__ import annotations

import logging
import queue
import threading

from shipyard.models.events import NotificationEvent
from shipyard.routing.dispatcher import SinkDispatcher, SinkDispatchError

logger = logging.getLogger(__name__)

_STOP = object()


class Notifier:
    """Queues events for background delivery.

    Parameters
    ----------
    dispatcher:
        Fan-out target for every event.
    maxsize:
        Queue bound; events beyond it are dropped with a warning.
    """

    def __init__(self, dispatcher: SinkDispatcher, *, maxsize: int = 1024) -> None:
        self._dispatcher = dispatcher
        self._queue: queue.Queue[object] = queue.Queue(maxsize=maxsize)
        self._thread: threading.Thread | None = None
        self._start_lock = threading.Lock()
        self._closed = False
        self.dropped = 0

    @property
    def dispatcher(self) -> SinkDispatcher:
        return self._dispatcher

    def _ensure_started(self) -> None:
        with self._start_lock:
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._drain, name="shipyard-notifier", daemon=True
                )
                self._thread.start()

    def notify(self, event: NotificationEvent) -> bool:
        """Enqueue ``event``.  Returns ``False`` if it was dropped."""
        if self._closed:
            logger.warning("Notifier closed; dropping %s event", event.kind.value)
            self.dropped += 1
            return False
        self._ensure_started()
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            logger.warning(
                "Notification queue full; dropping %s event for %s",
                event.kind.value, event.environment,
            )
            return False
        return True

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._dispatcher.dispatch(item)
            except SinkDispatchError as exc:
                logger.error("Notification not delivered: %s", exc)
            except Exception:  # noqa: BLE001
                logger.exception("Unexpected error delivering notification")
            finally:
                self._queue.task_done()

    def flush(self) -> None:
        """Block until every queued event has been handed to the sinks."""
        if self._thread is not None:
            self._queue.join()

    def close(self, timeout: float | None = 5.0) -> None:
        """Deliver what is queued, then stop the background thread."""
        if self._closed:
            return
        self._closed = True
        if self._thread is not None:
            self._queue.put(_STOP)
            self._thread.join(timeout)
