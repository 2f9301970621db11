"""Trigger Listener — turns source changes into (environment, revision) jobs.

Two feeds share one queue:

- **Polling**: every ``poll_interval`` seconds, ask the source repository
  for the head of each watched environment's branch.
- **Webhooks**: ``receive_webhook()`` accepts a notification body and
  enqueues a trigger for every environment watching its branch.

On every (re)start of ``events()`` the listener first resyncs: each
environment whose branch head differs from its persisted
``last_seen_revision`` gets a trigger.  Notifications missed while the
listener was down are therefore recovered rather than lost.

Repeats are dropped: a revision already queued here, already in flight in
the controller, or equal to the last seen revision does not produce a
second trigger.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from shipyard.core.environment_registry import EnvironmentRegistry
from shipyard.core.errors import SourceError
from shipyard.models.triggers import TriggerEvent, TriggerSource, WebhookPayload
from shipyard.triggers.sources import SourceRepository

if TYPE_CHECKING:
    from shipyard.core.controller import RolloutController

logger = logging.getLogger(__name__)


class WebhookRejected(ValueError):
    """Raised when a webhook body cannot be parsed or validated."""


class TriggerListener:
    """Produces a lazy, infinite, restartable stream of ``TriggerEvent``.

    Parameters
    ----------
    source:
        Repository queried for branch heads.
    registry:
        Supplies the watched environments and persists the last seen
        revision per environment.
    poll_interval:
        Seconds between polls.  ``None`` disables polling (webhook only).
    in_flight:
        ``(environment, revision) -> bool``; typically
        ``RolloutController.is_tracked``.  Used for dedupe.
    """

    def __init__(
        self,
        source: SourceRepository,
        registry: EnvironmentRegistry,
        *,
        poll_interval: float | None = 30.0,
        in_flight: Callable[[str, str], bool] | None = None,
    ) -> None:
        self._source = source
        self._registry = registry
        self._poll_interval = poll_interval
        self._in_flight = in_flight or (lambda env, rev: False)
        self._queue: queue.Queue[TriggerEvent] = queue.Queue()
        self._queued: set[tuple[str, str]] = set()
        self._lock = threading.Lock()
        self._stop = threading.Event()

    # ------------------------------------------------------------------
    # Feeds
    # ------------------------------------------------------------------

    def offer(self, environment: str, revision: str, source: TriggerSource) -> bool:
        """Enqueue a trigger unless it duplicates known work.

        Returns ``True`` if it was enqueued.
        """
        key = (environment, revision)
        with self._lock:
            if key in self._queued:
                return False
            if self._in_flight(environment, revision):
                return False
            if self._registry.last_seen_revision(environment) == revision:
                return False
            self._queued.add(key)
        self._queue.put(
            TriggerEvent(environment=environment, revision=revision, source=source)
        )
        logger.info("Trigger %s -> %s (%s)", revision, environment, source.value)
        return True

    def receive_webhook(self, body: bytes | str | dict[str, Any]) -> list[str]:
        """Accept an inbound repository notification.

        Returns the environments a trigger was enqueued for.

        Raises
        ------
        WebhookRejected
            If the body is not valid JSON or lacks ``revision``/``branch``.
        """
        try:
            if isinstance(body, (bytes, str)):
                body = json.loads(body)
            payload = WebhookPayload.model_validate(body)
        except (json.JSONDecodeError, ValidationError) as exc:
            raise WebhookRejected(f"Invalid webhook payload: {exc}") from exc

        targets = [
            env.name for env in self._registry.list() if env.branch == payload.branch
        ]
        if not targets:
            logger.debug("Webhook for unwatched branch %s ignored", payload.branch)
        return [
            name
            for name in targets
            if self.offer(name, payload.revision, TriggerSource.WEBHOOK)
        ]

    def poll_once(self, source: TriggerSource = TriggerSource.POLL) -> int:
        """Query every watched branch head once.  Returns triggers enqueued."""
        enqueued = 0
        for env in self._registry.list():
            try:
                head = self._source.head(env.branch)
            except SourceError as exc:
                logger.warning("Cannot resolve %s for %s: %s", env.branch, env.name, exc)
                continue
            if head and self.offer(env.name, head, source):
                enqueued += 1
        return enqueued

    def resync(self) -> int:
        """Recover changes missed while the listener was not running."""
        enqueued = self.poll_once(TriggerSource.RESYNC)
        if enqueued:
            logger.info("Resync found %d missed revision(s)", enqueued)
        return enqueued

    # ------------------------------------------------------------------
    # Stream
    # ------------------------------------------------------------------

    def events(self, *, block_timeout: float = 0.5) -> Iterator[TriggerEvent]:
        """Yield triggers until ``stop()`` is called.

        Each call starts with a resync, so a generator that is abandoned
        and recreated picks up exactly where the persisted state says.
        A revision only counts as seen once the controller finishes an
        attempt for it, so an event lost to a crash is offered again.
        """
        self._stop.clear()
        self.resync()
        next_poll = (
            time.monotonic() + self._poll_interval if self._poll_interval else None
        )
        while not self._stop.is_set():
            if next_poll is not None and time.monotonic() >= next_poll:
                self.poll_once()
                next_poll = time.monotonic() + self._poll_interval
            try:
                event = self._queue.get(timeout=block_timeout)
            except queue.Empty:
                continue
            with self._lock:
                self._queued.discard((event.environment, event.revision))
            yield event

    def stop(self) -> None:
        self._stop.set()

    def pump(
        self,
        controller: RolloutController,
        *,
        max_events: int | None = None,
    ) -> int:
        """Feed triggers into ``controller.submit`` until stopped.

        Returns the number of triggers submitted.
        """
        submitted = 0
        for event in self.events():
            result = controller.submit(event.environment, event.revision)
            logger.info(
                "Submitted %s to %s: %s", event.revision, event.environment, result.value
            )
            submitted += 1
            if max_events is not None and submitted >= max_events:
                self.stop()
        return submitted
