"""Per-environment job serialisation with coalescing.

One worker thread per busy environment: jobs for different environments
run in parallel, jobs for the same environment run one at a time.  Each
environment has a single pending slot.  A trigger that arrives while a job
is running waits in that slot; a later trigger replaces it, because an
intermediate revision is superseded by the newer one.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)

# handler(environment, revision, cancel_event)
JobHandler = Callable[[str, str, threading.Event], None]


class SubmitResult(str, Enum):
    """What ``submit()`` did with a trigger."""

    STARTED = "started"  # environment was idle; job running now
    QUEUED = "queued"  # waiting behind the active job
    COALESCED = "coalesced"  # replaced an older queued revision
    DUPLICATE = "duplicate"  # same revision already active or queued


class _Slot:
    """Active and pending revision for one environment."""

    def __init__(self) -> None:
        self.active: str | None = None
        self.pending: str | None = None
        self.cancel = threading.Event()
        self.thread: threading.Thread | None = None


class EnvironmentWorkers:
    """Runs jobs serialised per environment.

    Parameters
    ----------
    handler:
        Called in the worker thread for each job.  Exceptions are logged
        and do not stop the worker from taking the next pending job.
    """

    def __init__(self, handler: JobHandler) -> None:
        self._handler = handler
        self._slots: dict[str, _Slot] = {}
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._closed = False

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, environment: str, revision: str) -> SubmitResult:
        with self._lock:
            if self._closed:
                raise RuntimeError("EnvironmentWorkers is shut down")
            slot = self._slots.setdefault(environment, _Slot())

            if slot.active is None:
                slot.active = revision
                slot.cancel = threading.Event()
                slot.thread = threading.Thread(
                    target=self._work,
                    args=(environment,),
                    name=f"shipyard-{environment}",
                    daemon=True,
                )
                slot.thread.start()
                logger.info("Started %s on %s", revision, environment)
                return SubmitResult.STARTED

            if revision in (slot.active, slot.pending):
                logger.debug("Ignoring duplicate trigger %s for %s", revision, environment)
                return SubmitResult.DUPLICATE

            if slot.pending is not None:
                logger.info(
                    "Coalesced %s for %s: %s superseded", revision, environment, slot.pending
                )
                slot.pending = revision
                return SubmitResult.COALESCED

            slot.pending = revision
            logger.info("Queued %s for %s behind %s", revision, environment, slot.active)
            return SubmitResult.QUEUED

    # ------------------------------------------------------------------
    # Worker loop
    # ------------------------------------------------------------------

    def _work(self, environment: str) -> None:
        while True:
            with self._lock:
                slot = self._slots[environment]
                revision = slot.active
                cancel = slot.cancel
            try:
                self._handler(environment, revision, cancel)
            except Exception:  # noqa: BLE001
                logger.exception("Job %s on %s crashed", revision, environment)
            with self._lock:
                if slot.pending is not None and not self._closed:
                    slot.active, slot.pending = slot.pending, None
                    slot.cancel = threading.Event()
                    continue
                slot.active = None
                slot.pending = None
                slot.thread = None
                self._idle.notify_all()
                return

    # ------------------------------------------------------------------
    # Introspection and control
    # ------------------------------------------------------------------

    def active(self, environment: str) -> str | None:
        with self._lock:
            slot = self._slots.get(environment)
            return slot.active if slot else None

    def pending(self, environment: str) -> str | None:
        with self._lock:
            slot = self._slots.get(environment)
            return slot.pending if slot else None

    def is_tracked(self, environment: str, revision: str) -> bool:
        """True if ``revision`` is running or queued for ``environment``."""
        with self._lock:
            slot = self._slots.get(environment)
            return bool(slot) and revision in (slot.active, slot.pending)

    def cancel(self, environment: str) -> bool:
        """Signal the active job.  Returns ``False`` if the environment is idle."""
        with self._lock:
            slot = self._slots.get(environment)
            if slot is None or slot.active is None:
                return False
            slot.cancel.set()
            return True

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no environment has an active job."""
        with self._idle:
            return self._idle.wait_for(
                lambda: all(s.active is None for s in self._slots.values()),
                timeout=timeout,
            )

    def shutdown(self, *, cancel: bool = False, timeout: float | None = None) -> None:
        """Stop accepting jobs, drop pending ones, and join workers."""
        with self._lock:
            self._closed = True
            threads = []
            for slot in self._slots.values():
                slot.pending = None
                if cancel and slot.active is not None:
                    slot.cancel.set()
                if slot.thread is not None:
                    threads.append(slot.thread)
        for thread in threads:
            thread.join(timeout)
