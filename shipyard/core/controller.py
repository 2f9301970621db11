"""Rollout Controller — drives an environment from one artifact to the next.

Lifecycle of one attempt::

    idle -> building -> deploying -> health_checking -> succeeded -> idle
                |            |              |
                |            +--------------+--> rolling_back -> idle
                +--> idle   (build failed: environment never touched)

The controller catches every failure raised below it and translates it
into an attempt outcome with a human-readable reason.  The one exception
is ``AuditWriteError``: a completed attempt that cannot be audited is a
process-level fault and propagates.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
import time
import uuid
from collections.abc import Callable

from shipyard.core.artifact_store import ArtifactStore
from shipyard.core.audit_log import AuditLog
from shipyard.core.builder import ArtifactBuilder
from shipyard.core.environment_registry import EnvironmentRegistry
from shipyard.core.errors import (
    ArtifactIntegrityError,
    BuildError,
    BusyError,
    CancelledError,
    DeployError,
    HealthCheckFailure,
    StoreError,
)
from shipyard.core.health import HealthVerifier
from shipyard.core.hosts import ExecutionHost
from shipyard.core.rollout_machine import CANCELLABLE_STATES, RolloutMachine
from shipyard.core.workers import EnvironmentWorkers, SubmitResult
from shipyard.models.environments import HealthStatus
from shipyard.models.events import EventKind, NotificationEvent
from shipyard.models.pipeline import HealthPolicy, Recipe
from shipyard.models.rollouts import AttemptOutcome, RolloutAttempt, RolloutState
from shipyard.routing.notifier import Notifier

logger = logging.getLogger(__name__)

_OUTCOME_EVENTS: dict[AttemptOutcome, EventKind] = {
    AttemptOutcome.SUCCEEDED: EventKind.SUCCEEDED,
    AttemptOutcome.FAILED: EventKind.FAILED,
    AttemptOutcome.ROLLED_BACK: EventKind.ROLLED_BACK,
    AttemptOutcome.ROLLBACK_FAILED: EventKind.FAILED,
}


def default_owner() -> str:
    """Lease owner id unique to this controller instance."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:6]}"


class RolloutController:
    """Builds, deploys, verifies and, when needed, rolls back.

    Parameters
    ----------
    registry:
        Environment state; the controller is the only writer of
        ``current_artifact``.
    store:
        Artifact store; must already contain any artifact made current.
    builder:
        Produces artifacts from revisions.
    host:
        Execution host that runs artifacts and answers health probes.
    audit:
        Append-only record of completed attempts.
    notifier:
        Best-effort event sink.  ``None`` disables notifications.
    recipe:
        Build recipe applied to every revision.
    health_policy:
        Health verification policy.
    owner:
        Lease owner id.  Generated when omitted.
    busy_retry:
        Seconds a queued job waits before retrying when another process
        holds the environment lease.
    cancel_poll:
        Granularity, in seconds, of checks for a cross-process cancel
        request during waits.
    clock:
        Monotonic clock for the health verifier.
    """

    def __init__(
        self,
        registry: EnvironmentRegistry,
        store: ArtifactStore,
        builder: ArtifactBuilder,
        host: ExecutionHost,
        audit: AuditLog,
        notifier: Notifier | None = None,
        *,
        recipe: Recipe | None = None,
        health_policy: HealthPolicy | None = None,
        owner: str | None = None,
        busy_retry: float = 5.0,
        cancel_poll: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.store = store
        self.builder = builder
        self.host = host
        self.audit = audit
        self.notifier = notifier
        self.recipe = recipe or Recipe()
        self.health_policy = health_policy or HealthPolicy()
        self.owner = owner or default_owner()
        self._busy_retry = busy_retry
        self._cancel_poll = cancel_poll
        self._verifier = HealthVerifier(self.health_policy, clock=clock)
        self._machines: dict[str, RolloutMachine] = {}
        self._machines_lock = threading.Lock()
        self._stopping = threading.Event()
        self._workers = EnvironmentWorkers(self._handle_job)
        self.on_attempt: Callable[[RolloutAttempt], None] | None = None

    # ------------------------------------------------------------------
    # Queued entry points
    # ------------------------------------------------------------------

    def submit(self, environment: str, revision: str) -> SubmitResult:
        """Queue ``revision`` for ``environment``.

        Never rejects a trigger for a busy environment: it waits in the
        environment's pending slot, replacing any older queued revision.
        """
        self.registry.require(environment)
        return self._workers.submit(environment, revision)

    def is_tracked(self, environment: str, revision: str) -> bool:
        return self._workers.is_tracked(environment, revision)

    def cancel(self, environment: str) -> bool:
        """Cancel the in-flight attempt on ``environment``.

        Any active state moves straight to rolling_back.  Returns ``False``
        when the environment is idle in this process (a no-op).
        """
        cancelled = self._workers.cancel(environment)
        if cancelled:
            logger.warning("Cancellation requested for %s", environment)
        return cancelled

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self._workers.wait_idle(timeout)

    def shutdown(self, *, cancel: bool = False, timeout: float | None = None) -> None:
        self._stopping.set()
        self._workers.shutdown(cancel=cancel, timeout=timeout)

    def state(self, environment: str) -> RolloutState:
        """Current state of the environment's in-flight attempt, or IDLE."""
        with self._machines_lock:
            machine = self._machines.get(environment)
        return machine.state if machine else RolloutState.IDLE

    def _handle_job(self, environment: str, revision: str, cancel: threading.Event) -> None:
        while True:
            try:
                attempt = self.run_once(environment, revision, cancel=cancel)
            except BusyError:
                # Another process owns the environment; the job stays queued
                logger.info(
                    "%s busy; retrying %s in %.1fs", environment, revision, self._busy_retry
                )
                if cancel.wait(self._busy_retry) or self._stopping.is_set():
                    return
                if self._workers.pending(environment) is not None:
                    # A newer trigger superseded this revision while we waited
                    return
                continue
            if self.on_attempt is not None:
                self.on_attempt(attempt)
            return

    # ------------------------------------------------------------------
    # Synchronous entry point
    # ------------------------------------------------------------------

    def run_once(
        self,
        environment: str,
        revision: str,
        *,
        cancel: threading.Event | None = None,
    ) -> RolloutAttempt:
        """Run one attempt to completion in the calling thread.

        Raises
        ------
        BusyError
            The environment lease is held, by another process or by an
            attempt already running in this one.
        UnknownEnvironmentError
            ``environment`` is not registered.
        AuditWriteError
            The completed attempt could not be audited.
        """
        if not self.registry.acquire(environment, self.owner):
            holder = self.registry.require(environment).lease_owner
            raise BusyError(f"Environment {environment} is busy (lease held by {holder})")
        env = self.registry.require(environment)
        cancel = cancel or threading.Event()
        attempt = RolloutAttempt(
            environment=environment,
            revision=revision,
            from_artifact=env.current_artifact,
        )
        machine = RolloutMachine(attempt)
        with self._machines_lock:
            self._machines[environment] = machine
        lease_kept = self._keep_lease(environment)
        try:
            self._execute(machine, cancel)
            self.audit.append(attempt)
            self._mark_seen(environment, revision)
        finally:
            with self._machines_lock:
                self._machines.pop(environment, None)
            lease_kept.set()
            self.registry.release(environment, self.owner)

        self._emit(_OUTCOME_EVENTS[attempt.outcome], attempt)
        logger.info(
            "Attempt %s on %s finished: %s%s",
            attempt.attempt_id, environment, attempt.outcome.value,
            f" ({attempt.reason})" if attempt.reason else "",
        )
        return attempt

    # ------------------------------------------------------------------
    # State machine driver
    # ------------------------------------------------------------------

    def _execute(self, machine: RolloutMachine, cancel: threading.Event) -> None:
        attempt = machine.attempt
        name = attempt.environment
        is_cancelled = self._cancel_probe(name, cancel)

        machine.transition(RolloutState.BUILDING)
        self._emit(EventKind.STARTED, attempt)

        try:
            artifact = self.builder.build(attempt.revision, self.recipe)
        except BuildError as exc:
            reason = f"build failed at step {exc.step} with exit code {exc.exit_code}"
            if exc.command:
                reason += f" ({exc.command})"
            machine.finish(AttemptOutcome.FAILED, reason)
            return
        except StoreError as exc:
            machine.finish(AttemptOutcome.FAILED, f"artifact store error: {exc}")
            return
        except KeyboardInterrupt:
            machine.finish(AttemptOutcome.FAILED, "interrupted during build")
            return
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected build error for %s", attempt.revision)
            machine.finish(AttemptOutcome.FAILED, f"build error: {exc}")
            return

        attempt.to_artifact = artifact.content_address
        deployed = False
        try:
            if is_cancelled():
                raise CancelledError("cancelled during build")

            if not self.store.verify(artifact.content_address):
                raise ArtifactIntegrityError(
                    f"artifact {artifact.content_address} failed verification before deploy"
                )
            self.registry.set_desired(name, artifact.content_address)
            machine.transition(RolloutState.DEPLOYING)
            deployed = True
            self._deploy(artifact.content_address, name)
            if is_cancelled():
                raise CancelledError("cancelled during deploy")

            machine.transition(RolloutState.HEALTH_CHECKING)
            self._verifier.verify(
                self.host, name, self._waiter(name, cancel), attempt.health_checks
            )
            if is_cancelled():
                raise CancelledError("cancelled during health checking")

            if not self.store.exists(artifact.content_address):
                raise StoreError(f"artifact {artifact.content_address} vanished from the store")
            machine.transition(RolloutState.SUCCEEDED)
            self.registry.commit(name, artifact.content_address, HealthStatus.HEALTHY)
            machine.finish(AttemptOutcome.SUCCEEDED)
        except CancelledError as exc:
            self._rollback(machine, f"operator cancel: {exc}", deployed)
        except KeyboardInterrupt:
            # Ctrl-C in a foreground deploy is an operator cancel
            self._rollback(machine, "operator cancel: interrupted", deployed)
        except (DeployError, HealthCheckFailure) as exc:
            self._rollback(machine, str(exc), deployed)
        except StoreError as exc:
            if deployed:
                self._rollback(machine, f"store error: {exc}", deployed)
            else:
                machine.finish(AttemptOutcome.FAILED, f"store error: {exc}")
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error rolling out %s to %s", attempt.revision, name)
            if deployed:
                self._rollback(machine, f"unexpected error: {exc}", deployed)
            else:
                machine.finish(AttemptOutcome.FAILED, f"unexpected error: {exc}")

    def _deploy(self, artifact: str, environment: str) -> None:
        try:
            started = self.host.run(artifact, environment)
        except Exception as exc:  # noqa: BLE001
            raise DeployError(f"deploy of {artifact} raised: {exc}") from exc
        if not started:
            raise DeployError(f"host failed to start {artifact} in {environment}")

    def _rollback(self, machine: RolloutMachine, reason: str, deployed: bool) -> None:
        """Restore the environment's previous artifact and close the attempt."""
        attempt = machine.attempt
        name = attempt.environment
        prior = attempt.from_artifact
        logger.warning("Rolling back %s: %s", name, reason)
        if machine.state in CANCELLABLE_STATES:
            machine.transition(RolloutState.ROLLING_BACK)

        try:
            if not deployed:
                self.registry.clear_desired(name)
                machine.finish(AttemptOutcome.ROLLED_BACK, reason)
                return

            if prior is None:
                # Nothing ran here before; the best state is "nothing current"
                self.registry.commit(name, None, HealthStatus.UNHEALTHY)
                machine.finish(
                    AttemptOutcome.ROLLED_BACK,
                    f"{reason}; no previous artifact to restore",
                )
                return

            if not self.store.verify(prior):
                raise StoreError(f"previous artifact {prior} is missing or corrupt")
            self._deploy(prior, name)
            self.registry.commit(name, prior, HealthStatus.UNKNOWN)
            machine.finish(AttemptOutcome.ROLLED_BACK, reason)
        except Exception as exc:  # noqa: BLE001
            logger.error("Rollback of %s failed: %s", name, exc)
            try:
                self.registry.clear_desired(name)
                self.registry.set_health(name, HealthStatus.DEGRADED)
            except StoreError as store_exc:
                logger.error("Could not mark %s degraded: %s", name, store_exc)
            machine.finish(
                AttemptOutcome.ROLLBACK_FAILED, f"{reason}; rollback failed: {exc}"
            )

    # ------------------------------------------------------------------
    # Lease and trigger bookkeeping
    # ------------------------------------------------------------------

    def _keep_lease(self, environment: str) -> threading.Event:
        """Renew the environment lease in the background until the event is set."""
        done = threading.Event()
        ttl = self.registry.lease_ttl
        if ttl is None:
            return done

        def renew() -> None:
            while not done.wait(ttl / 3):
                try:
                    if not self.registry.renew(environment, self.owner):
                        logger.error("Lease on %s was lost mid-attempt", environment)
                        return
                except StoreError as exc:
                    logger.warning("Could not renew lease on %s: %s", environment, exc)

        threading.Thread(
            target=renew, name=f"shipyard-lease-{environment}", daemon=True
        ).start()
        return done

    def _mark_seen(self, environment: str, revision: str) -> None:
        # Only a finished attempt counts as seen, so a crash mid-rollout
        # leaves the revision for the next resync
        try:
            self.registry.record_seen_revision(environment, revision)
        except StoreError as exc:
            logger.error("Could not record %s as seen for %s: %s", revision, environment, exc)

    # ------------------------------------------------------------------
    # Cancellation and notification helpers
    # ------------------------------------------------------------------

    def _cancel_probe(self, environment: str, cancel: threading.Event) -> Callable[[], bool]:
        def probe() -> bool:
            if cancel.is_set():
                return True
            try:
                return self.registry.cancel_requested(environment)
            except StoreError:
                return False

        return probe

    def _waiter(self, environment: str, cancel: threading.Event) -> Callable[[float], bool]:
        probe = self._cancel_probe(environment, cancel)

        def wait(seconds: float) -> bool:
            deadline = time.monotonic() + seconds
            while True:
                if probe():
                    return True
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                cancel.wait(min(remaining, self._cancel_poll))

        return wait

    def _emit(self, kind: EventKind, attempt: RolloutAttempt) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(
                NotificationEvent(
                    kind=kind,
                    environment=attempt.environment,
                    revision=attempt.revision,
                    attempt_id=attempt.attempt_id,
                    from_artifact=attempt.from_artifact,
                    to_artifact=attempt.to_artifact,
                    reason=attempt.reason,
                )
            )
        except Exception:  # noqa: BLE001
            logger.exception("Notifier rejected %s event", kind.value)
