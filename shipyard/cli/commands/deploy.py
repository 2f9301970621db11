"""``shipyard deploy ENV REVISION`` and ``shipyard cancel ENV``.

``deploy`` runs one rollout in the foreground and maps its outcome to the
process exit code, so scripts can tell "nothing happened" (1) from
"something happened and was undone" (2) from "something happened and is
broken" (4).
"""

from __future__ import annotations

import typer

from shipyard.cli._runtime import ExitCode, console, err_console, open_pipeline
from shipyard.core.errors import BusyError, UnknownEnvironmentError
from shipyard.models.rollouts import AttemptOutcome
from shipyard.monitor.renderer import StatusRenderer

OUTCOME_EXIT_CODES: dict[AttemptOutcome, ExitCode] = {
    AttemptOutcome.SUCCEEDED: ExitCode.OK,
    AttemptOutcome.FAILED: ExitCode.FAILED,
    AttemptOutcome.ROLLED_BACK: ExitCode.ROLLED_BACK,
    AttemptOutcome.ROLLBACK_FAILED: ExitCode.BROKEN,
}


def deploy_cmd(
    ctx: typer.Context,
    environment: str = typer.Argument(..., help="Target environment."),
    revision: str = typer.Argument(..., help="Source revision to build and deploy."),
) -> None:
    """Build REVISION and roll it out to ENVIRONMENT.

    Exit codes: 0 succeeded, 1 build failed, 2 rolled back,
    3 environment busy, 4 rollback failed, 5 usage error.  Ctrl+C is an
    operator cancel: the rollout is rolled back and audited before exit.
    """
    pipeline = open_pipeline(ctx)
    try:
        attempt = pipeline.controller.run_once(environment, revision)
    except BusyError as exc:
        err_console.print(f"[bold yellow]Busy:[/bold yellow] {exc}")
        raise typer.Exit(code=ExitCode.BUSY)
    except UnknownEnvironmentError as exc:
        err_console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=ExitCode.USAGE)
    finally:
        pipeline.close()

    StatusRenderer(console=console).print_attempt(attempt)
    code = OUTCOME_EXIT_CODES[attempt.outcome]
    if code != ExitCode.OK:
        raise typer.Exit(code=code)


def cancel_cmd(
    ctx: typer.Context,
    environment: str = typer.Argument(..., help="Environment whose rollout to cancel."),
    force: bool = typer.Option(
        False, "--force", help="Also release the lease, for an owner that died mid-rollout."
    ),
) -> None:
    """Ask the process rolling out ENVIRONMENT to roll back now.

    A no-op when the environment is idle.  With --force the lease is
    released at once, so the next deploy need not wait for it to expire.
    """
    pipeline = open_pipeline(ctx)
    try:
        env = pipeline.registry.require(environment)
        if not env.busy:
            console.print(f"[dim]{environment} is idle; nothing to cancel.[/dim]")
            return
        pipeline.registry.request_cancel(environment)
        if force:
            pipeline.registry.break_lease(environment)
            console.print(
                f"[bold red]Lease on {environment} released[/bold red] "
                f"(was held by {env.lease_owner})"
            )
            return
        console.print(
            f"[bold yellow]Cancellation requested for {environment}[/bold yellow] "
            f"(owner {env.lease_owner})"
        )
    except UnknownEnvironmentError as exc:
        err_console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=ExitCode.USAGE)
    finally:
        pipeline.close()
