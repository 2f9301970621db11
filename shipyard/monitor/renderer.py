"""Rich terminal rendering for environment status and rollout history.

Color scheme
------------
- green     : succeeded / healthy
- yellow    : rolled back / unknown
- red       : failed / unhealthy
- bold red  : rollback failed / degraded
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from shipyard.core.hasher import short
from shipyard.models.environments import Environment, HealthStatus
from shipyard.models.rollouts import AttemptOutcome, AuditRecord, RolloutAttempt

_OUTCOME_STYLES: dict[AttemptOutcome, str] = {
    AttemptOutcome.SUCCEEDED: "[green]SUCCEEDED[/green]",
    AttemptOutcome.FAILED: "[red]FAILED[/red]",
    AttemptOutcome.ROLLED_BACK: "[yellow]ROLLED BACK[/yellow]",
    AttemptOutcome.ROLLBACK_FAILED: "[bold red]ROLLBACK FAILED[/bold red]",
}

_HEALTH_STYLES: dict[HealthStatus, str] = {
    HealthStatus.HEALTHY: "[green]healthy[/green]",
    HealthStatus.UNKNOWN: "[dim]unknown[/dim]",
    HealthStatus.UNHEALTHY: "[red]unhealthy[/red]",
    HealthStatus.DEGRADED: "[bold red]degraded[/bold red]",
}


def outcome_label(outcome: AttemptOutcome | None) -> str:
    if outcome is None:
        return "[dim]in flight[/dim]"
    return _OUTCOME_STYLES[outcome]


def _fmt_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


class StatusRenderer:
    """Renders registry and audit data as Rich output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_environment(
        self, env: Environment, last: AuditRecord | None = None
    ) -> Panel:
        lines = [
            f"[bold]Current:[/bold]   {short(env.current_artifact, 16)}",
            f"[bold]Desired:[/bold]   {short(env.desired_artifact, 16)}",
            f"[bold]Health:[/bold]    {_HEALTH_STYLES[env.health_status]}",
            f"[bold]Branch:[/bold]    {env.branch}",
            f"[bold]Last seen:[/bold] {env.last_seen_revision or '-'}",
            f"[bold]Changed:[/bold]   {_fmt_time(env.last_transition_at)}",
            f"[bold]Lease:[/bold]     {env.lease_owner or '[dim]free[/dim]'}",
        ]
        if last is not None:
            attempt = last.attempt
            lines += [
                "",
                f"[bold]Last attempt:[/bold] {attempt.attempt_id} "
                f"{outcome_label(attempt.outcome)} @ {attempt.revision}",
            ]
            if attempt.reason:
                lines.append(f"  [dim]{escape(attempt.reason)}[/dim]")
        return Panel(
            "\n".join(lines),
            title=f"[bold]{env.name}[/bold]",
            border_style="cyan",
            padding=(1, 2),
        )

    def render_environments(self, envs: list[Environment]) -> Table:
        table = Table(title="Environments")
        table.add_column("Name", style="cyan")
        table.add_column("Branch")
        table.add_column("Current")
        table.add_column("Desired")
        table.add_column("Health")
        table.add_column("Lease")
        for env in envs:
            table.add_row(
                env.name,
                env.branch,
                short(env.current_artifact),
                short(env.desired_artifact),
                _HEALTH_STYLES[env.health_status],
                env.lease_owner or "-",
            )
        return table

    def render_history(self, environment: str, records: list[AuditRecord]) -> Table:
        table = Table(title=f"Rollout history: {environment}")
        table.add_column("#", justify="right")
        table.add_column("Attempt", style="cyan")
        table.add_column("Revision")
        table.add_column("From")
        table.add_column("To")
        table.add_column("Outcome")
        table.add_column("Ended")
        table.add_column("Reason", overflow="fold")
        for record in records:
            a = record.attempt
            table.add_row(
                str(record.sequence),
                a.attempt_id,
                a.revision,
                short(a.from_artifact),
                short(a.to_artifact),
                outcome_label(a.outcome),
                _fmt_time(a.ended_at),
                escape(a.reason or ""),
            )
        return table

    def print_attempt(self, attempt: RolloutAttempt) -> None:
        passed = sum(1 for c in attempt.health_checks if c.passed)
        self.console.print(
            Panel(
                "\n".join([
                    f"[bold]Outcome:[/bold]  {outcome_label(attempt.outcome)}",
                    f"[bold]Revision:[/bold] {attempt.revision}",
                    f"[bold]From:[/bold]     {short(attempt.from_artifact, 16)}",
                    f"[bold]To:[/bold]       {short(attempt.to_artifact, 16)}",
                    f"[bold]Checks:[/bold]   {passed}/{len(attempt.health_checks)} passed",
                    *([f"[bold]Reason:[/bold]   {escape(attempt.reason)}"] if attempt.reason else []),
                ]),
                title=f"[bold]{attempt.environment}[/bold] {attempt.attempt_id}",
                border_style="green" if attempt.outcome == AttemptOutcome.SUCCEEDED else "red",
                padding=(1, 2),
            )
        )
