"""``shipyard listen`` — poll the source repository and deploy new heads."""

from __future__ import annotations

import typer

from shipyard.cli._runtime import console, open_pipeline
from shipyard.models.rollouts import RolloutAttempt
from shipyard.monitor.renderer import StatusRenderer


def listen_cmd(
    ctx: typer.Context,
    interval: float = typer.Option(
        30.0, "--interval", "-i", min=0.1, help="Seconds between polls."
    ),
    max_events: int = typer.Option(
        0, "--max-events", min=0, help="Stop after this many triggers (0 = run forever)."
    ),
) -> None:
    """Run the trigger listener in the foreground until Ctrl+C.

    Changes pushed while the listener was down are picked up on start.
    """
    pipeline = open_pipeline(ctx)
    renderer = StatusRenderer(console=console)

    def _report(attempt: RolloutAttempt) -> None:
        renderer.print_attempt(attempt)

    pipeline.controller.on_attempt = _report
    listener = pipeline.listener(poll_interval=interval)
    console.print(f"[dim]Listening (poll every {interval}s). Press Ctrl+C to exit.[/dim]")
    try:
        listener.pump(pipeline.controller, max_events=max_events or None)
        pipeline.controller.wait_idle()
    except KeyboardInterrupt:
        listener.stop()
        console.print("\n[dim]Stopping; cancelling in-flight rollouts...[/dim]")
        pipeline.controller.shutdown(cancel=True, timeout=60)
    finally:
        pipeline.close()
