"""Shared CLI plumbing: settings, logging and pipeline construction."""

from __future__ import annotations

import logging
from enum import IntEnum
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from shipyard.config import ShipyardSettings, load_descriptor
from shipyard.core.errors import DescriptorError
from shipyard.core.pipeline import Pipeline

console = Console()
err_console = Console(stderr=True)


class ExitCode(IntEnum):
    """Process exit codes of ``shipyard`` commands."""

    OK = 0
    FAILED = 1  # nothing happened: build or store failure
    ROLLED_BACK = 2  # something happened and was undone
    BUSY = 3  # another rollout owns the environment
    BROKEN = 4  # something happened and the undo failed
    USAGE = 5  # bad configuration or unknown environment


def configure_logging(level: str) -> None:
    """Install a single RichHandler on the root logger."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    root.addHandler(
        RichHandler(console=err_console, show_path=False, rich_tracebacks=True)
    )
    root.setLevel(level.upper())


def settings_from(ctx: typer.Context) -> ShipyardSettings:
    obj = ctx.obj or {}
    settings = obj.get("settings")
    return settings if settings is not None else ShipyardSettings()


def open_pipeline(ctx: typer.Context) -> Pipeline:
    """Build the pipeline from the context's settings, or exit with USAGE."""
    settings = settings_from(ctx)
    descriptor_path: Path = settings.descriptor_path
    try:
        descriptor = load_descriptor(descriptor_path)
    except DescriptorError as exc:
        err_console.print(f"[bold red]Configuration error:[/bold red] {exc}")
        raise typer.Exit(code=ExitCode.USAGE)
    return Pipeline(settings, descriptor)
