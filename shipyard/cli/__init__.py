"""Shipyard CLI — Typer-based command-line interface.

Provides the ``shipyard`` command with subcommands for deploying a
revision, inspecting environment status and rollout history, cancelling
an in-flight rollout, garbage-collecting artifacts and running the
trigger listener.

All output uses Rich for formatted terminal display.
"""
