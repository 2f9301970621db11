"""Shipyard: a minimal, auditable deployment pipeline.

  - Content-addressed, reproducible build artifacts
  - Per-environment rollout state machine with health checks
  - Automatic rollback on failed deploys, failed checks or operator cancel
  - Coalescing trigger queue: one active rollout per environment
  - Hash-chained audit log of every completed attempt
"""

__version__ = "0.1.0"
__description__ = "Build, deploy, verify and roll back."

from shipyard.core.controller import RolloutController
from shipyard.core.pipeline import Pipeline
from shipyard.cli.app import app as cli

__all__ = ["Pipeline", "RolloutController", "cli", "__version__"]
