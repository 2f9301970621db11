"""Local file sink — writes events to JSON files.

Layout: {base_path}/{environment}/{timestamp}-{event_id}.json
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from shipyard.core.hasher import canonical_json_bytes
from shipyard.models.events import NotificationEvent

logger = logging.getLogger(__name__)


class LocalFileSink:
    """Writes events to local JSON files.

    Parameters
    ----------
    base_path:
        Root directory for event files.  Defaults to ``.shipyard/events``.
    """

    def __init__(self, base_path: Path | str | None = None) -> None:
        self._base = Path(base_path) if base_path else Path(".shipyard/events")
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def sink_name(self) -> str:
        return "local_file"

    def accept(self, event: NotificationEvent) -> None:
        target_dir = self._base / event.environment
        target_dir.mkdir(parents=True, exist_ok=True)
        stamp = event.timestamp.strftime("%Y%m%dT%H%M%S%f")
        target = target_dir / f"{stamp}-{event.event_id}.json"
        target.write_bytes(canonical_json_bytes(event.model_dump(mode="json")))
        logger.debug("LocalFileSink: wrote %s to %s", event.event_id, target)

    def list_events(self, environment: str) -> list[Path]:
        env_dir = self._base / environment
        if not env_dir.exists():
            return []
        return sorted(env_dir.glob("*.json"))

    def read_event(self, path: Path) -> NotificationEvent:
        return NotificationEvent.model_validate(json.loads(path.read_bytes()))
