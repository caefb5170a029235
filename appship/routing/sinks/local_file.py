"""Local file sink — writes notifications to local JSON files.

Layout: {base_path}/{run_id}/{kind}-{notification_id}.json

Each notification is serialized to canonical JSON.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from appship.core.hasher import canonical_json_bytes
from appship.models.notifications import Notification

logger = logging.getLogger(__name__)


class LocalFileSink:
    """Writes notifications to local JSON files.

    Parameters
    ----------
    base_path:
        Root directory for notification files.  Defaults to
        ``.appship/notifications``.
    """

    def __init__(self, base_path: Path | str | None = None) -> None:
        self._base = Path(base_path) if base_path else Path(".appship/notifications")
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def sink_name(self) -> str:
        return "local_file"

    def accept(self, notification: Notification) -> None:
        """Write the notification to ``{run_id}/{kind}-{notification_id}.json``."""
        target_dir = self._base / notification.run_id
        target_dir.mkdir(parents=True, exist_ok=True)

        target_file = target_dir / f"{notification.kind.value}-{notification.notification_id}.json"
        target_file.write_bytes(canonical_json_bytes(notification.model_dump(mode="json")))

        logger.debug("LocalFileSink: wrote %s to %s", notification.notification_id, target_file)

    def list_notifications(self, run_id: str) -> list[Path]:
        """List all notification files written for a run."""
        run_dir = self._base / run_id
        if not run_dir.exists():
            return []
        return sorted(run_dir.glob("*.json"))

    def read_notification(self, path: Path) -> dict:
        """Read and parse a single notification file."""
        return json.loads(path.read_bytes())
