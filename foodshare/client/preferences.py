from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import ValidationError

from foodshare.domain.models import NotificationPreferences

logger = logging.getLogger(__name__)

FOODSHARE_HOME = os.getenv("FOODSHARE_HOME", str(Path.home() / ".foodshare"))


class PreferenceStore:
    """Notification preferences kept on the user's own machine, one JSON file per user."""

    def __init__(self, directory: str | Path = FOODSHARE_HOME) -> None:
        self._directory = Path(directory)

    def _path(self, user_id: str) -> Path:
        return self._directory / f"preferences-{user_id}.json"

    def load(self, user_id: str) -> NotificationPreferences:
        path = self._path(user_id)
        if not path.exists():
            return NotificationPreferences()
        try:
            return NotificationPreferences.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError:
            logger.warning("unreadable preferences at %s, using defaults", path)
            return NotificationPreferences()

    def save(self, user_id: str, preferences: NotificationPreferences) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        self._path(user_id).write_text(preferences.model_dump_json(indent=2), encoding="utf-8")
