"""
Persists the small amount of runtime state the scheduler needs between runs.
"""

import json
import logging
from pathlib import Path

from ext_updater.exceptions import ConfigurationError

log = logging.getLogger(__name__)


class SettingsStore:
    """
    A JSON file holding the timestamp of the last successful update check.

    The store is checked eagerly on construction: the engine must not start
    without a readable, writable settings location.
    """

    FILENAME = "state.json"

    def __init__(self, config_dir_path: Path):
        self.state_path = config_dir_path / self.FILENAME
        try:
            config_dir_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(
                f"Settings directory '{config_dir_path}' is not usable: {e}"
            ) from e
        self._state = self._load()

    def _load(self) -> dict:
        if not self.state_path.is_file():
            return {"lastcheck": 0}
        try:
            data = json.loads(self.state_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Settings file '{self.state_path}' is unreadable: {e}"
            ) from e
        if not isinstance(data, dict) or not isinstance(data.get("lastcheck", 0), int):
            raise ConfigurationError(
                f"Settings file '{self.state_path}' has an unexpected layout."
            )
        data.setdefault("lastcheck", 0)
        return data

    def get_last_check(self) -> int:
        """Seconds since the epoch of the last successful check, 0 if never."""
        return self._state["lastcheck"]

    def set_last_check(self, timestamp: int) -> None:
        self._state["lastcheck"] = int(timestamp)
        tmp = self.state_path.with_suffix(".json.tmp")
        try:
            tmp.write_text(json.dumps(self._state, indent=2), encoding="utf-8")
            tmp.replace(self.state_path)
        except OSError as e:
            # The in-memory value still drives this session's schedule
            log.error(f"Could not persist last check timestamp: {e}")
            return
        log.debug(f"Persisted last check timestamp {timestamp}.")
