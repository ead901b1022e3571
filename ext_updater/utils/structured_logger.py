"""
Event logging for checks and updates, readable on the console and, when
enabled, appended to a JSON-lines file for later analysis.
"""

import json
import logging
import os
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from rich.markup import escape


class StructuredLogger:
    """
    Sends engine events to the console logger and, optionally, to a JSON-lines
    file with one object per event.

    Usage:
        events = StructuredLogger("ext_updater.events", log_dir=Path("logs"))
        events.info("update_started", uuid="dash@example.com", version_tag="41")
    """

    def __init__(
        self,
        name: str,
        log_dir: Path | None = None,
        enable_json: bool = True,
    ):
        """
        Args:
            name: Name of the underlying ``logging`` logger.
            log_dir: Where the ``.jsonl`` file goes; None disables it.
            enable_json: Write the JSON-lines file at all.
        """
        self._logger = logging.getLogger(name)
        self.enable_json = enable_json and log_dir is not None
        self._session_id = f"{int(time.time())}_{os.getpid()}"

        self._json_file = None
        if self.enable_json:
            log_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            path = log_dir / f"events_{stamp}.jsonl"
            self._json_file = open(path, "a", encoding="utf-8")  # noqa: SIM115

    @staticmethod
    def _console_line(event: str, fields: dict[str, Any]) -> str:
        pairs = " ".join(f"{key}={value}" for key, value in fields.items())
        return f"[{event}] {pairs}" if pairs else f"[{event}]"

    def _append_json(self, level: int, event: str, fields: dict[str, Any]) -> None:
        if self._json_file is None or self._json_file.closed:
            return
        entry = {
            "ts": datetime.now().isoformat(timespec="milliseconds"),
            "level": logging.getLevelName(level),
            "session": self._session_id,
            "event": event,
            **fields,
        }
        try:
            self._json_file.write(json.dumps(entry, default=str) + "\n")
            self._json_file.flush()
        except (OSError, ValueError) as e:
            print(f"Event log write failed: {e}", file=sys.stderr)

    def log(self, level: int, event: str, **fields) -> None:
        # Brackets in the event name would otherwise be read as Rich markup
        self._logger.log(level, escape(self._console_line(event, fields)))
        self._append_json(level, event, fields)

    def debug(self, event: str, **fields) -> None:
        self.log(logging.DEBUG, event, **fields)

    def info(self, event: str, **fields) -> None:
        self.log(logging.INFO, event, **fields)

    def warning(self, event: str, **fields) -> None:
        self.log(logging.WARNING, event, **fields)

    def error(self, event: str, **fields) -> None:
        self.log(logging.ERROR, event, **fields)

    def close(self) -> None:
        if self._json_file is not None and not self._json_file.closed:
            self._json_file.close()


class CheckLogger:
    """Specialized logger for update check events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def check_started(self, installed_count: int):
        self.logger.debug("check_started", installed_count=installed_count)

    def check_completed(self, updates: list[str]):
        self.logger.info("check_completed", update_count=len(updates), updates=updates)

    def check_failed(self, status: int, error: str):
        self.logger.warning("check_failed", status=status, error=error)

    def check_scheduled(self, delay_s: float, reason: str):
        self.logger.debug("check_scheduled", delay_s=round(delay_s, 1), reason=reason)


class UpdateLogger:
    """Specialized logger for per-extension update and batch events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def update_started(self, uuid: str, name: str, version_tag: str | None):
        """Log an extension update dispatched."""
        self.logger.info(
            "update_started", uuid=uuid, name=name, version_tag=version_tag
        )

    def download_completed(self, uuid: str, size_bytes: int, duration_s: float):
        self.logger.debug(
            "update_download_completed",
            uuid=uuid,
            size_bytes=size_bytes,
            duration_s=round(duration_s, 2),
        )

    def update_failed(self, uuid: str, stage: str, error: str):
        """Log an extension update that could not be dispatched to the host."""
        self.logger.error("update_failed", uuid=uuid, stage=stage, error=error)

    def batch_finished(self, all_succeeded: bool, failed: list[str]):
        self.logger.info(
            "batch_finished", all_succeeded=all_succeeded, failed=failed
        )


def create_structured_logger(
    log_dir: Path | None = None, enable_json: bool = False
) -> tuple[StructuredLogger, CheckLogger, UpdateLogger]:
    """
    Create all structured loggers.

    Returns:
        Tuple of (base_logger, check_logger, update_logger)
    """
    base = StructuredLogger("ext_updater.events", log_dir=log_dir, enable_json=enable_json)
    check = CheckLogger(base)
    update = UpdateLogger(base)

    return base, check, update
