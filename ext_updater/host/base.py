"""
The contract between the update engine and the host that owns extensions.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable

from ext_updater.models.component import ComponentRecord, StateChange

log = logging.getLogger(__name__)

StateChangeCallback = Callable[[StateChange], None]


class ExtensionHost(ABC):
    """
    Base class for extension hosts.

    Subclasses provide listing and replacement; the notification channel is
    shared. Install failures are never returned to the caller: they arrive
    later as an ``ERROR`` notification, exactly like successful transitions.
    """

    def __init__(self):
        self._handlers: dict[int, StateChangeCallback] = {}
        self._handler_ids = itertools.count(1)

    def connect(self, callback: StateChangeCallback) -> int:
        """Subscribes to lifecycle notifications; returns a handler id."""
        handler_id = next(self._handler_ids)
        self._handlers[handler_id] = callback
        return handler_id

    def disconnect(self, handler_id: int) -> None:
        self._handlers.pop(handler_id, None)

    def emit_state_change(self, change: StateChange) -> None:
        """Records the new state and delivers it to every subscriber, in order."""
        self._record_state(change)
        for callback in list(self._handlers.values()):
            try:
                callback(change)
            except Exception as e:
                log.error(f"State change handler failed for '{change.uuid}': {e}")

    def _record_state(self, change: StateChange) -> None:
        """Hook for hosts that keep their own view of extension states."""

    @abstractmethod
    def list_extensions(self) -> list[ComponentRecord]:
        """Returns every extension the host knows about, in any state."""

    @abstractmethod
    async def uninstall(self, uuid: str) -> None:
        """Removes an installed extension and emits ``UNINSTALLED``."""

    @abstractmethod
    async def install_from_artifact(self, uuid: str, artifact_path: Path) -> None:
        """Installs an extension archive and emits ``ENABLED`` or ``ERROR``."""
