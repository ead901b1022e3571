"""
Data structures describing installed extensions and the lifecycle notifications
the host reports about them.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class LifecycleState(Enum):
    """Install/run status of an extension as reported by the host."""

    ENABLED = "enabled"
    DISABLED = "disabled"
    DOWNLOADING = "downloading"
    UNINSTALLED = "uninstalled"
    ERROR = "error"


class ComponentKind(Enum):
    """Where an extension is installed, which decides whether it may be updated."""

    PER_USER = "per_user"
    SYSTEM = "system"


# Only these states take part in update checks
CHECKABLE_STATES = frozenset({LifecycleState.ENABLED, LifecycleState.ERROR})


@dataclass
class ComponentRecord:
    """One known extension and its last-observed lifecycle state."""

    uuid: str
    name: str
    version: Optional[str]
    state: LifecycleState
    kind: ComponentKind = ComponentKind.PER_USER
    path: Optional[str] = None

    @property
    def is_checkable(self) -> bool:
        return self.version is not None and self.state in CHECKABLE_STATES

    def to_query(self) -> dict[str, Any]:
        """Full record form sent to the repository by the legacy protocol."""
        return {
            "uuid": self.uuid,
            "version": self.version,
            "name": self.name,
            "state": self.state.value,
        }


@dataclass(frozen=True)
class StateChange:
    """A lifecycle notification delivered by the host for a single extension."""

    uuid: str
    state: LifecycleState
    error: str = ""
