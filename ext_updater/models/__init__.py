"""
Data Models Layer.

This package contains the models that define the core data structures
used throughout the application, such as configuration, installed
extensions, and update batches.
"""

from .batch import CheckResult, PendingUpdate, UpdateBatch
from .component import ComponentKind, ComponentRecord, LifecycleState, StateChange
from .config import UpdaterConfig

__all__ = [
    "CheckResult",
    "ComponentKind",
    "ComponentRecord",
    "LifecycleState",
    "PendingUpdate",
    "StateChange",
    "UpdateBatch",
    "UpdaterConfig",
]
