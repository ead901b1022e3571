"""
Data structures for one reconciliation cycle: the pending updates it produced
and the batch that drives them to completion.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class PendingUpdate:
    """An extension the repository reports as upgradable."""

    uuid: str
    name: str
    version_tag: Optional[str] = None


@dataclass(frozen=True)
class UpdateBatch:
    """
    The pending updates of one reconciliation cycle plus a running error count.

    Instances are immutable; the orchestrator's reducer returns a new batch for
    every transition so the state machine can be tested without side effects.
    """

    pending: dict[str, PendingUpdate] = field(default_factory=dict)
    failed: dict[str, PendingUpdate] = field(default_factory=dict)
    error_count: int = 0
    started: bool = False
    announced: bool = False

    @classmethod
    def from_updates(cls, updates: list[PendingUpdate]) -> "UpdateBatch":
        return cls(pending={u.uuid: u for u in updates})

    @property
    def is_complete(self) -> bool:
        return not self.pending

    @property
    def all_succeeded(self) -> bool:
        return self.error_count == 0

    def __contains__(self, uuid: str) -> bool:
        return uuid in self.pending


@dataclass
class CheckResult:
    """Outcome of a single bulk update check."""

    ok: bool
    updates: list[PendingUpdate] = field(default_factory=list)
    status: int = 0
    error: Optional[str] = None
