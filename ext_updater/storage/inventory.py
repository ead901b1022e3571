"""
In-memory record of the extensions that take part in update checks.
"""

import logging
from typing import Any, Iterator, Optional, Protocol

from ext_updater.models.component import (
    ComponentKind,
    ComponentRecord,
    LifecycleState,
)

log = logging.getLogger(__name__)


class ExtensionSource(Protocol):
    """Anything that can list the host's installed extensions."""

    def list_extensions(self) -> list[ComponentRecord]: ...


class InventoryStore:
    """
    Maps extension uuid to its ComponentRecord.

    Only per-user, non-disabled, versioned extensions other than the updater
    itself are kept; everything else is invisible to the engine.
    """

    def __init__(self, source: ExtensionSource, self_uuid: str):
        self._source = source
        self._self_uuid = self_uuid
        self._records: dict[str, ComponentRecord] = {}

    def _is_tracked(self, record: ComponentRecord) -> bool:
        return (
            record.uuid != self._self_uuid
            and record.kind == ComponentKind.PER_USER
            and record.state != LifecycleState.DISABLED
            and bool(record.version)
        )

    def reload(self) -> None:
        """Rescans the host and replaces the whole mapping."""
        records = {}
        for record in self._source.list_extensions():
            if self._is_tracked(record):
                records[record.uuid] = record
        self._records = dict(sorted(records.items()))
        log.debug(f"Inventory reloaded: {len(self._records)} tracked extension(s).")

    def get(self, uuid: str) -> Optional[ComponentRecord]:
        return self._records.get(uuid)

    def all(self) -> list[ComponentRecord]:
        return list(self._records.values())

    def update_state(self, uuid: str, state: LifecycleState) -> bool:
        """
        Overwrites the recorded state of a known extension.

        Returns False, changing nothing, when the uuid is unknown; the caller is
        expected to reload() since the host reported a new installation.
        """
        record = self._records.get(uuid)
        if record is None:
            return False
        record.state = state
        return True

    def snapshot(self, full_records: bool = True) -> dict[str, Any]:
        """
        Builds the ``installed`` mapping sent with a bulk update check.

        Args:
            full_records: Send the whole record (legacy protocol) instead of the
                bare version token.
        """
        checkable = [rec for rec in self._records.values() if rec.is_checkable]
        if full_records:
            return {rec.uuid: rec.to_query() for rec in checkable}
        return {rec.uuid: rec.version for rec in checkable}

    def __contains__(self, uuid: str) -> bool:
        return uuid in self._records

    def __iter__(self) -> Iterator[ComponentRecord]:
        return iter(list(self._records.values()))

    def __len__(self) -> int:
        return len(self._records)
