"""
Compares installed extensions against the repository's view to find upgrades.
"""

import logging
from typing import Any, Optional

from pydantic import BaseModel, ValidationError, field_validator

from ext_updater.api.client import RepositoryClient
from ext_updater.exceptions import RepositoryError
from ext_updater.models.batch import CheckResult, PendingUpdate
from ext_updater.storage.inventory import InventoryStore
from ext_updater.utils.structured_logger import CheckLogger

from .notifications import NotificationSink

log = logging.getLogger(__name__)

UPGRADE = "upgrade"


class UpdateOperation(BaseModel):
    """One entry of an update-info response."""

    operation: str
    version_tag: Optional[str] = None

    @field_validator("version_tag", mode="before")
    @classmethod
    def coerce_version_tag(cls, v: Any) -> Optional[str]:
        """Version tags are opaque; numeric tags are carried as strings."""
        if v is None or v == "":
            return None
        return str(v)

    @classmethod
    def from_descriptor(cls, descriptor: Any) -> Optional["UpdateOperation"]:
        """
        Accepts both response shapes: a bare operation string, or an object
        with ``operation`` and an optional ``version_tag``.
        """
        if isinstance(descriptor, str):
            return cls(operation=descriptor)
        if isinstance(descriptor, dict):
            try:
                return cls.model_validate(descriptor)
            except ValidationError:
                return None
        return None


class ReconciliationEngine:
    """Issues the bulk update check and turns the answer into pending updates."""

    def __init__(
        self,
        inventory: InventoryStore,
        client: RepositoryClient,
        sink: NotificationSink,
        full_records: bool = True,
        pretend_outdated: bool = False,
        events: Optional[CheckLogger] = None,
    ):
        """
        Args:
            inventory: The tracked extensions.
            client: Repository client used for the bulk query.
            sink: Receives "updates available".
            full_records: Send full records instead of bare versions.
            pretend_outdated: Report every version as 1 so that the repository
                offers every extension; a debugging aid.
            events: Optional structured event logger.
        """
        self.inventory = inventory
        self.client = client
        self.sink = sink
        self.full_records = full_records
        self.pretend_outdated = pretend_outdated
        self.events = events

    def build_query(self) -> dict[str, Any]:
        installed = self.inventory.snapshot(full_records=self.full_records)
        if self.pretend_outdated:
            for uuid, entry in installed.items():
                if isinstance(entry, dict):
                    installed[uuid] = {**entry, "version": 1}
                else:
                    installed[uuid] = 1
        return installed

    def interpret(self, operations: dict[str, Any]) -> list[PendingUpdate]:
        """
        Keeps the "upgrade" entries whose extension is still tracked.

        Entries for extensions the inventory no longer knows are dropped; the
        repository may answer about something removed since the query was sent.
        """
        updates = []
        for uuid in sorted(operations):
            op = UpdateOperation.from_descriptor(operations[uuid])
            if op is None:
                log.debug(f"Ignoring malformed operation for '{uuid}'.")
                continue
            if op.operation != UPGRADE:
                continue
            record = self.inventory.get(uuid)
            if record is None:
                log.debug(f"Repository named unknown extension '{uuid}'; dropped.")
                continue
            updates.append(
                PendingUpdate(uuid=uuid, name=record.name, version_tag=op.version_tag)
            )
        return updates

    async def check_for_updates(self) -> CheckResult:
        """
        Runs one reconciliation cycle.

        Never raises for transport problems: they come back as a failed
        CheckResult with no updates.
        """
        installed = self.build_query()
        if self.events:
            self.events.check_started(installed_count=len(installed))

        try:
            operations = await self.client.fetch_update_info(installed)
        except RepositoryError as e:
            log.warning(f"[yellow]Update check failed: {e}[/yellow]")
            if self.events:
                self.events.check_failed(status=e.status, error=str(e))
            return CheckResult(ok=False, status=e.status, error=str(e))

        updates = self.interpret(operations)
        log.debug(f"Updates: {[u.uuid for u in updates]}")
        if self.events:
            self.events.check_completed(updates=[u.uuid for u in updates])

        if updates:
            self.sink.updates_available(updates)
        return CheckResult(ok=True, updates=updates, status=200)
