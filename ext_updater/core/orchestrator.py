"""
Supervises the per-extension update state machines of a batch.

The transition logic is a pure reducer, ``reduce_state_change``, over the
current batch and one host notification. ``UpdateOrchestrator`` feeds it the
notifications, keeps the inventory in step and performs the resulting effects.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Union

from ext_updater.models.batch import PendingUpdate, UpdateBatch
from ext_updater.models.component import LifecycleState, StateChange
from ext_updater.storage.inventory import InventoryStore

from .notifications import NotificationSink

log = logging.getLogger(__name__)


class Transition(Enum):
    """What a lifecycle change means for an update in progress."""

    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    OTHER = "other"


def classify_transition(old: LifecycleState, new: LifecycleState) -> Transition:
    if (
        old in (LifecycleState.ENABLED, LifecycleState.ERROR)
        and new == LifecycleState.DOWNLOADING
    ):
        return Transition.STARTED
    if old == LifecycleState.UNINSTALLED and new == LifecycleState.ENABLED:
        return Transition.SUCCEEDED
    if (
        old in (LifecycleState.DOWNLOADING, LifecycleState.UNINSTALLED)
        and new == LifecycleState.ERROR
    ):
        return Transition.FAILED
    return Transition.OTHER


@dataclass(frozen=True)
class BatchStarted:
    pass


@dataclass(frozen=True)
class ItemSucceeded:
    update: PendingUpdate


@dataclass(frozen=True)
class ItemFailed:
    update: PendingUpdate
    message: str


@dataclass(frozen=True)
class BatchFinished:
    all_succeeded: bool
    failed: tuple[PendingUpdate, ...] = ()


Effect = Union[BatchStarted, ItemSucceeded, ItemFailed, BatchFinished]


@dataclass(frozen=True)
class Reduction:
    """The batch after a notification, and what must happen because of it."""

    batch: Optional[UpdateBatch]
    effects: tuple[Effect, ...] = ()


def _resolve(batch: UpdateBatch, effects: list[Effect]) -> Reduction:
    if batch.is_complete:
        effects.append(
            BatchFinished(batch.all_succeeded, tuple(batch.failed.values()))
        )
        return Reduction(None, tuple(effects))
    return Reduction(batch, tuple(effects))


def reduce_state_change(
    batch: Optional[UpdateBatch], old_state: LifecycleState, change: StateChange
) -> Reduction:
    """
    Applies one lifecycle notification to a batch.

    Args:
        batch: The current batch, or None when nothing is pending.
        old_state: The state the inventory recorded for the extension.
        change: The notification from the host.

    Returns:
        The next batch (None once it completed) and the effects to perform.
    """
    if batch is None or change.uuid not in batch:
        return Reduction(batch)

    update = batch.pending[change.uuid]
    transition = classify_transition(old_state, change.state)

    if transition == Transition.STARTED:
        if batch.announced:
            return Reduction(batch)
        return Reduction(replace(batch, announced=True), (BatchStarted(),))

    pending = dict(batch.pending)
    if transition == Transition.SUCCEEDED:
        del pending[change.uuid]
        return _resolve(replace(batch, pending=pending), [ItemSucceeded(update)])

    if transition == Transition.FAILED:
        del pending[change.uuid]
        failed = {**batch.failed, change.uuid: update}
        message = change.error or f"Failed to update extension '{update.name}'"
        next_batch = replace(
            batch,
            pending=pending,
            failed=failed,
            error_count=batch.error_count + 1,
        )
        return _resolve(next_batch, [ItemFailed(update, message)])

    return Reduction(batch)


class UpdateOrchestrator:
    """
    Drives a batch of pending updates to completion.

    It never polls: ``launch`` dispatches one fire-and-forget update per item
    and progress arrives through ``handle_state_change``.
    """

    def __init__(
        self,
        inventory: InventoryStore,
        sink: NotificationSink,
        launch: Callable[[PendingUpdate], None],
        on_finished: Optional[Callable[[bool], None]] = None,
    ):
        self.inventory = inventory
        self.sink = sink
        self.launch = launch
        self.on_finished = on_finished
        self._batch: Optional[UpdateBatch] = None
        self._last_failed: dict[str, PendingUpdate] = {}

    @property
    def batch(self) -> Optional[UpdateBatch]:
        return self._batch

    @property
    def busy(self) -> bool:
        """True while a started batch still has unresolved items."""
        return self._batch is not None and self._batch.started

    @property
    def failed_updates(self) -> list[PendingUpdate]:
        """Items that failed in the last finished batch and can be retried."""
        return list(self._last_failed.values())

    def offer(self, updates: list[PendingUpdate]) -> bool:
        """
        Replaces the idle batch with the result of a new reconciliation.

        Returns False, keeping the current batch, while one is running.
        """
        if self.busy:
            log.info("An update batch is running; keeping it.")
            return False
        self._batch = UpdateBatch.from_updates(updates) if updates else None
        return True

    def start_batch(self) -> int:
        """
        Dispatches every pending update of the idle batch.

        Returns:
            How many updates were dispatched.
        """
        if self._batch is None or self._batch.started:
            return 0

        pending = self._still_installed(self._batch.pending.values())
        self._batch = replace(self._batch, pending=pending, started=True)
        if not pending:
            self._finish(BatchFinished(self._batch.all_succeeded))
            return 0

        self._last_failed = {}
        for update in pending.values():
            self.launch(update)
        return len(pending)

    def retry(self, uuid: str) -> bool:
        """
        Re-issues the update of one failed extension, independently of any
        other item.
        """
        if self._batch is not None and uuid in self._batch.failed:
            update = self._batch.failed[uuid]
            failed = {k: v for k, v in self._batch.failed.items() if k != uuid}
            self._batch = replace(
                self._batch,
                pending={**self._batch.pending, uuid: update},
                failed=failed,
            )
        elif uuid in self._last_failed and not self.busy:
            update = self._last_failed.pop(uuid)
            if not self._still_installed([update]):
                return False
            self._batch = UpdateBatch(pending={uuid: update}, started=True)
        else:
            log.debug(f"No failed update to retry for '{uuid}'.")
            return False

        self.launch(update)
        return True

    def retry_failed(self) -> int:
        """Re-issues every update that failed in the last finished batch."""
        if self.busy or not self._last_failed:
            return 0
        pending = self._still_installed(self._last_failed.values())
        self._last_failed = {}
        if not pending:
            return 0
        self._batch = UpdateBatch(pending=pending, started=True)
        for update in pending.values():
            self.launch(update)
        return len(pending)

    def _still_installed(self, updates) -> dict[str, PendingUpdate]:
        # An untracked uuid never gets a notification that resolves it
        pending = {}
        for update in updates:
            if update.uuid in self.inventory:
                pending[update.uuid] = update
            else:
                log.debug(f"'{update.uuid}' is no longer installed; skipping it.")
        return pending

    def handle_state_change(self, change: StateChange) -> None:
        """Processes one host notification, in the order the host sent them."""
        record = self.inventory.get(change.uuid)
        if record is None:
            log.debug(f"'{change.uuid}' is not tracked; reloading inventory.")
            self.inventory.reload()
            return

        log.debug(
            f"State of {change.uuid} changed from {record.state.value} "
            f"to {change.state.value}"
        )
        reduction = reduce_state_change(self._batch, record.state, change)
        self.inventory.update_state(change.uuid, change.state)
        self._batch = reduction.batch
        for effect in reduction.effects:
            self._apply(effect)

    def _apply(self, effect: Effect) -> None:
        if isinstance(effect, BatchStarted):
            self.sink.batch_started()
        elif isinstance(effect, ItemSucceeded):
            log.info(f"[green]✓ {effect.update.uuid} updated[/green]")
            self.sink.item_succeeded(effect.update.name)
        elif isinstance(effect, ItemFailed):
            log.info(f"[red]✗ {effect.update.uuid} error: {effect.message}[/red]")
            self.sink.item_failed(effect.update.name, effect.message)
        elif isinstance(effect, BatchFinished):
            self._finish(effect)

    def _finish(self, effect: BatchFinished) -> None:
        self._batch = None
        self._last_failed = {u.uuid: u for u in effect.failed}
        self.sink.batch_finished(effect.all_succeeded)
        # Versions changed on disk; pick them up for the next check
        self.inventory.reload()
        if self.on_finished:
            self.on_finished(effect.all_succeeded)
