"""
The main orchestrator: owns the engine's state and processes every event on a
single dispatch queue.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

from ext_updater.api.client import RepositoryClient
from ext_updater.host.base import ExtensionHost
from ext_updater.models.batch import CheckResult, PendingUpdate
from ext_updater.models.component import StateChange
from ext_updater.models.config import UpdaterConfig, get_protocol_info
from ext_updater.storage.inventory import InventoryStore
from ext_updater.storage.settings import SettingsStore
from ext_updater.utils.structured_logger import CheckLogger, UpdateLogger

from .extension_update import ExtensionUpdater
from .notifications import NotificationSink
from .orchestrator import UpdateOrchestrator
from .reconciliation import ReconciliationEngine
from .scheduler import UpdateScheduler

log = logging.getLogger(__name__)


@dataclass
class CheckDue:
    reply: Optional[asyncio.Future] = None


@dataclass
class CheckCompleted:
    result: CheckResult


@dataclass
class StateChanged:
    change: StateChange


@dataclass
class UpdateAllRequested:
    reply: Optional[asyncio.Future] = None


@dataclass
class RetryRequested:
    uuid: Optional[str] = None
    reply: Optional[asyncio.Future] = None


Message = Union[CheckDue, CheckCompleted, StateChanged, UpdateAllRequested, RetryRequested]


def _resolve(reply: Optional[asyncio.Future], value) -> None:
    if reply is not None and not reply.done():
        reply.set_result(value)


class UpdateEngine:
    """
    The engine context.

    Timer firings, finished network requests, host notifications and user
    requests all become messages on one queue and are handled strictly one at
    a time. Network work runs in tasks that post their result back, so no
    handler ever waits on I/O.
    """

    def __init__(
        self,
        config: UpdaterConfig,
        settings: SettingsStore,
        host: ExtensionHost,
        client: RepositoryClient,
        sink: NotificationSink,
        clock: Callable[[], float] = time.time,
        check_events: Optional[CheckLogger] = None,
        update_events: Optional[UpdateLogger] = None,
    ):
        self.config = config
        self.host = host
        self.client = client
        self.sink = sink
        self.check_events = check_events
        self.update_events = update_events

        self.inventory = InventoryStore(host, config.self_uuid)
        self.reconciler = ReconciliationEngine(
            self.inventory,
            client,
            sink,
            full_records=get_protocol_info(config.protocol)["installed"] == "record",
            pretend_outdated=config.pretend_outdated,
            events=check_events,
        )
        self.updater = ExtensionUpdater(
            client, host, max_workers=config.max_workers, events=update_events
        )
        self.orchestrator = UpdateOrchestrator(
            self.inventory,
            sink,
            launch=self._launch_update,
            on_finished=self._on_batch_finished,
        )
        self.scheduler = UpdateScheduler(
            settings,
            on_due=lambda: self.post(CheckDue()),
            update_interval=config.update_interval,
            retry_delay=config.retry_delay,
            clock=clock,
        )

        self._queue: asyncio.Queue = asyncio.Queue()
        self._dispatch_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self._handler_id: Optional[int] = None
        self._check_waiters: list[asyncio.Future] = []
        self._check_in_flight = False
        self._batch_done = asyncio.Event()
        self._last_outcome: Optional[bool] = None

    @property
    def running(self) -> bool:
        return self._dispatch_task is not None and not self._dispatch_task.done()

    async def start(self, schedule: bool = True) -> None:
        """
        Subscribes to the host, loads the inventory and starts dispatching.

        Args:
            schedule: Arm the update scheduler. One-shot commands leave it off
                and request checks explicitly.
        """
        if self.running:
            return
        self._handler_id = self.host.connect(
            lambda change: self.post(StateChanged(change))
        )
        self.inventory.reload()
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        log.info(f"Tracking {len(self.inventory)} extension(s).")
        if schedule:
            delay = self.scheduler.start()
            if self.check_events:
                self.check_events.check_scheduled(delay, "startup")

    async def stop(self) -> None:
        """Unsubscribes, cancels the timer and any in-flight work, closes the client."""
        if self._handler_id is not None:
            self.host.disconnect(self._handler_id)
            self._handler_id = None
        self.scheduler.cancel()

        pending = list(self._tasks)
        if self._dispatch_task is not None:
            pending.append(self._dispatch_task)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._dispatch_task = None
        self._tasks.clear()

        for waiter in self._check_waiters:
            if not waiter.done():
                waiter.cancel()
        self._check_waiters.clear()
        await self.client.close()

    def post(self, message: Message) -> None:
        self._queue.put_nowait(message)

    # --- Requests from the user interface ---------------------------------

    async def check_now(self) -> CheckResult:
        """Runs a reconciliation through the dispatch queue and returns its result."""
        reply = asyncio.get_running_loop().create_future()
        self.post(CheckDue(reply=reply))
        return await reply

    async def update_all(self) -> int:
        """Starts the idle batch; returns how many updates were dispatched."""
        reply = asyncio.get_running_loop().create_future()
        self.post(UpdateAllRequested(reply=reply))
        return await reply

    async def retry(self, uuid: Optional[str] = None) -> int:
        """Retries one failed extension, or all of them when ``uuid`` is None."""
        reply = asyncio.get_running_loop().create_future()
        self.post(RetryRequested(uuid=uuid, reply=reply))
        return await reply

    async def wait_for_batch(self) -> Optional[bool]:
        """Waits until the running batch finishes; returns its outcome."""
        if self.orchestrator.busy:
            await self._batch_done.wait()
        return self._last_outcome

    async def run_once(self, apply: bool = False) -> CheckResult:
        """
        Checks once and, with ``apply``, updates everything found and waits for
        the batch to finish.
        """
        result = await self.check_now()
        if apply and result.ok and result.updates:
            if await self.update_all():
                await self.wait_for_batch()
        return result

    # --- Dispatch ---------------------------------------------------------

    async def _dispatch_loop(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                self._handle(message)
            except Exception as e:
                log.error(
                    f"[red]Error handling {type(message).__name__}: {e}[/red]",
                    exc_info=log.getEffectiveLevel() == logging.DEBUG,
                )
            finally:
                self._queue.task_done()

    def _handle(self, message: Message) -> None:
        if isinstance(message, StateChanged):
            self.orchestrator.handle_state_change(message.change)
        elif isinstance(message, CheckDue):
            self._on_check_due(message)
        elif isinstance(message, CheckCompleted):
            self._on_check_completed(message.result)
        elif isinstance(message, UpdateAllRequested):
            _resolve(message.reply, self._start_batch())
        elif isinstance(message, RetryRequested):
            if message.uuid is None:
                count = self.orchestrator.retry_failed()
            else:
                count = int(self.orchestrator.retry(message.uuid))
            if count:
                self._batch_done.clear()
            _resolve(message.reply, count)

    def _start_batch(self) -> int:
        self._batch_done.clear()
        count = self.orchestrator.start_batch()
        if not self.orchestrator.busy:
            self._batch_done.set()
        return count

    def _on_check_due(self, message: CheckDue) -> None:
        if message.reply is not None:
            self._check_waiters.append(message.reply)
        if self._check_in_flight:
            return
        if self.orchestrator.busy:
            log.info("Update batch in progress; postponing the update check.")
            self.scheduler.on_check_failed()
            self._reply_to_checks(
                CheckResult(ok=False, error="An update batch is in progress.")
            )
            return
        self._check_in_flight = True
        self._spawn(self._run_check())

    async def _run_check(self) -> None:
        log.info("Checking for updates.")
        result = await self.reconciler.check_for_updates()
        self.post(CheckCompleted(result))

    def _on_check_completed(self, result: CheckResult) -> None:
        self._check_in_flight = False
        if result.ok:
            self.scheduler.on_check_succeeded()
            self.orchestrator.offer(result.updates)
            if result.updates and self.config.auto_update:
                log.info("Automatic update enabled; starting batch.")
                self._start_batch()
        else:
            self.scheduler.on_check_failed()
        if self.check_events:
            reason = "success" if result.ok else "retry"
            self.check_events.check_scheduled(
                self.config.update_interval if result.ok else self.config.retry_delay,
                reason,
            )
        self._reply_to_checks(result)

    def _reply_to_checks(self, result: CheckResult) -> None:
        waiters, self._check_waiters = self._check_waiters, []
        for waiter in waiters:
            _resolve(waiter, result)

    def _launch_update(self, update: PendingUpdate) -> None:
        self._spawn(self.updater.update(update))

    def _on_batch_finished(self, all_succeeded: bool) -> None:
        self._last_outcome = all_succeeded
        if self.update_events:
            self.update_events.batch_finished(
                all_succeeded, [u.uuid for u in self.orchestrator.failed_updates]
            )
        self._batch_done.set()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
