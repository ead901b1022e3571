"""
Decides when the next bulk update check should run.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from ext_updater.storage.settings import SettingsStore

log = logging.getLogger(__name__)


class UpdateScheduler:
    """
    A single-shot timer that reports "check now".

    The timer is never periodic: after each firing it must be re-armed by one
    of ``on_check_succeeded`` or ``on_check_failed``, which recompute the delay
    from the current time.
    """

    def __init__(
        self,
        settings: SettingsStore,
        on_due: Callable[[], None],
        update_interval: int,
        retry_delay: int,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            settings: Store holding the persisted last check timestamp.
            on_due: Called, on the event loop, whenever a check should run.
            update_interval: Seconds between successful checks.
            retry_delay: Seconds before retrying a failed check.
            clock: Source of the current time in seconds since the epoch.
        """
        self.settings = settings
        self.on_due = on_due
        self.update_interval = update_interval
        self.retry_delay = retry_delay
        self.clock = clock
        self.next_check_at: Optional[float] = None
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def start(self) -> float:
        """
        Arms the first check from the persisted timestamp.

        Returns:
            The delay in seconds until the first check, 0 if it fired at once.
        """
        now = self.clock()
        next_check = self.settings.get_last_check() + self.update_interval
        delay = next_check - now
        if delay > 0:
            self._arm(delay)
            return delay
        log.debug("Last check is older than the update interval; checking now.")
        self._fire()
        return 0.0

    def on_check_succeeded(self) -> None:
        """Persists the check time and waits a full interval."""
        self.settings.set_last_check(int(self.clock()))
        self._arm(self.update_interval)

    def on_check_failed(self) -> None:
        """Retries soon; the persisted timestamp is left untouched."""
        self._arm(self.retry_delay)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.next_check_at = None

    def _arm(self, delay: float) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._fire)
        self.next_check_at = self.clock() + delay
        log.debug(f"Next update check in {delay:.0f}s.")

    def _fire(self) -> None:
        self._handle = None
        self.next_check_at = None
        self.on_due()
