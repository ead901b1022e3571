"""
Handles the replacement of a single extension, from download to reinstall.
"""

import asyncio
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Optional

from ext_updater.api.client import RepositoryClient
from ext_updater.exceptions import ArtifactError, HostError, RepositoryError
from ext_updater.host.artifact import ArtifactChecker
from ext_updater.host.base import ExtensionHost
from ext_updater.models.batch import PendingUpdate
from ext_updater.models.component import LifecycleState, StateChange
from ext_updater.utils.formatting import format_size
from ext_updater.utils.structured_logger import UpdateLogger

log = logging.getLogger(__name__)


class ExtensionUpdater:
    """
    Downloads, verifies and reinstalls one extension at a time per worker.

    Every outcome is reported through the host's notification channel rather
    than returned: ``DOWNLOADING`` first, then either ``ERROR`` or the host's
    own ``UNINSTALLED``/``ENABLED`` sequence.
    """

    def __init__(
        self,
        client: RepositoryClient,
        host: ExtensionHost,
        max_workers: int = 4,
        events: Optional[UpdateLogger] = None,
    ):
        self.client = client
        self.host = host
        self.events = events
        self.semaphore = asyncio.Semaphore(max_workers)

    def _fail(self, update: PendingUpdate, stage: str, message: str) -> None:
        if self.events:
            self.events.update_failed(update.uuid, stage, message)
        self.host.emit_state_change(
            StateChange(update.uuid, LifecycleState.ERROR, message)
        )

    async def update(self, update: PendingUpdate) -> None:
        """Manages the complete replacement of one extension."""
        self.host.emit_state_change(
            StateChange(update.uuid, LifecycleState.DOWNLOADING)
        )
        if self.events:
            self.events.update_started(update.uuid, update.name, update.version_tag)

        async with self.semaphore:
            fd, temp_name = tempfile.mkstemp(
                prefix="ext-updater-", suffix=".shell-extension.zip"
            )
            os.close(fd)
            temp_path = Path(temp_name)
            try:
                await self._replace(update, temp_path)
            except Exception as e:
                # Any escape here would leave the item DOWNLOADING forever
                log.error(
                    f"[red]✗ Unexpected error updating '{update.uuid}': {e}[/red]",
                    exc_info=log.getEffectiveLevel() == logging.DEBUG,
                )
                self._fail(update, "unexpected", str(e))
            finally:
                if temp_path.exists():
                    try:
                        os.remove(temp_path)
                    except OSError:
                        pass

    async def _replace(self, update: PendingUpdate, temp_path: Path) -> None:
        start_time = time.monotonic()
        try:
            size = await self.client.download_extension(
                update.uuid, temp_path, update.version_tag
            )
        except RepositoryError as e:
            log.debug(f"Download of {update.uuid} failed: {e}")
            self._fail(
                update, "download", f"Failed to download extension '{update.name}'"
            )
            return

        if self.events:
            self.events.download_completed(
                update.uuid, size, time.monotonic() - start_time
            )
        log.debug(f"Downloaded {update.uuid} ({format_size(size)})")

        try:
            await asyncio.to_thread(ArtifactChecker.verify, temp_path, update.uuid)
        except ArtifactError as e:
            self._fail(
                update,
                "verify",
                f"Downloaded archive for '{update.name}' is invalid: {e}",
            )
            return

        try:
            log.debug(f"Uninstall {update.uuid}")
            await self.host.uninstall(update.uuid)
        except HostError as e:
            self._fail(update, "uninstall", str(e))
            return

        log.debug(f"Extract new version of {update.uuid}")
        await self.host.install_from_artifact(update.uuid, temp_path)
