"""
Async client for the extension repository's update-info and download endpoints.
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
import aiohttp

from ext_updater import __version__
from ext_updater.exceptions import RepositoryError
from ext_updater.models.config import UpdaterConfig

log = logging.getLogger(__name__)


class RepositoryClient:
    """
    Async client for the extension repository.

    Features:
    - A single pooled session, created lazily
    - Bulk update-info queries
    - Streaming artifact downloads with retry and exponential back-off
    """

    CHUNK_SIZE = 65536  # 64 KB

    def __init__(
        self, config: UpdaterConfig, max_attempts: int = 3, base_delay: float = 1.5
    ):
        """
        Initializes the repository client.

        Args:
            config: The validated application configuration.
            max_attempts: Attempts per artifact download before giving up.
            base_delay: Initial back-off between download attempts, in seconds.
        """
        self.config = config
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._session: Optional[aiohttp.ClientSession] = None

    async def _initialize_session(self) -> aiohttp.ClientSession:
        """Ensures an active aiohttp session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.config.max_workers * 2,
                limit_per_host=self.config.max_workers,
                ttl_dns_cache=300,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={
                    "User-Agent": f"ext-updater/{__version__}",
                    "Accept-Encoding": "gzip, deflate",
                },
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
            )
        return self._session

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def fetch_update_info(self, installed: Dict[str, Any]) -> Dict[str, Any]:
        """
        Asks the repository which of the installed extensions can be upgraded.

        Args:
            installed: Mapping of uuid to version token or full record.

        Returns:
            The decoded mapping of uuid to operation descriptor.

        Raises:
            RepositoryError: On transport failure, a non-OK status or a body that
            is not a JSON object.
        """
        session = await self._initialize_session()
        params = {
            "installed": json.dumps(installed),
            "shell_version": self.config.shell_version,
        }
        log.debug(f"Checking for updates: {params}")

        start_time = time.monotonic()
        try:
            async with session.get(self.config.update_info_url, params=params) as r:
                duration_ms = (time.monotonic() - start_time) * 1000
                log.debug(f"update-info answered {r.status} in {duration_ms:.0f} ms")
                if r.status != 200:
                    raise RepositoryError(
                        f"Update check failed with HTTP {r.status}.", status=r.status
                    )
                body = await r.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RepositoryError(f"Update check could not complete: {e}") from e

        try:
            operations = json.loads(body)
        except json.JSONDecodeError as e:
            raise RepositoryError(
                f"Update check returned invalid JSON: {e}", status=200
            ) from e
        if not isinstance(operations, dict):
            raise RepositoryError(
                "Update check returned an unexpected payload.", status=200
            )
        return operations

    def _download_params(self, version_tag: Optional[str]) -> Dict[str, str]:
        params = {"shell_version": self.config.shell_version}
        if self.config.uses_version_tags and version_tag:
            params["version_tag"] = str(version_tag)
            params["api_version"] = self.config.api_version
        return params

    async def download_extension(
        self,
        uuid: str,
        destination_path: Path,
        version_tag: Optional[str] = None,
    ) -> int:
        """
        Streams an extension archive to disk.

        Transport errors are retried with exponential back-off; a non-OK status
        is final.

        Returns:
            The number of bytes written.

        Raises:
            RepositoryError: If the archive could not be downloaded.
        """
        url = self.config.download_url(uuid)
        params = self._download_params(version_tag)
        last_exception: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                session = await self._initialize_session()
                async with session.get(url, params=params, allow_redirects=True) as r:
                    if r.status != 200:
                        raise RepositoryError(
                            f"Download of '{uuid}' failed with HTTP {r.status}.",
                            status=r.status,
                        )
                    bytes_written = 0
                    async with aiofiles.open(destination_path, "wb") as f:
                        async for chunk in r.content.iter_chunked(self.CHUNK_SIZE):
                            await f.write(chunk)
                            bytes_written += len(chunk)
                    return bytes_written
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_exception = e
                log.debug(
                    f"Download attempt {attempt}/{self.max_attempts} for "
                    f"'{uuid}' failed: {e}. Retrying..."
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.base_delay * (2 ** (attempt - 1)))

        raise RepositoryError(
            f"Download of '{uuid}' could not complete: {last_exception}"
        ) from last_exception
