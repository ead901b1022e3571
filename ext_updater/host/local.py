"""
A host backed by extension directories on the local filesystem.

Each extension lives in ``<extensions_dir>/<uuid>/`` with a ``metadata.json``
describing it. The user directory is writable; system directories are only
listed.
"""

import asyncio
import json
import logging
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Iterable, Optional

from ext_updater.exceptions import ArtifactError, HostError
from ext_updater.models.component import (
    ComponentKind,
    ComponentRecord,
    LifecycleState,
    StateChange,
)

from .artifact import ArtifactChecker
from .base import ExtensionHost

log = logging.getLogger(__name__)


def _read_metadata(extension_dir: Path) -> Optional[dict]:
    metadata_path = extension_dir / ArtifactChecker.METADATA_FILE
    if not metadata_path.is_file():
        return None
    try:
        metadata = json.loads(metadata_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        log.warning(f"Ignoring '{extension_dir.name}': unreadable metadata ({e}).")
        return None
    return metadata if isinstance(metadata, dict) else None


class LocalExtensionHost(ExtensionHost):
    """Lists, installs and removes extensions in plain directories."""

    def __init__(
        self,
        extensions_dir: Path,
        system_dirs: Iterable[Path] = (),
        disabled: Iterable[str] = (),
    ):
        super().__init__()
        self.extensions_dir = extensions_dir
        self.system_dirs = [Path(d) for d in system_dirs]
        self._disabled = set(disabled)
        self._states: dict[str, LifecycleState] = {}

    def _record_state(self, change: StateChange) -> None:
        self._states[change.uuid] = change.state

    def _initial_state(self, uuid: str) -> LifecycleState:
        if uuid in self._disabled:
            return LifecycleState.DISABLED
        return LifecycleState.ENABLED

    def _scan(self, base_dir: Path, kind: ComponentKind) -> list[ComponentRecord]:
        if not base_dir.is_dir():
            return []
        records = []
        for extension_dir in sorted(p for p in base_dir.iterdir() if p.is_dir()):
            metadata = _read_metadata(extension_dir)
            if metadata is None:
                continue
            uuid = metadata.get("uuid")
            if uuid != extension_dir.name:
                log.warning(
                    f"Ignoring '{extension_dir.name}': metadata uuid is '{uuid}'."
                )
                continue
            version = metadata.get("version")
            records.append(
                ComponentRecord(
                    uuid=uuid,
                    name=str(metadata.get("name") or uuid),
                    version=str(version) if version not in (None, "") else None,
                    state=self._states.get(uuid) or self._initial_state(uuid),
                    kind=kind,
                    path=str(extension_dir),
                )
            )
        return records

    def list_extensions(self) -> list[ComponentRecord]:
        """
        Lists every extension found. A per-user copy shadows a system copy with
        the same uuid.
        """
        found: dict[str, ComponentRecord] = {}
        for system_dir in self.system_dirs:
            for record in self._scan(system_dir, ComponentKind.SYSTEM):
                found.setdefault(record.uuid, record)
        for record in self._scan(self.extensions_dir, ComponentKind.PER_USER):
            found[record.uuid] = record
        return list(found.values())

    def _user_path(self, uuid: str) -> Path:
        if not uuid or "/" in uuid or "\\" in uuid or uuid in (".", ".."):
            raise HostError(f"Invalid extension uuid: '{uuid}'")
        return self.extensions_dir / uuid

    async def uninstall(self, uuid: str) -> None:
        target = self._user_path(uuid)
        if target.exists():
            await asyncio.to_thread(shutil.rmtree, target)
            log.info(f"Removed extension directory: {target}")
        else:
            log.debug(f"Nothing to remove for '{uuid}' at {target}")
        self.emit_state_change(StateChange(uuid, LifecycleState.UNINSTALLED))

    def _extract(self, uuid: str, artifact_path: Path) -> None:
        target = self._user_path(uuid)
        self.extensions_dir.mkdir(parents=True, exist_ok=True)
        # Stage beside the target so the final move stays on one filesystem
        staging = Path(
            tempfile.mkdtemp(prefix=f".install-{uuid}-", dir=self.extensions_dir)
        )
        try:
            with zipfile.ZipFile(artifact_path) as archive:
                ArtifactChecker.check_members(archive)
                archive.extractall(staging)
            if target.exists():
                shutil.rmtree(target)
            staging.replace(target)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    async def install_from_artifact(self, uuid: str, artifact_path: Path) -> None:
        try:
            await asyncio.to_thread(self._extract, uuid, artifact_path)
        except (OSError, zipfile.BadZipFile, ArtifactError, HostError) as e:
            log.error(f"[red]✗ Install of '{uuid}' failed: {e}[/red]")
            self.emit_state_change(
                StateChange(
                    uuid,
                    LifecycleState.ERROR,
                    f"Error while installing extension '{uuid}': {e}",
                )
            )
            return
        log.info(f"Installed extension '{uuid}' into {self.extensions_dir}")
        self.emit_state_change(StateChange(uuid, LifecycleState.ENABLED))
