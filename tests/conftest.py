"""Shared fakes for the engine tests."""

import asyncio
import io
import json
import zipfile
from dataclasses import replace
from pathlib import Path

import pytest

from ext_updater.core.notifications import NotificationSink
from ext_updater.exceptions import RepositoryError
from ext_updater.host.base import ExtensionHost
from ext_updater.models.component import ComponentRecord, LifecycleState, StateChange


def make_archive(uuid: str, name: str = "", version: int = 2, extra: dict | None = None) -> bytes:
    """Builds an in-memory extension zip."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        metadata = {"uuid": uuid, "name": name or uuid, "version": version}
        archive.writestr("metadata.json", json.dumps(metadata))
        archive.writestr("extension.js", "// code\n")
        for member, content in (extra or {}).items():
            archive.writestr(member, content)
    return buffer.getvalue()


def record(uuid: str, version: str | None = "1", **kwargs) -> ComponentRecord:
    kwargs.setdefault("name", uuid.split("@")[0].title())
    kwargs.setdefault("state", LifecycleState.ENABLED)
    return ComponentRecord(uuid=uuid, version=version, **kwargs)


class FakeHost(ExtensionHost):
    """An in-memory host whose installs succeed unless told otherwise."""

    def __init__(self, records: list[ComponentRecord] = ()):
        super().__init__()
        self.records = {r.uuid: r for r in records}
        self.install_errors: dict[str, str] = {}
        self.uninstalled: list[str] = []
        self.installed: list[str] = []

    def add(self, rec: ComponentRecord) -> None:
        self.records[rec.uuid] = rec

    def _record_state(self, change: StateChange) -> None:
        if change.uuid in self.records:
            self.records[change.uuid] = replace(
                self.records[change.uuid], state=change.state
            )

    def list_extensions(self) -> list[ComponentRecord]:
        return [replace(r) for r in self.records.values()]

    async def uninstall(self, uuid: str) -> None:
        self.uninstalled.append(uuid)
        self.emit_state_change(StateChange(uuid, LifecycleState.UNINSTALLED))

    async def install_from_artifact(self, uuid: str, artifact_path: Path) -> None:
        if uuid in self.install_errors:
            self.emit_state_change(
                StateChange(uuid, LifecycleState.ERROR, self.install_errors[uuid])
            )
            return
        self.installed.append(uuid)
        self.emit_state_change(StateChange(uuid, LifecycleState.ENABLED))


class FakeClient:
    """Stands in for RepositoryClient without touching the network."""

    def __init__(self, response: dict | None = None):
        self.response = response or {}
        self.check_error: RepositoryError | None = None
        self.download_errors: set[str] = set()
        self.bad_archives: set[str] = set()
        self.queries: list[dict] = []
        self.downloads: list[tuple[str, Path, str | None]] = []
        self.closed = False

    async def fetch_update_info(self, installed: dict) -> dict:
        self.queries.append(installed)
        await asyncio.sleep(0)
        if self.check_error is not None:
            raise self.check_error
        return dict(self.response)

    async def download_extension(self, uuid, destination_path, version_tag=None) -> int:
        self.downloads.append((uuid, Path(destination_path), version_tag))
        await asyncio.sleep(0)
        if uuid in self.download_errors:
            raise RepositoryError(f"Download of '{uuid}' failed with HTTP 404.", 404)
        payload = b"not a zip" if uuid in self.bad_archives else make_archive(uuid)
        Path(destination_path).write_bytes(payload)
        return len(payload)

    async def close(self) -> None:
        self.closed = True


class RecordingSink(NotificationSink):
    def __init__(self):
        self.events: list[tuple] = []

    def updates_available(self, updates):
        self.events.append(("updates_available", [u.uuid for u in updates]))

    def batch_started(self):
        self.events.append(("batch_started",))

    def item_succeeded(self, name):
        self.events.append(("item_succeeded", name))

    def item_failed(self, name, message):
        self.events.append(("item_failed", name, message))

    def batch_finished(self, all_succeeded):
        self.events.append(("batch_finished", all_succeeded))

    def names(self) -> list[str]:
        return [event[0] for event in self.events]


def write_extension(base_dir: Path, uuid: str, version=1, name: str = "") -> Path:
    extension_dir = base_dir / uuid
    extension_dir.mkdir(parents=True)
    metadata = {"uuid": uuid, "name": name or uuid, "version": version}
    (extension_dir / "metadata.json").write_text(json.dumps(metadata))
    return extension_dir


@pytest.fixture
def host():
    return FakeHost(
        [
            record("alpha@example.com", "1", name="Alpha"),
            record("beta@example.com", "2", name="Beta"),
        ]
    )


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def sink():
    return RecordingSink()
