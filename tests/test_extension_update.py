"""Tests for the per-extension download and reinstall task."""

import pytest
from conftest import FakeClient, FakeHost, record

from ext_updater.core.extension_update import ExtensionUpdater
from ext_updater.models.batch import PendingUpdate
from ext_updater.models.component import LifecycleState as S

UPDATE = PendingUpdate("alpha@example.com", "Alpha", version_tag="77")


@pytest.fixture
def host():
    host = FakeHost([record(UPDATE.uuid, "1", name="Alpha")])
    host.changes = []
    host.connect(host.changes.append)
    return host


@pytest.mark.asyncio
async def test_successful_update_emits_the_full_sequence(host):
    client = FakeClient()

    await ExtensionUpdater(client, host).update(UPDATE)

    assert [c.state for c in host.changes] == [S.DOWNLOADING, S.UNINSTALLED, S.ENABLED]
    uuid, temp_path, version_tag = client.downloads[0]
    assert (uuid, version_tag) == (UPDATE.uuid, "77")
    assert not temp_path.exists()


@pytest.mark.asyncio
async def test_download_failure_reports_error(host):
    client = FakeClient()
    client.download_errors.add(UPDATE.uuid)

    await ExtensionUpdater(client, host).update(UPDATE)

    assert [c.state for c in host.changes] == [S.DOWNLOADING, S.ERROR]
    assert host.changes[-1].error == "Failed to download extension 'Alpha'"
    assert host.uninstalled == []


@pytest.mark.asyncio
async def test_invalid_archive_fails_before_uninstalling(host):
    client = FakeClient()
    client.bad_archives.add(UPDATE.uuid)

    await ExtensionUpdater(client, host).update(UPDATE)

    assert [c.state for c in host.changes] == [S.DOWNLOADING, S.ERROR]
    assert "is invalid" in host.changes[-1].error
    assert host.uninstalled == []
    assert not client.downloads[0][1].exists()


@pytest.mark.asyncio
async def test_install_error_comes_from_the_host(host):
    host.install_errors[UPDATE.uuid] = "disk full"

    await ExtensionUpdater(FakeClient(), host).update(UPDATE)

    assert [c.state for c in host.changes] == [S.DOWNLOADING, S.UNINSTALLED, S.ERROR]
    assert host.changes[-1].error == "disk full"


@pytest.mark.asyncio
async def test_unexpected_exception_still_ends_in_error(host):
    class ExplodingClient(FakeClient):
        async def download_extension(self, uuid, destination_path, version_tag=None):
            raise RuntimeError("kaboom")

    await ExtensionUpdater(ExplodingClient(), host).update(UPDATE)

    assert host.changes[-1].state == S.ERROR
    assert host.changes[-1].error == "kaboom"
