"""Tests for InventoryStore filtering and snapshots."""

from conftest import FakeHost, record

from ext_updater.models.component import ComponentKind, LifecycleState
from ext_updater.storage.inventory import InventoryStore

SELF_UUID = "updater@patapon.info"


def _inventory(*records) -> InventoryStore:
    inventory = InventoryStore(FakeHost(list(records)), SELF_UUID)
    inventory.reload()
    return inventory


def test_reload_keeps_only_updatable_extensions():
    inventory = _inventory(
        record("alpha@example.com", "3"),
        record(SELF_UUID, "7"),
        record("system@example.com", "1", kind=ComponentKind.SYSTEM),
        record("off@example.com", "1", state=LifecycleState.DISABLED),
        record("noversion@example.com", None),
    )

    assert [r.uuid for r in inventory] == ["alpha@example.com"]
    assert SELF_UUID not in inventory
    assert len(inventory) == 1


def test_update_state_on_unknown_uuid_changes_nothing():
    inventory = _inventory(record("alpha@example.com", "3"))

    assert inventory.update_state("ghost@example.com", LifecycleState.ENABLED) is False
    assert inventory.update_state("alpha@example.com", LifecycleState.DOWNLOADING)
    assert inventory.get("alpha@example.com").state == LifecycleState.DOWNLOADING


def test_snapshot_full_records_and_versions():
    inventory = _inventory(
        record("alpha@example.com", "3", name="Alpha"),
        record("beta@example.com", "5", name="Beta", state=LifecycleState.ERROR),
    )

    full = inventory.snapshot(full_records=True)
    assert full["alpha@example.com"] == {
        "uuid": "alpha@example.com",
        "version": "3",
        "name": "Alpha",
        "state": "enabled",
    }
    assert inventory.snapshot(full_records=False) == {
        "alpha@example.com": "3",
        "beta@example.com": "5",
    }


def test_snapshot_skips_extensions_mid_update():
    inventory = _inventory(record("alpha@example.com", "3"), record("beta@example.com", "1"))
    inventory.update_state("beta@example.com", LifecycleState.DOWNLOADING)

    assert list(inventory.snapshot(full_records=False)) == ["alpha@example.com"]


def test_reload_picks_up_new_installations():
    host = FakeHost([record("alpha@example.com", "3")])
    inventory = InventoryStore(host, SELF_UUID)
    inventory.reload()

    host.add(record("gamma@example.com", "1"))
    assert "gamma@example.com" not in inventory
    inventory.reload()
    assert "gamma@example.com" in inventory
