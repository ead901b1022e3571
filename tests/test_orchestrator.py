"""Tests for the per-extension update state machine and its supervisor."""

import pytest
from conftest import FakeHost, RecordingSink, record

from ext_updater.core.orchestrator import (
    BatchFinished,
    BatchStarted,
    ItemFailed,
    ItemSucceeded,
    Transition,
    UpdateOrchestrator,
    classify_transition,
    reduce_state_change,
)
from ext_updater.models.batch import PendingUpdate, UpdateBatch
from ext_updater.models.component import LifecycleState as S
from ext_updater.models.component import StateChange
from ext_updater.storage.inventory import InventoryStore

A = PendingUpdate("a@example.com", "A")
B = PendingUpdate("b@example.com", "B")


@pytest.mark.parametrize(
    "old, new, expected",
    [
        (S.ENABLED, S.DOWNLOADING, Transition.STARTED),
        (S.ERROR, S.DOWNLOADING, Transition.STARTED),
        (S.UNINSTALLED, S.ENABLED, Transition.SUCCEEDED),
        (S.DOWNLOADING, S.ERROR, Transition.FAILED),
        (S.DOWNLOADING, S.UNINSTALLED, Transition.OTHER),
        (S.UNINSTALLED, S.ERROR, Transition.FAILED),
        (S.ENABLED, S.ENABLED, Transition.OTHER),
    ],
)
def test_classify_transition(old, new, expected):
    assert classify_transition(old, new) == expected


class TestReducer:
    def test_no_batch_is_a_no_op(self):
        reduction = reduce_state_change(None, S.ENABLED, StateChange(A.uuid, S.DOWNLOADING))
        assert reduction.batch is None
        assert reduction.effects == ()

    def test_first_download_announces_the_batch_once(self):
        batch = UpdateBatch.from_updates([A, B])

        first = reduce_state_change(batch, S.ENABLED, StateChange(A.uuid, S.DOWNLOADING))
        second = reduce_state_change(
            first.batch, S.ENABLED, StateChange(B.uuid, S.DOWNLOADING)
        )

        assert first.effects == (BatchStarted(),)
        assert second.effects == ()
        assert batch.announced is False

    def test_failure_then_success_finishes_unsuccessfully(self):
        batch = UpdateBatch.from_updates([A, B])

        failed = reduce_state_change(
            batch, S.DOWNLOADING, StateChange(A.uuid, S.ERROR, "net fail")
        )
        assert failed.effects == (ItemFailed(A, "net fail"),)
        assert failed.batch.error_count == 1
        assert A.uuid in failed.batch.failed

        done = reduce_state_change(
            failed.batch, S.UNINSTALLED, StateChange(B.uuid, S.ENABLED)
        )
        assert done.batch is None
        assert done.effects == (ItemSucceeded(B), BatchFinished(False, (A,)))

    def test_install_failure_after_uninstall_finishes_the_batch(self):
        batch = UpdateBatch.from_updates([A])

        reduction = reduce_state_change(
            batch, S.UNINSTALLED, StateChange(A.uuid, S.ERROR, "disk full")
        )

        assert reduction.batch is None
        assert reduction.effects == (
            ItemFailed(A, "disk full"),
            BatchFinished(False, (A,)),
        )

    def test_untracked_transitions_leave_the_batch_alone(self):
        batch = UpdateBatch.from_updates([A])

        reduction = reduce_state_change(
            batch, S.DOWNLOADING, StateChange(A.uuid, S.UNINSTALLED)
        )

        assert reduction.batch is batch
        assert reduction.effects == ()

    def test_error_without_message_gets_a_default(self):
        batch = UpdateBatch.from_updates([A])

        reduction = reduce_state_change(batch, S.DOWNLOADING, StateChange(A.uuid, S.ERROR))

        assert reduction.effects[0] == ItemFailed(A, "Failed to update extension 'A'")


def _orchestrator(*records):
    host = FakeHost(list(records))
    inventory = InventoryStore(host, "updater@patapon.info")
    inventory.reload()
    sink = RecordingSink()
    launched = []
    finished = []
    orchestrator = UpdateOrchestrator(
        inventory, sink, launch=launched.append, on_finished=finished.append
    )
    return orchestrator, host, inventory, sink, launched, finished


def test_batch_with_one_failure_reports_completion_once():
    orchestrator, _, _, sink, launched, finished = _orchestrator(
        record(A.uuid, "1", name="A"), record(B.uuid, "2", name="B")
    )
    orchestrator.offer([A, B])

    assert orchestrator.start_batch() == 2
    assert launched == [A, B]
    assert orchestrator.busy

    for change in [
        StateChange(A.uuid, S.DOWNLOADING),
        StateChange(A.uuid, S.ERROR, "net fail"),
        StateChange(B.uuid, S.DOWNLOADING),
        StateChange(B.uuid, S.UNINSTALLED),
        StateChange(B.uuid, S.ENABLED),
    ]:
        orchestrator.handle_state_change(change)

    assert sink.events == [
        ("batch_started",),
        ("item_failed", "A", "net fail"),
        ("item_succeeded", "B"),
        ("batch_finished", False),
    ]
    assert finished == [False]
    assert not orchestrator.busy
    assert orchestrator.failed_updates == [A]

    orchestrator.handle_state_change(StateChange(B.uuid, S.ENABLED))
    assert sink.names().count("batch_finished") == 1


def test_all_succeeded_batch():
    orchestrator, _, _, sink, _, finished = _orchestrator(record(A.uuid, "1", name="A"))
    orchestrator.offer([A])
    orchestrator.start_batch()

    for state in (S.DOWNLOADING, S.UNINSTALLED, S.ENABLED):
        orchestrator.handle_state_change(StateChange(A.uuid, state))

    assert sink.events[-1] == ("batch_finished", True)
    assert finished == [True]
    assert orchestrator.failed_updates == []


def test_offer_is_ignored_while_busy():
    orchestrator, *_ = _orchestrator(record(A.uuid, "1"), record(B.uuid, "1"))
    orchestrator.offer([A])
    orchestrator.start_batch()

    assert orchestrator.offer([B]) is False
    assert B.uuid not in orchestrator.batch


def test_offer_replaces_an_idle_batch():
    orchestrator, *_ = _orchestrator(record(A.uuid, "1"), record(B.uuid, "1"))
    orchestrator.offer([A])

    assert orchestrator.offer([B]) is True
    assert list(orchestrator.batch.pending) == [B.uuid]
    assert orchestrator.offer([]) is True
    assert orchestrator.batch is None
    assert orchestrator.start_batch() == 0


def test_vanished_extensions_are_dropped_at_start():
    orchestrator, _, _, sink, launched, finished = _orchestrator(record(A.uuid, "1"))
    orchestrator.offer([B])

    assert orchestrator.start_batch() == 0
    assert launched == []
    assert sink.events == [("batch_finished", True)]
    assert finished == [True]


def test_untracked_notification_reloads_inventory():
    orchestrator, host, inventory, sink, _, _ = _orchestrator(record(A.uuid, "1"))
    host.add(record("new@example.com", "1"))

    orchestrator.handle_state_change(StateChange("new@example.com", S.ENABLED))

    assert "new@example.com" in inventory
    assert "new@example.com" in inventory.snapshot()
    assert sink.events == []


def test_retry_inside_a_running_batch():
    orchestrator, _, _, sink, launched, _ = _orchestrator(
        record(A.uuid, "1", name="A"), record(B.uuid, "1", name="B")
    )
    orchestrator.offer([A, B])
    orchestrator.start_batch()
    orchestrator.handle_state_change(StateChange(A.uuid, S.DOWNLOADING))
    orchestrator.handle_state_change(StateChange(A.uuid, S.ERROR, "boom"))

    assert orchestrator.retry(A.uuid) is True
    assert launched == [A, B, A]
    assert A.uuid in orchestrator.batch

    for change in [
        StateChange(A.uuid, S.DOWNLOADING),
        StateChange(A.uuid, S.UNINSTALLED),
        StateChange(A.uuid, S.ENABLED),
        StateChange(B.uuid, S.DOWNLOADING),
        StateChange(B.uuid, S.UNINSTALLED),
        StateChange(B.uuid, S.ENABLED),
    ]:
        orchestrator.handle_state_change(change)

    # The earlier error still counts against the batch
    assert sink.events[-1] == ("batch_finished", False)
    assert orchestrator.failed_updates == []


def test_retry_failed_after_the_batch_finished():
    orchestrator, _, _, sink, launched, _ = _orchestrator(record(A.uuid, "1", name="A"))
    orchestrator.offer([A])
    orchestrator.start_batch()
    orchestrator.handle_state_change(StateChange(A.uuid, S.DOWNLOADING))
    orchestrator.handle_state_change(StateChange(A.uuid, S.ERROR, "boom"))
    assert orchestrator.failed_updates == [A]

    assert orchestrator.retry_failed() == 1
    assert orchestrator.busy
    assert launched == [A, A]

    for state in (S.DOWNLOADING, S.UNINSTALLED, S.ENABLED):
        orchestrator.handle_state_change(StateChange(A.uuid, state))
    assert sink.events[-1] == ("batch_finished", True)


def test_retry_skips_extensions_removed_by_a_failed_install():
    orchestrator, host, _, sink, launched, _ = _orchestrator(
        record(A.uuid, "1", name="A")
    )
    orchestrator.offer([A])
    orchestrator.start_batch()
    for change in [
        StateChange(A.uuid, S.DOWNLOADING),
        StateChange(A.uuid, S.UNINSTALLED),
    ]:
        orchestrator.handle_state_change(change)
    del host.records[A.uuid]
    orchestrator.handle_state_change(StateChange(A.uuid, S.ERROR, "disk full"))

    assert sink.events[-1] == ("batch_finished", False)
    assert orchestrator.retry_failed() == 0
    assert orchestrator.retry(A.uuid) is False
    assert launched == [A]
    assert not orchestrator.busy


def test_retry_of_unknown_extension_does_nothing():
    orchestrator, _, _, _, launched, _ = _orchestrator(record(A.uuid, "1"))

    assert orchestrator.retry(A.uuid) is False
    assert orchestrator.retry_failed() == 0
    assert launched == []
