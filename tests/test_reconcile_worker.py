
# tests/test_reconcile_worker.py

import threading
import time
from datetime import timedelta

import pytest

from app.collaborators.mock import RecordingPayments, RecordingStorage
from app.purchases import state_machine as sm
from app.purchases.effects import EffectDispatcher
from app.purchases.store import InMemoryPurchaseStore
from app.purchases.service import TransitionHandler
from app.workers.reconcile_worker import SUMMARY_KEYS, ReconcileWorker, sweep
from services.metrics import get_counter
from tests.conftest import make_completed, make_disputed


def test_auto_confirm_due_vs_not_yet_due(handler, store, dispatcher, payments, storage, clock, buyer):
    due = make_completed(handler, buyer, file_ref="products/due.zip")
    clock.advance(hours=1, seconds=1)
    later = make_completed(handler, buyer, file_ref="products/later.zip")

    # one deadline passed a second ago, the other is an hour away
    run_at = due.auto_confirm_at + timedelta(seconds=1)
    assert later.auto_confirm_at == run_at + timedelta(hours=1)

    report = sweep(store, dispatcher, now=run_at)

    assert report["auto_confirm_candidates"] == 1
    assert report["auto_confirmed"] == 1
    assert store.get(due.id).status == sm.CONFIRMED
    assert store.get(later.id).status == sm.COMPLETED
    assert payments.calls == [(str(due.id), "confirm")]
    assert storage.deleted == ["products/due.zip"]


def test_escalation_boundary(handler, store, dispatcher, clock, buyer):
    p = make_disputed(handler, buyer)
    deadline = p.platform_intervention_at

    report = sweep(store, dispatcher, now=deadline - timedelta(seconds=1))
    assert report["escalation_candidates"] == 0
    assert store.get(p.id).status == sm.DISPUTE_REQUESTED

    report = sweep(store, dispatcher, now=deadline + timedelta(seconds=1))
    assert report["escalated"] == 1
    assert store.get(p.id).status == sm.DISPUTE_PROCESSING


def test_disputed_purchase_is_never_auto_confirmed(handler, store, dispatcher, payments, buyer):
    p = make_disputed(handler, buyer)
    report = sweep(store, dispatcher, now=p.dispute_requested_at + timedelta(days=30))
    assert report["auto_confirmed"] == 0
    assert store.get(p.id).status == sm.DISPUTE_PROCESSING
    assert payments.calls == []


def test_second_sweep_at_same_instant_is_a_no_op(handler, store, dispatcher, payments, buyer):
    a = make_completed(handler, buyer)
    b = make_disputed(handler, buyer)
    run_at = a.auto_confirm_at + timedelta(days=1)

    first = sweep(store, dispatcher, now=run_at)
    assert first["auto_confirmed"] == 1
    assert first["escalated"] == 1
    calls = list(payments.calls)

    second = sweep(store, dispatcher, now=run_at)
    assert second["auto_confirmed"] == 0
    assert second["escalated"] == 0
    assert second["auto_confirm_candidates"] == 0
    assert payments.calls == calls
    assert store.get(b.id).status == sm.DISPUTE_PROCESSING


class _FlakyStore(InMemoryPurchaseStore):
    def __init__(self):
        super().__init__()
        self.broken = set()

    def compare_and_swap(self, expected_status, new, *, actor, event):
        if new.id in self.broken:
            raise RuntimeError("connection reset")
        return super().compare_and_swap(expected_status, new, actor=actor, event=event)


def test_one_failing_candidate_does_not_abort_the_batch(clock, dispatcher, buyer):
    store = _FlakyStore()
    handler = TransitionHandler(store, clock=clock)
    ids = [make_completed(handler, buyer).id for _ in range(3)]
    store.broken.add(ids[1])

    report = sweep(store, dispatcher, now=clock.now + timedelta(days=8))

    assert report["auto_confirmed"] == 2
    assert report["errors"] == 1
    assert store.get(ids[0]).status == sm.CONFIRMED
    assert store.get(ids[1]).status == sm.COMPLETED
    assert store.get(ids[2]).status == sm.CONFIRMED
    assert [i["category"] for i in report["items"]].count("error") == 1


class _StaleQueryStore(InMemoryPurchaseStore):
    """Candidate query returns snapshots from before a concurrent dispute."""

    def __init__(self):
        super().__init__()
        self.snapshot = []

    def list_due_auto_confirm(self, now, limit):
        return list(self.snapshot)


def test_stale_candidate_is_skipped_not_confirmed(clock, dispatcher, payments, buyer):
    store = _StaleQueryStore()
    handler = TransitionHandler(store, clock=clock)
    p = make_completed(handler, buyer)
    store.snapshot = [store.get(p.id)]

    clock.advance(days=6)
    handler.open_dispute(p.id, buyer, "Dispute lands just before the sweep")

    report = sweep(store, dispatcher, now=p.auto_confirm_at + timedelta(minutes=1))

    assert report["auto_confirm_candidates"] == 1
    assert report["auto_confirmed"] == 0
    assert report["skipped"] == 1
    assert store.get(p.id).status == sm.DISPUTE_REQUESTED
    assert payments.calls == []


def test_side_effect_failure_still_counts_transition(handler, store, clock, buyer):
    payments = RecordingPayments(succeed=False)
    storage = RecordingStorage()
    dispatcher = EffectDispatcher(payments, storage, max_workers=1)
    try:
        p = make_completed(handler, buyer)
        report = sweep(store, dispatcher, now=p.auto_confirm_at)
    finally:
        dispatcher.shutdown()

    assert report["auto_confirmed"] == 1
    assert report["side_effect_failures"] == 1
    assert store.get(p.id).status == sm.CONFIRMED
    failures = [i for i in report["items"] if i["category"] == "side_effect_failure"]
    assert failures == [{"category": "side_effect_failure", "purchase_id": str(p.id), "effect": "release_funds", "error": "Payments unavailable"}]
    # asset deletion is independent of the payments failure
    assert storage.deleted == ["products/demo/file.zip"]


def test_batch_size_limits_each_pass(handler, store, dispatcher, clock, buyer):
    for _ in range(5):
        make_completed(handler, buyer)
    run_at = clock.now + timedelta(days=8)

    report = sweep(store, dispatcher, now=run_at, batch_size=2)
    assert report["auto_confirmed"] == 2

    report = sweep(store, dispatcher, now=run_at, batch_size=10)
    assert report["auto_confirmed"] == 3


def test_report_is_persisted_with_summary_and_items(handler, store, dispatcher, clock, buyer):
    make_completed(handler, buyer)
    report = sweep(store, dispatcher, now=clock.now + timedelta(days=7))

    assert set(SUMMARY_KEYS) <= set(report)
    saved = store.get_sweep_report(report["id"])
    assert saved["auto_confirmed"] == 1
    assert saved["items"][0]["category"] == "auto_confirmed"
    assert store.list_sweep_reports(10)[0]["id"] == report["id"]


def test_sweep_without_persist_keeps_no_report(store, dispatcher, clock):
    report = sweep(store, dispatcher, now=clock.now, persist=False)
    assert "id" not in report
    assert store.list_sweep_reports(10) == []


def test_sweep_records_metrics(handler, store, dispatcher, clock, buyer):
    before = get_counter("reconcile_cycles_total")
    confirmed = get_counter("reconcile_candidates_total", {"outcome": "auto_confirmed"})
    make_completed(handler, buyer)

    sweep(store, dispatcher, now=clock.now + timedelta(days=7))

    assert get_counter("reconcile_cycles_total") == before + 1
    assert get_counter("reconcile_candidates_total", {"outcome": "auto_confirmed"}) == confirmed + 1


def test_full_dispute_timeline(handler, store, dispatcher, payments, clock, buyer, admin):
    """Payment, dispute on day 2, escalation on day 5, refund on day 6."""
    p = make_completed(handler, buyer)
    t0 = clock.now

    clock.set(t0 + timedelta(days=2))
    handler.open_dispute(p.id, buyer, "Files in the archive are empty")

    report = sweep(store, dispatcher, now=t0 + timedelta(days=5, seconds=1))
    assert report["escalated"] == 1
    assert report["auto_confirmed"] == 0

    clock.set(t0 + timedelta(days=6))
    r = handler.resolve(p.id, admin, "Seller could not provide working files", refund=True)
    dispatcher.run(r.purchase, r.effects)

    final = store.get(p.id)
    assert final.status == sm.REFUNDED
    assert final.dispute_resolved_at == t0 + timedelta(days=6)
    assert payments.calls == [(str(p.id), "refund")]

    # nothing left for the loop to do
    report = sweep(store, dispatcher, now=t0 + timedelta(days=30))
    assert report["auto_confirm_candidates"] == 0
    assert report["escalation_candidates"] == 0


# ---------------------------
# Worker thread
# ---------------------------

def _wait_for(pred, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pred():
            return True
        time.sleep(0.01)
    return False


def test_worker_sweeps_on_start_and_stops_cleanly(handler, store, dispatcher, clock, buyer):
    p = make_completed(handler, buyer)
    clock.advance(days=7)
    worker = ReconcileWorker(store, dispatcher, interval_seconds=3600, clock=clock)

    worker.start()
    try:
        assert _wait_for(lambda: worker.cycles >= 1)
        assert worker.running
    finally:
        worker.stop(timeout=5)

    assert not worker.running
    assert worker.cycles == 1
    assert worker.last_report["auto_confirmed"] == 1
    assert store.get(p.id).status == sm.CONFIRMED


def test_worker_survives_a_failing_sweep(dispatcher, clock):
    class _BrokenStore(InMemoryPurchaseStore):
        def save_sweep_report(self, report):
            raise RuntimeError("db down")

    worker = ReconcileWorker(_BrokenStore(), dispatcher, clock=clock)
    report = worker.run_once()
    assert worker.cycles == 1
    assert "id" not in report


def test_run_once_uses_worker_clock(handler, store, dispatcher, clock, buyer):
    make_completed(handler, buyer)
    worker = ReconcileWorker(store, dispatcher, clock=clock)

    assert worker.run_once()["auto_confirmed"] == 0
    clock.advance(days=7)
    assert worker.run_once()["auto_confirmed"] == 1
    assert worker.cycles == 2


@pytest.mark.parametrize("interval", [0, -5])
def test_interval_is_clamped_to_one_second(store, dispatcher, interval):
    assert ReconcileWorker(store, dispatcher, interval_seconds=interval).interval_seconds == 1


# ---------------------------
# Effect fan-out
# ---------------------------

class _StatusSnapshotPayments(RecordingPayments):
    """Records every tracked purchase's stored status at the moment of each call."""

    def __init__(self, store, ids):
        super().__init__()
        self.store = store
        self.ids = ids
        self.seen = []
        self.threads = set()

    def trigger(self, purchase_id, outcome):
        self.seen.append({self.store.get(i).status for i in self.ids})
        self.threads.add(threading.current_thread().name)
        return super().trigger(purchase_id, outcome)


def test_all_status_writes_land_before_any_effect_runs(handler, store, storage, clock, buyer):
    ids = [make_completed(handler, buyer).id for _ in range(3)]
    payments = _StatusSnapshotPayments(store, ids)
    dispatcher = EffectDispatcher(payments, storage, max_workers=2)
    try:
        report = sweep(store, dispatcher, now=clock.now + timedelta(days=7))
    finally:
        dispatcher.shutdown()

    assert report["auto_confirmed"] == 3
    assert len(payments.calls) == 3
    assert all(statuses == {sm.CONFIRMED} for statuses in payments.seen)
    assert all(name.startswith("purchase-effects") for name in payments.threads)


def test_effects_of_a_sweep_are_gathered_before_the_report_is_saved(handler, store, clock, buyer):
    payments = RecordingPayments(succeed=False)
    dispatcher = EffectDispatcher(payments, RecordingStorage(), max_workers=4)
    try:
        for _ in range(3):
            make_completed(handler, buyer)
        report = sweep(store, dispatcher, now=clock.now + timedelta(days=7))
    finally:
        dispatcher.shutdown()

    assert report["side_effect_failures"] == 3
    saved = store.get_sweep_report(report["id"])
    assert saved["side_effect_failures"] == 3
    assert len([i for i in saved["items"] if i["category"] == "side_effect_failure"]) == 3


def test_effects_after_dispatcher_shutdown_are_reported_not_raised(handler, store, clock, buyer):
    dispatcher = EffectDispatcher(RecordingPayments(), RecordingStorage(), max_workers=1)
    dispatcher.shutdown()
    p = make_completed(handler, buyer)

    report = sweep(store, dispatcher, now=clock.now + timedelta(days=7))

    assert report["auto_confirmed"] == 1
    assert report["side_effect_failures"] == 2
    assert store.get(p.id).status == sm.CONFIRMED


# ---------------------------
# Stop with a timeout
# ---------------------------

class _BlockingStore(InMemoryPurchaseStore):
    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def list_due_auto_confirm(self, now, limit):
        self.entered.set()
        self.release.wait(5)
        return super().list_due_auto_confirm(now, limit)


def _live_workers():
    return [t for t in threading.enumerate() if t.name == "reconcile-worker" and t.is_alive()]


def test_timed_out_stop_keeps_tracking_the_running_sweep(dispatcher, clock):
    store = _BlockingStore()
    worker = ReconcileWorker(store, dispatcher, interval_seconds=3600, clock=clock)
    before = len(_live_workers())

    worker.start()
    try:
        assert store.entered.wait(5)
        worker.stop(timeout=0.05)
        assert worker.running

        worker.start()
        assert len(_live_workers()) == before + 1
    finally:
        store.release.set()
        worker.stop(timeout=5)

    assert not worker.running
    assert worker.cycles == 1
    assert len(_live_workers()) == before
