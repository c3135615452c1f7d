"""Tests for the reconciliation loop."""

import logging
import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from leasekeeper.base.config import ReconcilerConfig
from leasekeeper.base.exceptions import StoreError
from leasekeeper.base.logger import LeaseLogger
from leasekeeper.reconcile.loop import Reconciler
from leasekeeper.storage import MemoryStore

from conftest import NOW, FakeProvider, make_record


def _reconciler(provider, store, **kwargs) -> Reconciler:
    kwargs.setdefault("clock", lambda: NOW)
    return Reconciler(provider, store, **kwargs)


class FailingWriteStore(MemoryStore):
    def __init__(self, records, failing_ids):
        super().__init__(records)
        self.failing_ids = set(failing_ids)

    def update(self, instance_id, fn):
        if instance_id in self.failing_ids:
            raise StoreError("disk full")
        return super().update(instance_id, fn)


# ══════════════════════════════════════════════════════════════════════
# End-to-end scenarios
# ══════════════════════════════════════════════════════════════════════

class TestScenarios:
    def test_expired_running_is_stopped(self, provider, store):
        store.save(make_record("r1", state="running", expires_in=-timedelta(hours=1)))
        provider.set_status("r1", "running")

        report = _reconciler(provider, store).run_once()

        assert provider.stop_calls == ["r1"]
        assert provider.start_calls == []
        assert store.get("r1").state == "stopping"
        assert report.stopped == 1
        assert report.persisted == 1

    def test_drifted_stopped_with_extension_is_started(self, provider, store):
        store.save(make_record("r2", state="running", expires_in=timedelta(hours=1)))
        provider.set_status("r2", "stopped")

        report = _reconciler(provider, store).run_once()

        assert provider.start_calls == ["r2"]
        assert provider.stop_calls == []
        assert store.get("r2").state == "pending"
        assert report.synced == 1
        assert report.started == 1

    def test_terminated_record_is_untouched(self, provider):
        store = MagicMock(wraps=MemoryStore([make_record("r3", state="terminated")]))

        _reconciler(provider, store).run_once()

        assert provider.calls == 0
        store.save.assert_not_called()
        store.update.assert_not_called()

    def test_steady_pending_record_is_left_alone(self, provider):
        store = MagicMock(
            wraps=MemoryStore([make_record("r4", state="pending", expires_in=timedelta(minutes=30))])
        )
        provider.set_status("r4", "pending")

        report = _reconciler(provider, store).run_once()

        assert provider.stop_calls == []
        assert provider.start_calls == []
        store.save.assert_not_called()
        store.update.assert_not_called()
        assert report.persisted == 0


# ══════════════════════════════════════════════════════════════════════
# Failure handling
# ══════════════════════════════════════════════════════════════════════

class TestIsolation:
    def test_query_failure_does_not_affect_other_records(self, provider, store):
        store.save(make_record("a", state="running", expires_in=-timedelta(hours=1)))
        store.save(make_record("b", state="running", expires_in=-timedelta(hours=1)))
        provider.fail_status.add("a")
        provider.set_status("b", "running")

        report = _reconciler(provider, store).run_once()

        assert provider.stop_calls == ["b"]
        assert store.get("a").state == "running"
        assert store.get("b").state == "stopping"
        assert report.skipped == 1

    def test_stop_failure_leaves_state_unchanged(self, provider, store):
        store.save(make_record("a", state="running", expires_in=-timedelta(hours=1)))
        provider.set_status("a", "running")
        provider.fail_stop.add("a")

        report = _reconciler(provider, store).run_once()

        assert store.get("a").state == "running"
        assert report.errors == 1
        assert report.persisted == 0

    def test_start_failure_still_persists_sync(self, provider, store):
        store.save(make_record("a", state="running", expires_in=timedelta(hours=1)))
        provider.set_status("a", "stopping")
        provider.fail_start.add("a")

        _reconciler(provider, store).run_once()

        assert provider.start_calls == ["a"]
        assert store.get("a").state == "stopping"

    def test_persist_failure_does_not_abort_pass(self, provider):
        store = FailingWriteStore(
            [
                make_record("a", state="running", expires_in=-timedelta(hours=1)),
                make_record("b", state="running", expires_in=-timedelta(hours=1)),
            ],
            failing_ids={"a"},
        )
        provider.set_status("a", "running")
        provider.set_status("b", "running")

        report = _reconciler(provider, store).run_once()

        assert sorted(provider.stop_calls) == ["a", "b"]
        assert store.get("b").state == "stopping"
        assert report.errors == 1
        assert report.persisted == 1

    def test_unexpected_exception_is_contained(self, provider, store):
        store.save(make_record("a", expires_in=-timedelta(hours=1)))
        store.save(make_record("b", expires_in=-timedelta(hours=1)))
        provider.set_status("b", "running")
        # No status registered for "a": the double raises KeyError.

        report = _reconciler(provider, store).run_once()

        assert provider.stop_calls == ["b"]
        assert report.errors == 1

    def test_list_failure_skips_pass(self, provider):
        store = MagicMock()
        store.list_all.side_effect = StoreError("unreadable")

        report = _reconciler(provider, store).run_once()

        assert report.errors == 1
        assert provider.calls == 0


class TestConcurrentWrites:
    def test_record_deleted_mid_pass_stays_deleted(self, store):
        class TerminatedWhileStopping(FakeProvider):
            def stop_instance(self, instance_id):
                super().stop_instance(instance_id)
                store.delete(instance_id)

        provider = TerminatedWhileStopping()
        store.save(make_record("r1", state="running", expires_in=-timedelta(hours=1)))
        provider.set_status("r1", "running")

        report = _reconciler(provider, store).run_once()

        assert provider.stop_calls == ["r1"]
        assert store.list_all() == []
        assert report.errors == 0
        assert report.persisted == 0

    def test_concurrent_edits_survive_write_back(self, store):
        class EditedWhileStopping(FakeProvider):
            def stop_instance(self, instance_id):
                super().stop_instance(instance_id)
                store.update(
                    instance_id,
                    lambda r: r.extended(timedelta(hours=2)).model_copy(
                        update={"key_name": "rotated"}
                    ),
                )

        provider = EditedWhileStopping()
        original = make_record("r1", state="running", expires_in=-timedelta(hours=1))
        store.save(original)
        provider.set_status("r1", "running", public_ip="5.6.7.8")

        _reconciler(provider, store).run_once()

        stored = store.get("r1")
        assert stored.state == "stopping"
        assert stored.public_ip == "5.6.7.8"
        assert stored.key_name == "rotated"
        assert stored.expires_at == original.expires_at + timedelta(hours=2)


class TestUnreachable:
    def test_alert_after_threshold(self, provider, store, caplog):
        store.save(make_record("a"))
        provider.fail_status.add("a")
        rec = _reconciler(provider, store, failure_alert_threshold=3)

        with caplog.at_level(logging.WARNING, logger="leasekeeper.reconciler"):
            for _ in range(3):
                rec.run_once()

        alerts = [r for r in caplog.records if getattr(r, "event", None) == "record_unreachable"]
        assert len(alerts) == 1
        assert alerts[0].instance_id == "a"
        assert rec.consecutive_failures("a") == 3

    def test_success_resets_counter(self, provider, store):
        store.save(make_record("a"))
        provider.fail_status.add("a")
        rec = _reconciler(provider, store)
        rec.run_once()
        rec.run_once()
        assert rec.consecutive_failures("a") == 2

        provider.fail_status.clear()
        provider.set_status("a", "running")
        rec.run_once()
        assert rec.consecutive_failures("a") == 0

    def test_threshold_zero_never_alerts(self, provider, store, caplog):
        store.save(make_record("a"))
        provider.fail_status.add("a")
        rec = _reconciler(provider, store, failure_alert_threshold=0)

        with caplog.at_level(logging.WARNING, logger="leasekeeper.reconciler"):
            for _ in range(5):
                rec.run_once()

        assert not [r for r in caplog.records if getattr(r, "event", None) == "record_unreachable"]


# ══════════════════════════════════════════════════════════════════════
# Scheduling
# ══════════════════════════════════════════════════════════════════════

class TestScheduling:
    def test_parallel_workers_process_every_record(self, provider, store):
        for i in range(8):
            store.save(make_record(f"i-{i}", expires_in=-timedelta(hours=1)))
            provider.set_status(f"i-{i}", "running")

        report = _reconciler(provider, store, max_workers=4).run_once()

        assert sorted(provider.stop_calls) == sorted(f"i-{i}" for i in range(8))
        assert report.stopped == 8
        assert all(r.state == "stopping" for r in store.list_all())

    def test_start_and_stop_background_thread(self, provider, store):
        passes = threading.Event()
        rec = _reconciler(provider, store, interval=0.01)
        original = rec._pass

        def counting_pass():
            report = original()
            passes.set()
            return report

        rec._pass = counting_pass
        rec.start()
        try:
            assert rec.running
            assert passes.wait(2.0)
        finally:
            rec.stop(timeout=2.0)
        assert not rec.running

    def test_start_twice_keeps_one_thread(self, provider, store):
        rec = _reconciler(provider, store, interval=60)
        rec.start()
        try:
            thread = rec._thread
            rec.start()
            assert rec._thread is thread
        finally:
            rec.stop(timeout=2.0)

    def test_restart_right_after_non_waiting_stop(self, provider, store):
        rec = _reconciler(provider, store, interval=0.01)
        rec.start()
        first = rec._thread
        rec.stop(wait=False)
        rec.start()
        try:
            assert rec._thread is not first
            assert not first.is_alive()
            time.sleep(0.05)
            assert rec.running
        finally:
            rec.stop(timeout=2.0)

    def test_no_pass_after_stop(self, provider, store):
        rec = _reconciler(provider, store, interval=0.01)
        store_spy = MagicMock(wraps=store)
        rec.store = store_spy
        rec.start()
        time.sleep(0.05)
        rec.stop(timeout=2.0)
        calls = store_spy.list_all.call_count
        time.sleep(0.05)
        assert store_spy.list_all.call_count == calls

    def test_overlapping_tick_is_absorbed(self, provider, store):
        rec = _reconciler(provider, store, interval=0.01)
        rec._pass_lock.acquire()
        store_spy = MagicMock(wraps=store)
        rec.store = store_spy
        rec.start()
        try:
            time.sleep(0.05)
            store_spy.list_all.assert_not_called()
        finally:
            rec._pass_lock.release()
            rec.stop(timeout=2.0)

    def test_from_config(self, provider, store):
        config = ReconcilerConfig(interval=5, max_workers=2, failure_alert_threshold=4)
        rec = Reconciler.from_config(provider, store, config, logger=LeaseLogger("test_lk"))
        assert rec.interval == 5
        assert rec.max_workers == 2
        assert rec.failure_alert_threshold == 4

    @pytest.mark.parametrize("kwargs", [{"interval": 0}, {"max_workers": 0}])
    def test_invalid_arguments(self, provider, store, kwargs):
        with pytest.raises(ValueError):
            Reconciler(provider, store, **kwargs)
