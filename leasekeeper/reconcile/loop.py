"""
Reconciliation loop.

:class:`Reconciler` periodically walks every stored record, asks the
provider for its live status, lets :func:`~leasekeeper.reconcile.decision.decide`
pick an action, applies it, and persists whatever changed.  Each record is
handled in isolation: a failure on one never stops the others, and the next
pass is the only retry.
"""

from __future__ import annotations

import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Callable, Iterable

from leasekeeper.base.compute import ProviderBlueprint
from leasekeeper.base.config import ReconcilerConfig
from leasekeeper.base.exceptions import ComputeError, RecordNotFoundError, StoreError
from leasekeeper.base.logger import LeaseLogger
from leasekeeper.base.record import InstanceRecord, utcnow
from leasekeeper.base.store import StoreBlueprint
from leasekeeper.base.supported import PENDING, STOPPING
from leasekeeper.durations import format_duration
from leasekeeper.reconcile.decision import Command, apply_sync, decide


@dataclass
class TickReport:
    """Counters for one reconciliation pass."""

    tick_id: str
    records: int = 0
    skipped: int = 0
    synced: int = 0
    stopped: int = 0
    started: int = 0
    persisted: int = 0
    errors: int = 0
    duration: float = 0.0

    def add(self, outcome: _Outcome) -> None:
        for f in fields(outcome):
            setattr(self, f.name, getattr(self, f.name) + getattr(outcome, f.name))


@dataclass
class _Outcome:
    skipped: int = 0
    synced: int = 0
    stopped: int = 0
    started: int = 0
    persisted: int = 0
    errors: int = 0


class Reconciler:
    """Polling reconciler for leased instances.

    Owns one background thread, a stop event and its logger.  Passes never
    overlap: a periodic tick that comes due while a pass is still running
    is absorbed, and a manual :meth:`run_once` waits for the running pass.

    Args:
        provider: Live status and start/stop operations.
        store: Where instance records are read from and written to.
        interval: Seconds between periodic passes.
        max_workers: Records reconciled concurrently within one pass.
        failure_alert_threshold: Consecutive status failures after which a
            record is reported as unreachable (and again at every multiple).
            ``0`` disables the report.
        logger: Structured logger; one named ``leasekeeper.reconciler`` is
            created if omitted.
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        provider: ProviderBlueprint,
        store: StoreBlueprint,
        *,
        interval: float = 30.0,
        max_workers: int = 1,
        failure_alert_threshold: int = 10,
        logger: LeaseLogger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self.provider = provider
        self.store = store
        self.interval = interval
        self.max_workers = max_workers
        self.failure_alert_threshold = failure_alert_threshold
        self.log = logger or LeaseLogger("leasekeeper.reconciler")
        self._clock = clock

        self._stop_event = threading.Event()
        self._pass_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._thread: threading.Thread | None = None

        self._failures: dict[str, int] = {}
        self._failures_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        provider: ProviderBlueprint,
        store: StoreBlueprint,
        config: ReconcilerConfig,
        *,
        logger: LeaseLogger | None = None,
    ) -> Reconciler:
        return cls(
            provider,
            store,
            interval=config.interval,
            max_workers=config.max_workers,
            failure_alert_threshold=config.failure_alert_threshold,
            logger=logger,
        )

    # ── lifecycle ─────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> None:
        """Start periodic passes on a background thread; returns immediately."""
        with self._state_lock:
            previous = self._thread
            if previous is not None and previous.is_alive():
                if not self._stop_event.is_set():
                    self.log.warning("Reconciler already running", event="start_ignored")
                    return
                # A stop without wait is still draining; the old thread must
                # exit before the event is cleared or it would keep running.
                previous.join()
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run,
                name="leasekeeper-reconciler",
                daemon=True,
            )
            self._thread.start()
        self.log.info(
            f"Reconciler started (interval {self.interval:g}s, {self.max_workers} worker(s))",
            event="reconciler_started",
        )

    def stop(self, wait: bool = True, timeout: float | None = None) -> None:
        """Request shutdown; the pass in flight, if any, runs to completion.

        Args:
            wait: Block until the background thread has exited.
            timeout: Upper bound in seconds on the wait.
        """
        self._stop_event.set()
        thread = self._thread
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self.log.info("Reconciler stopped", event="reconciler_stopped")

    def run_once(self) -> TickReport:
        """Run exactly one pass synchronously."""
        with self._pass_lock:
            return self._pass()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            if not self._pass_lock.acquire(blocking=False):
                self.log.debug("Previous pass still running, tick absorbed", event="tick_absorbed")
                continue
            try:
                self._pass()
            except Exception:
                self.log.error("Reconciliation pass crashed", event="tick_failed", exc_info=True)
            finally:
                self._pass_lock.release()

    # ── one pass ──────────────────────────────────────────────────────

    def _pass(self) -> TickReport:
        tick_id = uuid.uuid4().hex[:12]
        report = TickReport(tick_id=tick_id)
        started = time.monotonic()
        now = self._clock()
        self.log.debug("Reconciliation pass starting", event="tick_start", tick_id=tick_id)

        try:
            records = self.store.list_all()
        except StoreError as exc:
            self.log.error(
                "Failed to list records, skipping pass",
                event="list_failed",
                tick_id=tick_id,
                error=exc,
            )
            report.errors += 1
            report.duration = time.monotonic() - started
            return report

        report.records = len(records)
        for outcome in self._map(lambda r: self._reconcile_guarded(r, now, tick_id), records):
            report.add(outcome)
        self._forget_missing({r.id for r in records})

        report.duration = time.monotonic() - started
        self.log.info(
            f"Reconciliation pass finished: {report.records} record(s), "
            f"{report.stopped} stopped, {report.started} started, "
            f"{report.synced} synced, {report.skipped} skipped, {report.errors} error(s)",
            event="tick_end",
            tick_id=tick_id,
        )
        return report

    def _map(
        self,
        fn: Callable[[InstanceRecord], _Outcome],
        records: list[InstanceRecord],
    ) -> Iterable[_Outcome]:
        if self.max_workers == 1 or len(records) <= 1:
            return [fn(r) for r in records]
        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="leasekeeper-record"
        ) as pool:
            return list(pool.map(fn, records))

    def _reconcile_guarded(self, record: InstanceRecord, now: datetime, tick_id: str) -> _Outcome:
        try:
            return self._reconcile(record, now, tick_id)
        except Exception as exc:
            self.log.error(
                "Unexpected error reconciling record",
                event="record_failed",
                tick_id=tick_id,
                instance_id=record.id,
                error=exc,
                exc_info=True,
            )
            return _Outcome(errors=1)

    def _reconcile(self, record: InstanceRecord, now: datetime, tick_id: str) -> _Outcome:
        outcome = _Outcome()
        ctx = {"tick_id": tick_id, "instance_id": record.id}

        if record.is_terminal:
            self.log.debug("Record in terminal state, skipping", **ctx)
            return outcome

        try:
            status = self.provider.get_instance_status(record.id)
        except ComputeError as exc:
            self._record_failure(record.id, exc, tick_id)
            outcome.skipped = 1
            return outcome
        self._clear_failure(record.id)

        decision = decide(record, status, now)
        updated = apply_sync(record, decision.sync)
        changes: dict[str, str | None] = decision.sync.as_update() if decision.sync else {}

        if decision.sync is not None:
            outcome.synced = 1
            self.log.info(
                "Instance drifted from stored state, syncing",
                event="state_sync",
                action="sync",
                old_state=record.state,
                new_state=updated.state,
                **ctx,
            )

        if decision.command is Command.STOP:
            overdue = format_duration(now - record.expires_at)
            try:
                self.provider.stop_instance(record.id)
            except ComputeError as exc:
                outcome.errors = 1
                self.log.error(
                    "Failed to stop expired instance",
                    event="action_failed",
                    action="stop",
                    error=exc,
                    **ctx,
                )
            else:
                outcome.stopped = 1
                self.log.warning(
                    f"Lease expired {overdue} ago, instance stopped",
                    event="stop_issued",
                    action="stop",
                    old_state=updated.state,
                    new_state=STOPPING,
                    **ctx,
                )
                changes["state"] = STOPPING

        elif decision.command is Command.START:
            remaining = format_duration(record.expires_at - now)
            try:
                self.provider.start_instance(record.id)
            except ComputeError as exc:
                outcome.errors = 1
                self.log.error(
                    "Failed to start instance with extended lease",
                    event="action_failed",
                    action="start",
                    error=exc,
                    **ctx,
                )
            else:
                outcome.started = 1
                self.log.info(
                    f"Lease extended ({remaining} left), instance started",
                    event="start_issued",
                    action="start",
                    old_state=updated.state,
                    new_state=PENDING,
                    **ctx,
                )
                changes["state"] = PENDING

        if changes:
            try:
                self.store.update(record.id, lambda current: current.model_copy(update=changes))
            except RecordNotFoundError:
                self.log.info(
                    "Record removed during the pass, not persisting",
                    event="persist_skipped",
                    **ctx,
                )
            except StoreError as exc:
                outcome.errors += 1
                self.log.error(
                    "Failed to persist record",
                    event="persist_failed",
                    error=exc,
                    **ctx,
                )
            else:
                outcome.persisted = 1

        return outcome

    # ── unreachable records ───────────────────────────────────────────

    def _record_failure(self, instance_id: str, exc: Exception, tick_id: str) -> None:
        with self._failures_lock:
            count = self._failures.get(instance_id, 0) + 1
            self._failures[instance_id] = count

        self.log.warning(
            "Failed to get instance status, skipping record this pass",
            event="query_failed",
            tick_id=tick_id,
            instance_id=instance_id,
            error=exc,
        )
        threshold = self.failure_alert_threshold
        if threshold and count % threshold == 0:
            self.log.error(
                f"Instance status unavailable for {count} consecutive passes",
                event="record_unreachable",
                tick_id=tick_id,
                instance_id=instance_id,
                error=exc,
            )

    def _clear_failure(self, instance_id: str) -> None:
        with self._failures_lock:
            self._failures.pop(instance_id, None)

    def _forget_missing(self, live_ids: set[str]) -> None:
        with self._failures_lock:
            for instance_id in set(self._failures) - live_ids:
                del self._failures[instance_id]

    def consecutive_failures(self, instance_id: str) -> int:
        """Number of passes in a row the record's status query has failed."""
        with self._failures_lock:
            return self._failures.get(instance_id, 0)


__all__ = ["Reconciler", "TickReport"]
