"""In-process state store."""

from __future__ import annotations

import threading
from typing import Callable, Iterable

from leasekeeper.base.exceptions import RecordNotFoundError
from leasekeeper.base.record import InstanceRecord
from leasekeeper.base.store import StoreBlueprint, keep_latest_lease


class MemoryStore(StoreBlueprint):
    """Thread-safe dict-backed store; nothing survives the process."""

    def __init__(self, records: Iterable[InstanceRecord] = ()) -> None:
        self._records: dict[str, InstanceRecord] = {r.id: r for r in records}
        self._lock = threading.RLock()

    def list_all(self) -> list[InstanceRecord]:
        with self._lock:
            return list(self._records.values())

    def get(self, instance_id: str) -> InstanceRecord:
        with self._lock:
            try:
                return self._records[instance_id]
            except KeyError:
                raise RecordNotFoundError(f"Instance '{instance_id}' not found") from None

    def save(self, record: InstanceRecord) -> InstanceRecord:
        with self._lock:
            stored = keep_latest_lease(self._records.get(record.id), record)
            self._records[record.id] = stored
            return stored

    def update(
        self,
        instance_id: str,
        fn: Callable[[InstanceRecord], InstanceRecord],
    ) -> InstanceRecord:
        with self._lock:
            updated = fn(self.get(instance_id))
            self._records[instance_id] = updated
            return updated

    def delete(self, instance_id: str) -> None:
        with self._lock:
            self._records.pop(instance_id, None)
