"""State store blueprint."""

from abc import ABC, abstractmethod
from typing import Callable

from leasekeeper.base.record import InstanceRecord


class StoreBlueprint(ABC):
    """Persistence of instance records keyed by instance ID.

    Implementations serialise writes: concurrent ``save``/``update`` calls
    for the same record never lose an update, and a stored ``expires_at``
    is never moved backwards by ``save``.
    """

    @abstractmethod
    def list_all(self) -> list[InstanceRecord]:
        """Return every stored record (order unspecified).

        Raises:
            StoreError: If the backing storage cannot be read.
        """

    @abstractmethod
    def get(self, instance_id: str) -> InstanceRecord:
        """Return one record.

        Raises:
            RecordNotFoundError: If no record is stored under *instance_id*.
        """

    @abstractmethod
    def save(self, record: InstanceRecord) -> InstanceRecord:
        """Insert or replace a record and return what was stored."""

    @abstractmethod
    def update(
        self,
        instance_id: str,
        fn: Callable[[InstanceRecord], InstanceRecord],
    ) -> InstanceRecord:
        """Atomically replace a record with ``fn(current)``.

        Raises:
            RecordNotFoundError: If no record is stored under *instance_id*.
        """

    @abstractmethod
    def delete(self, instance_id: str) -> None:
        """Remove a record; missing IDs are ignored."""


def keep_latest_lease(stored: InstanceRecord | None, incoming: InstanceRecord) -> InstanceRecord:
    """Return *incoming* with the lease of *stored* if that one runs longer."""
    if stored is None or stored.expires_at <= incoming.expires_at:
        return incoming
    return incoming.model_copy(
        update={
            "expires_at": stored.expires_at,
            "lease_duration": stored.lease_duration,
        }
    )
