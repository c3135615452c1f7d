"""Shared fixtures: an in-memory provider double and record builders."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from leasekeeper.base.compute import ProviderBlueprint
from leasekeeper.base.exceptions import ComputeError
from leasekeeper.base.record import InstanceRecord, InstanceStatus
from leasekeeper.storage import MemoryStore

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_record(
    instance_id: str = "i-1",
    *,
    state: str = "running",
    expires_in: timedelta = timedelta(hours=1),
    public_ip: str | None = "1.2.3.4",
    private_ip: str | None = "10.0.0.1",
) -> InstanceRecord:
    """Record launched two hours before NOW whose lease ends at NOW + expires_in."""
    launch = NOW - timedelta(hours=2)
    return InstanceRecord(
        id=instance_id,
        instance_type="t2.nano",
        state=state,
        launch_time=launch,
        lease_duration=(NOW + expires_in) - launch,
        expires_at=NOW + expires_in,
        public_ip=public_ip,
        private_ip=private_ip,
        availability_zone="us-east-1a",
        key_name="leasekeeper-abc",
        username="ec2-user",
    )


class FakeProvider(ProviderBlueprint):
    """Provider double: statuses by ID, call log, injectable failures."""

    def __init__(self) -> None:
        self.statuses: dict[str, InstanceStatus] = {}
        self.fail_status: set[str] = set()
        self.fail_start: set[str] = set()
        self.fail_stop: set[str] = set()
        self.status_calls: list[str] = []
        self.start_calls: list[str] = []
        self.stop_calls: list[str] = []

    def set_status(
        self,
        instance_id: str,
        state: str,
        public_ip: str | None = "1.2.3.4",
        private_ip: str | None = "10.0.0.1",
    ) -> None:
        self.statuses[instance_id] = InstanceStatus(
            id=instance_id,
            state=state,
            public_ip=public_ip,
            private_ip=private_ip,
            username="ec2-user",
        )

    def get_instance_status(self, instance_id: str) -> InstanceStatus:
        self.status_calls.append(instance_id)
        if instance_id in self.fail_status:
            raise ComputeError(f"describe failed for {instance_id}")
        return self.statuses[instance_id]

    def start_instance(self, instance_id: str) -> None:
        self.start_calls.append(instance_id)
        if instance_id in self.fail_start:
            raise ComputeError(f"start failed for {instance_id}")

    def stop_instance(self, instance_id: str) -> None:
        self.stop_calls.append(instance_id)
        if instance_id in self.fail_stop:
            raise ComputeError(f"stop failed for {instance_id}")

    @property
    def calls(self) -> int:
        return len(self.status_calls) + len(self.start_calls) + len(self.stop_calls)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()
