"""
Instance records and live status snapshots.

:class:`InstanceRecord` is the locally stored view of a leased instance;
:class:`InstanceStatus` is what the provider reports for it right now.
Both are pydantic models so they validate on construction and serialise
to JSON for the state store.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from leasekeeper.base.exceptions import LeaseError
from leasekeeper.base.supported import LIFECYCLE_STATES, PENDING, RUNNING, TERMINAL_STATES


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class InstanceStatus(BaseModel):
    """Live provider-reported status of one instance."""

    model_config = ConfigDict(frozen=True)

    id: str
    state: str
    public_ip: str | None = None
    private_ip: str | None = None
    username: str | None = None

    @property
    def ready(self) -> bool:
        return self.state == RUNNING


class InstanceRecord(BaseModel):
    """Tracked state of a leased instance.

    ``expires_at`` starts as ``launch_time + lease_duration`` and only ever
    moves forward (see :meth:`extended`).  Records are treated as values:
    the reconciler derives updated copies with ``model_copy`` instead of
    mutating them in place.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, description="Provider-assigned instance ID")
    instance_type: str = Field(description="Provider size/shape, e.g. 't2.nano'")
    provider: str = "aws"
    state: str = PENDING
    launch_time: datetime
    lease_duration: timedelta
    expires_at: datetime
    public_ip: str | None = None
    private_ip: str | None = None
    availability_zone: str | None = None
    key_name: str | None = None
    username: str | None = None

    @field_validator("launch_time", "expires_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        """Interpret naive timestamps as UTC."""
        return _as_utc(value)

    @field_validator("state")
    @classmethod
    def known_state(cls, value: str) -> str:
        if value not in LIFECYCLE_STATES:
            raise ValueError(f"unknown lifecycle state: {value}")
        return value

    @model_validator(mode="after")
    def check_lease(self) -> InstanceRecord:
        if self.expires_at < self.launch_time:
            raise ValueError(
                f"expires_at ({self.expires_at.isoformat()}) is before "
                f"launch_time ({self.launch_time.isoformat()})"
            )
        return self

    @classmethod
    def new(
        cls,
        instance_id: str,
        instance_type: str,
        lease_duration: timedelta,
        *,
        launch_time: datetime | None = None,
        **fields: Any,
    ) -> InstanceRecord:
        """Build a record whose lease starts at *launch_time* (default: now)."""
        if lease_duration <= timedelta(0):
            raise LeaseError(f"Lease duration must be positive, got {lease_duration}")
        launched = _as_utc(launch_time or utcnow())
        return cls(
            id=instance_id,
            instance_type=instance_type,
            launch_time=launched,
            lease_duration=lease_duration,
            expires_at=launched + lease_duration,
            **fields,
        )

    # -- lease -----------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def remaining(self, now: datetime | None = None) -> timedelta:
        """Time left on the lease; negative once expired."""
        return self.expires_at - (now or utcnow())

    def extended(self, duration: timedelta) -> InstanceRecord:
        """Return a copy whose lease runs *duration* longer.

        Raises:
            LeaseError: If *duration* is not positive.
        """
        if duration <= timedelta(0):
            raise LeaseError(f"Extension must be positive, got {duration}")
        return self.model_copy(
            update={
                "expires_at": self.expires_at + duration,
                "lease_duration": self.lease_duration + duration,
            }
        )

    # -- connectivity ----------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self.state == RUNNING and bool(self.public_ip)

    @property
    def needs_ip_update(self) -> bool:
        return self.state in (RUNNING, PENDING) and not self.public_ip

    @property
    def connection_string(self) -> str:
        if self.public_ip and self.username:
            return f"{self.username}@{self.public_ip}"
        return ""

    @property
    def ssh_command(self) -> str:
        if self.public_ip and self.username:
            return f"ssh -i ~/.ssh/id_rsa {self.username}@{self.public_ip}"
        return ""


class InstanceRequest(BaseModel):
    """Parameters for provisioning a new leased instance."""

    model_config = ConfigDict(extra="forbid")

    instance_type: str
    lease_duration: timedelta
    image_id: str
    public_key_path: str
    availability_zone: str | None = None
    subnet_id: str | None = None
    security_group_ids: list[str] = Field(default_factory=list)
    name: str = "leasekeeper"


__all__ = [
    "InstanceRecord",
    "InstanceRequest",
    "InstanceStatus",
    "utcnow",
]
