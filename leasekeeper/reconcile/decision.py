"""
Lease decision engine.

:func:`decide` maps a stored record, the provider's live status and the
current time to a :class:`Decision`.  It performs no I/O and keeps no
state, so the same inputs always produce an equal decision.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime

from leasekeeper.base.record import InstanceRecord, InstanceStatus
from leasekeeper.base.supported import ACTIVE_STATES, HALTED_STATES


class Command(str, enum.Enum):
    """Provider action requested by a decision."""

    NONE = "none"
    STOP = "stop"
    START = "start"


@dataclass(frozen=True)
class StateSync:
    """Provider-observed fields to copy onto the stored record."""

    state: str
    public_ip: str | None
    private_ip: str | None

    def as_update(self) -> dict[str, str | None]:
        return {
            "state": self.state,
            "public_ip": self.public_ip,
            "private_ip": self.private_ip,
        }


@dataclass(frozen=True)
class Decision:
    """Outcome of one evaluation: an optional sync plus a command.

    The sync, when present, is applied before the command.
    """

    sync: StateSync | None = None
    command: Command = Command.NONE

    @property
    def is_noop(self) -> bool:
        return self.sync is None and self.command is Command.NONE


NO_ACTION = Decision()


def _address(value: str | None) -> str | None:
    return value or None


def detect_drift(record: InstanceRecord, status: InstanceStatus) -> StateSync | None:
    """Return the sync needed to match *status*, or ``None`` if already in line.

    Missing and empty addresses compare equal.
    """
    live = StateSync(
        state=status.state,
        public_ip=_address(status.public_ip),
        private_ip=_address(status.private_ip),
    )
    stored = StateSync(
        state=record.state,
        public_ip=_address(record.public_ip),
        private_ip=_address(record.private_ip),
    )
    if live == stored:
        return None
    return live


def apply_sync(record: InstanceRecord, sync: StateSync | None) -> InstanceRecord:
    """Return *record* with the synced fields merged in."""
    if sync is None:
        return record
    return record.model_copy(update=sync.as_update())


def decide(record: InstanceRecord, status: InstanceStatus, now: datetime) -> Decision:
    """Decide what to do about one leased instance.

    Rules:

    1. Terminal records (``terminated``/``terminating``) are left alone.
    2. Drift in state or addresses yields a sync; the synced state is what
       the remaining rules look at.
    3. An expired lease on a ``running``/``pending`` instance yields STOP.
    4. An unexpired lease on a ``stopped``/``stopping`` instance yields
       START (the lease was extended after the instance was stopped).

    Termination is never decided here.
    """
    if record.is_terminal:
        return NO_ACTION

    sync = detect_drift(record, status)
    state = sync.state if sync is not None else record.state

    if now >= record.expires_at:
        command = Command.STOP if state in ACTIVE_STATES else Command.NONE
    else:
        command = Command.START if state in HALTED_STATES else Command.NONE

    return Decision(sync=sync, command=command)
