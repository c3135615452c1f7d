"""
Leasekeeper exception hierarchy.

Every subsystem has a top-level error that inherits from
:class:`LeasekeeperError` and sub-exceptions for the failure modes
callers actually branch on (not-found, wrong state, etc.).
"""


# ── Base ──────────────────────────────────────────────────────────────
class LeasekeeperError(Exception):
    """Root exception for all Leasekeeper errors."""


# ── Compute ───────────────────────────────────────────────────────────
class ComputeError(LeasekeeperError):
    """Base exception for compute/VM operations."""


class InstanceNotFoundError(ComputeError):
    """VM instance not found."""


class InvalidInstanceStateError(ComputeError):
    """The instance is in a state that does not allow the operation."""


class CredentialsError(ComputeError):
    """Provider credentials are missing or rejected."""


# ── State store ───────────────────────────────────────────────────────
class StoreError(LeasekeeperError):
    """Base exception for state store operations."""


class RecordNotFoundError(StoreError):
    """No record stored under the requested instance ID."""


# ── Leases ────────────────────────────────────────────────────────────
class LeaseError(LeasekeeperError):
    """Invalid lease duration or extension."""
