"""Leasekeeper: time-boxed cloud instances that stop themselves.

Records of leased instances live in a local store; a polling
:class:`~leasekeeper.reconcile.Reconciler` stops instances whose lease
expired and restarts stopped ones whose lease was extended::

    from leasekeeper import Reconciler, universal_factory
    from leasekeeper.storage import FileStore

    compute = universal_factory("aws", {"region_name": "us-east-1"})
    Reconciler(compute, FileStore()).start()
"""

from .base import (
    ComputeBlueprint,
    InstanceRecord,
    InstanceStatus,
    ProviderBlueprint,
    StoreBlueprint,
)
from .factory import universal_factory
from .reconcile import Reconciler, decide

__version__ = "0.1.0"

__all__ = [
    "ComputeBlueprint",
    "InstanceRecord",
    "InstanceStatus",
    "ProviderBlueprint",
    "StoreBlueprint",
    "Reconciler",
    "decide",
    "universal_factory",
]
