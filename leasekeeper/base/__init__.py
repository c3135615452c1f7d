"""Abstract blueprints, records and core utilities.

The reconciler only depends on what is defined here; concrete providers
and stores implement the blueprints.
"""

from .compute import ComputeBlueprint, ProviderBlueprint
from .record import InstanceRecord, InstanceRequest, InstanceStatus
from .store import StoreBlueprint
from .supported import existing_cloud_providers, existing_stores


__all__ = [
    "ComputeBlueprint",
    "ProviderBlueprint",
    "StoreBlueprint",
    "InstanceRecord",
    "InstanceRequest",
    "InstanceStatus",
    "existing_cloud_providers",
    "existing_stores",
]
