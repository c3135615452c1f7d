"""AWS service factory.

Maps service names to their AWS SDK implementations.
``SERVICE_REGISTRY`` is consumed by :func:`leasekeeper.factory.universal_factory`.
"""

from leasekeeper.aws.compute import Compute


# Service registry for AWS
SERVICE_REGISTRY: dict[str, type] = {
    "compute": Compute,
}
