"""Compute (VM) service blueprints."""

from abc import ABC, abstractmethod

from leasekeeper.base.record import InstanceRecord, InstanceRequest, InstanceStatus


class ProviderBlueprint(ABC):
    """The provider operations the reconciler depends on.

    Implementations raise :class:`~leasekeeper.base.exceptions.ComputeError`
    (or a subclass) on any failure.
    """

    @abstractmethod
    def get_instance_status(self, instance_id: str) -> InstanceStatus:
        """Return the live state and addresses of an instance.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
            ComputeError: On any other provider failure.
        """

    @abstractmethod
    def start_instance(self, instance_id: str) -> None:
        """Start a stopped instance."""

    @abstractmethod
    def stop_instance(self, instance_id: str) -> None:
        """Stop a running instance (keep disk)."""


class ComputeBlueprint(ProviderBlueprint):
    """Full instance lifecycle, as used by the CLI.

    Maps to AWS EC2.  Creation and termination are never invoked by the
    reconciler.
    """

    @abstractmethod
    def create_instance(self, request: InstanceRequest) -> InstanceRecord:
        """Launch a new leased instance and return its initial record.

        Args:
            request: Instance type, lease duration, image, public key path
                and optional placement (``availability_zone``,
                ``subnet_id``, ``security_group_ids``).

        Returns:
            A record in ``pending`` state whose lease starts now.
        """

    @abstractmethod
    def terminate_instance(self, instance_id: str) -> None:
        """Terminate (destroy) an instance."""

    @abstractmethod
    def list_instances(self) -> list[InstanceRecord]:
        """List the non-terminated instances this tool manages.

        Leases are rebuilt from the instance tags, so records returned here
        reflect the original duration, not later local extensions.
        """

    @abstractmethod
    def validate_credentials(self) -> None:
        """Make a cheap authenticated call.

        Raises:
            CredentialsError: If the provider rejects the credentials.
        """
