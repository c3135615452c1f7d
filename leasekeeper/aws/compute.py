"""AWS EC2 implementation of the Compute blueprint."""

from __future__ import annotations

import hashlib
from datetime import timedelta
from pathlib import Path
from typing import Any, NoReturn

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from leasekeeper.base.compute import ComputeBlueprint
from leasekeeper.base.config import AWSConfig
from leasekeeper.base.exceptions import (
    ComputeError,
    CredentialsError,
    InstanceNotFoundError,
    InvalidInstanceStateError,
)
from leasekeeper.base.record import InstanceRecord, InstanceRequest, InstanceStatus, utcnow
from leasekeeper.base.supported import PENDING, TERMINATING
from leasekeeper.durations import parse_duration

MANAGED_BY = "leasekeeper"
DEFAULT_USERNAME = "ec2-user"

_ERROR_MAP: dict[str, type[ComputeError]] = {
    "InvalidInstanceID.NotFound": InstanceNotFoundError,
    "InvalidInstanceID.Malformed": InstanceNotFoundError,
    "IncorrectInstanceState": InvalidInstanceStateError,
    "AuthFailure": CredentialsError,
    "UnauthorizedOperation": CredentialsError,
}

# EC2 says "shutting-down" where the rest of the system says "terminating".
_STATE_ALIASES = {"shutting-down": TERMINATING}


def _handle(e: ClientError | BotoCoreError, msg: str) -> NoReturn:
    exc = None
    if isinstance(e, ClientError):
        exc = _ERROR_MAP.get(e.response["Error"]["Code"])
    raise (exc or ComputeError)(f"{msg}: {e}") from e


def _state(inst: dict[str, Any]) -> str:
    name = inst["State"]["Name"]
    return _STATE_ALIASES.get(name, name)


def _tags(inst: dict[str, Any]) -> dict[str, str]:
    return {tag["Key"]: tag["Value"] for tag in inst.get("Tags", [])}


class Compute(ComputeBlueprint):
    """AWS EC2 compute service.

    Attributes:
        client: boto3 EC2 client.
        username: Login user reported for launched instances.
    """

    def __init__(self, config: AWSConfig, username: str = DEFAULT_USERNAME) -> None:
        """Initialize the EC2 client.

        Args:
            config: Validated AWS settings (credentials may be ``None`` to use
                boto3's default chain).
            username: SSH login user of the images being launched.
        """
        self.region = config.region_name
        self.username = username
        self.client = boto3.client(
            "ec2",
            aws_access_key_id=config.aws_access_key_id,
            aws_secret_access_key=config.aws_secret_access_key,
            region_name=config.region_name,
        )

    def validate_credentials(self) -> None:
        """Call ``DescribeRegions`` to prove the credentials work.

        Raises:
            CredentialsError: If the call is rejected or no credentials are found.
        """
        try:
            self.client.describe_regions()
        except (ClientError, BotoCoreError) as e:
            raise CredentialsError(f"Invalid AWS credentials: {e}") from e

    def import_key_pair(self, public_key_path: str) -> str:
        """Import a public key as an EC2 key pair, reusing an existing one.

        The key pair name is derived from the key material, so importing the
        same key twice yields the same name.

        Returns:
            Key pair name.
        """
        try:
            material = Path(public_key_path).expanduser().read_bytes()
        except OSError as e:
            raise ComputeError(f"Failed to read public key '{public_key_path}'") from e

        key_name = f"{MANAGED_BY}-{hashlib.md5(material).hexdigest()[:16]}"
        try:
            self.client.describe_key_pairs(KeyNames=[key_name])
            return key_name
        except ClientError as e:
            if e.response["Error"]["Code"] != "InvalidKeyPair.NotFound":
                _handle(e, f"Failed to look up key pair '{key_name}'")
        except BotoCoreError as e:
            _handle(e, f"Failed to look up key pair '{key_name}'")

        try:
            self.client.import_key_pair(KeyName=key_name, PublicKeyMaterial=material)
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to import key pair '{key_name}'")
        return key_name

    def create_instance(self, request: InstanceRequest) -> InstanceRecord:
        """Launch a tagged EC2 instance for a new lease.

        The image, subnet and security groups are used as given; nothing is
        discovered or created besides the key pair.

        Returns:
            Record in ``pending`` state.
        """
        key_name = self.import_key_pair(request.public_key_path)
        seconds = int(request.lease_duration.total_seconds())
        params: dict[str, Any] = {
            "ImageId": request.image_id,
            "InstanceType": request.instance_type,
            "MinCount": 1,
            "MaxCount": 1,
            "KeyName": key_name,
            "TagSpecifications": [
                {
                    "ResourceType": "instance",
                    "Tags": [
                        {"Key": "Name", "Value": request.name},
                        {"Key": "ManagedBy", "Value": MANAGED_BY},
                        {"Key": "Duration", "Value": f"{seconds}s"},
                    ],
                }
            ],
        }
        if request.subnet_id:
            interface: dict[str, Any] = {
                "DeviceIndex": 0,
                "SubnetId": request.subnet_id,
                "AssociatePublicIpAddress": True,
            }
            if request.security_group_ids:
                interface["Groups"] = request.security_group_ids
            params["NetworkInterfaces"] = [interface]
        elif request.security_group_ids:
            params["SecurityGroupIds"] = request.security_group_ids
        if request.availability_zone and not request.subnet_id:
            params["Placement"] = {"AvailabilityZone": request.availability_zone}

        try:
            resp = self.client.run_instances(**params)
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to launch instance '{request.name}'")

        inst = resp["Instances"][0]
        return InstanceRecord.new(
            inst["InstanceId"],
            request.instance_type,
            request.lease_duration,
            launch_time=inst.get("LaunchTime") or utcnow(),
            state=PENDING,
            availability_zone=inst.get("Placement", {}).get("AvailabilityZone")
            or request.availability_zone,
            key_name=key_name,
            username=self.username,
        )

    def get_instance_status(self, instance_id: str) -> InstanceStatus:
        """Describe one EC2 instance.

        Args:
            instance_id: EC2 instance ID (e.g. ``i-0abcd1234``).

        Raises:
            InstanceNotFoundError: If the instance does not exist.
        """
        try:
            resp = self.client.describe_instances(InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to describe instance '{instance_id}'")

        reservations = resp.get("Reservations", [])
        if not reservations or not reservations[0].get("Instances"):
            raise InstanceNotFoundError(f"Instance '{instance_id}' not found")
        inst = reservations[0]["Instances"][0]
        return InstanceStatus(
            id=instance_id,
            state=_state(inst),
            public_ip=inst.get("PublicIpAddress"),
            private_ip=inst.get("PrivateIpAddress"),
            username=self.username,
        )

    def start_instance(self, instance_id: str) -> None:
        """Start a stopped EC2 instance.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
            InvalidInstanceStateError: If the instance cannot be started yet
                (e.g. it is still stopping).
        """
        try:
            self.client.start_instances(InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to start instance '{instance_id}'")

    def stop_instance(self, instance_id: str) -> None:
        """Stop a running EC2 instance (preserves EBS volumes).

        Raises:
            InstanceNotFoundError: If the instance does not exist.
        """
        try:
            self.client.stop_instances(InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to stop instance '{instance_id}'")

    def terminate_instance(self, instance_id: str) -> None:
        """Terminate an EC2 instance permanently.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
        """
        try:
            self.client.terminate_instances(InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to terminate instance '{instance_id}'")

    def list_instances(self) -> list[InstanceRecord]:
        """List non-terminated EC2 instances tagged ``ManagedBy=leasekeeper``.

        Leases are rebuilt from the ``Duration`` tag; instances without a
        readable tag get a zero-length lease, i.e. they show as expired.
        """
        try:
            resp = self.client.describe_instances(
                Filters=[
                    {"Name": "tag:ManagedBy", "Values": [MANAGED_BY]},
                    {
                        "Name": "instance-state-name",
                        "Values": ["pending", "running", "stopping", "stopped"],
                    },
                ]
            )
        except (ClientError, BotoCoreError) as e:
            _handle(e, "Failed to list instances")

        records: list[InstanceRecord] = []
        for reservation in resp.get("Reservations", []):
            for inst in reservation.get("Instances", []):
                launch_time = inst.get("LaunchTime") or utcnow()
                try:
                    duration = parse_duration(_tags(inst).get("Duration", ""))
                except ValueError:
                    duration = timedelta(0)
                records.append(
                    InstanceRecord(
                        id=inst["InstanceId"],
                        instance_type=inst.get("InstanceType", ""),
                        state=_state(inst),
                        launch_time=launch_time,
                        lease_duration=duration,
                        expires_at=launch_time + duration,
                        public_ip=inst.get("PublicIpAddress"),
                        private_ip=inst.get("PrivateIpAddress"),
                        availability_zone=inst.get("Placement", {}).get("AvailabilityZone"),
                        key_name=inst.get("KeyName"),
                        username=self.username,
                    )
                )
        return records
