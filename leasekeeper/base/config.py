"""
Pydantic configuration models.

Validates provider, store and reconciler settings at start-up instead of
silently passing bad values to boto3 or the scheduling thread.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_REGION = "us-east-1"
DEFAULT_STORE_PATH = Path.home() / ".leasekeeper" / "instances.json"


class AWSConfig(BaseModel):
    """Configuration for the EC2 provider.

    Credentials are resolved in order:
    1. Explicit values passed in the config dict.
    2. Environment variables (AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY,
       AWS_REGION / AWS_DEFAULT_REGION).
    3. If neither is set, credentials are left as None so boto3 can fall back
       to its own credential chain (instance metadata, ~/.aws/credentials, etc.).
       The region falls back to ``us-east-1``.
    """

    model_config = ConfigDict(extra="forbid")

    aws_access_key_id: str | None = Field(default=None, description="AWS access key ID")
    aws_secret_access_key: str | None = Field(default=None, description="AWS secret access key")
    region_name: str = Field(default=DEFAULT_REGION, description="AWS region (e.g. 'us-east-1')")

    @model_validator(mode="before")
    @classmethod
    def resolve_from_env(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Fall back to environment variables for missing settings."""
        env_map = {
            "aws_access_key_id": ("AWS_ACCESS_KEY_ID",),
            "aws_secret_access_key": ("AWS_SECRET_ACCESS_KEY",),
            "region_name": ("AWS_REGION", "AWS_DEFAULT_REGION"),
        }
        for field, env_vars in env_map.items():
            if values.get(field):
                continue
            for env_var in env_vars:
                if os.environ.get(env_var):
                    values[field] = os.environ[env_var]
                    break
            else:
                values.pop(field, None)
        return values


class ReconcilerConfig(BaseModel):
    """Cadence and fan-out of the reconciliation loop."""

    model_config = ConfigDict(extra="forbid")

    interval: float = Field(default=30.0, gt=0, description="Seconds between passes")
    max_workers: int = Field(default=1, ge=1, description="Records reconciled in parallel")
    failure_alert_threshold: int = Field(
        default=10,
        ge=0,
        description="Consecutive status failures before a record is reported unreachable (0 = never)",
    )

    @model_validator(mode="before")
    @classmethod
    def resolve_from_env(cls, values: dict[str, Any]) -> dict[str, Any]:
        for field in ("interval", "max_workers", "failure_alert_threshold"):
            if values.get(field) is None:
                values.pop(field, None)
        if "interval" not in values and os.environ.get("LEASEKEEPER_INTERVAL"):
            values["interval"] = os.environ["LEASEKEEPER_INTERVAL"]
        return values


class StoreConfig(BaseModel):
    """Location of the local record store."""

    model_config = ConfigDict(extra="forbid")

    path: Path = Field(default=DEFAULT_STORE_PATH, description="JSON file holding instance records")

    @model_validator(mode="before")
    @classmethod
    def resolve_from_env(cls, values: dict[str, Any]) -> dict[str, Any]:
        if not values.get("path") and os.environ.get("LEASEKEEPER_STORE"):
            values["path"] = os.environ["LEASEKEEPER_STORE"]
        if not values.get("path"):
            values.pop("path", None)
        return values


class DefaultsConfig(BaseModel):
    """Defaults applied by ``leasekeeper create``."""

    model_config = ConfigDict(extra="forbid")

    instance_type: str = "t2.nano"
    duration: str = "1h"
    availability_zone: str = "us-east-1a"
    image_id: str | None = None
    username: str = "ec2-user"

    @model_validator(mode="before")
    @classmethod
    def resolve_from_env(cls, values: dict[str, Any]) -> dict[str, Any]:
        if not values.get("image_id"):
            values["image_id"] = os.environ.get("LEASEKEEPER_IMAGE_ID")
        return values


# Map provider names to their config models for dynamic validation
CONFIG_REGISTRY: dict[str, type[BaseModel]] = {
    "aws": AWSConfig,
}


def validate_config(cloud_provider: str, config: dict) -> BaseModel:
    """Validate and return a typed config model for the given provider.

    Args:
        cloud_provider: The cloud provider name (e.g. 'aws').
        config: Raw configuration dictionary.

    Returns:
        A validated Pydantic config model.

    Raises:
        ValueError: If the provider is unknown.
        pydantic.ValidationError: If the config is invalid.
    """
    model = CONFIG_REGISTRY.get(cloud_provider)
    if model is None:
        raise ValueError(f"No config model registered for provider: {cloud_provider}")
    return model(**config)


__all__ = [
    "AWSConfig",
    "ReconcilerConfig",
    "StoreConfig",
    "DefaultsConfig",
    "CONFIG_REGISTRY",
    "validate_config",
]
