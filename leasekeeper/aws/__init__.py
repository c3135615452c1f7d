"""AWS provider implementations."""

from .compute import Compute

__all__ = ["Compute"]
