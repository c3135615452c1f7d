"""Duration parsing/formatting and input validators for the CLI."""

from __future__ import annotations

import re
from datetime import timedelta

_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}
_COMPACT = re.compile(r"(?:\d+(?:\.\d+)?(?:ms|s|m|h|d))+")
_COMPACT_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")
_SPELLED = {
    "second": "s",
    "minute": "m",
    "hour": "h",
    "day": "d",
}

VALID_INSTANCE_TYPES = frozenset(
    [f"t2.{size}" for size in ("nano", "micro", "small", "medium", "large", "xlarge", "2xlarge")]
    + [f"t3.{size}" for size in ("nano", "micro", "small", "medium", "large", "xlarge", "2xlarge")]
    + [f"m5.{size}" for size in ("large", "xlarge", "2xlarge", "4xlarge", "8xlarge", "12xlarge", "16xlarge", "24xlarge")]
    + [f"c5.{size}" for size in ("large", "xlarge", "2xlarge", "4xlarge", "9xlarge", "12xlarge", "18xlarge", "24xlarge")]
)


def parse_duration(text: str) -> timedelta:
    """Parse a human-entered duration.

    Accepted forms:
        - a bare integer, read as hours (``"2"``)
        - compact unit strings (``"90m"``, ``"1h30m"``, ``"1.5h"``, ``"2d"``)
        - a number and a spelled unit (``"30 minutes"``, ``"1 day"``)

    Raises:
        ValueError: If *text* matches none of the forms.
    """
    value = text.strip().lower()
    if value.isdigit():
        return timedelta(hours=int(value))

    if _COMPACT.fullmatch(value):
        total = timedelta(0)
        for amount, unit in _COMPACT_PART.findall(value):
            total += float(amount) * _UNITS[unit]
        return total

    parts = value.split()
    if len(parts) == 2:
        amount, unit = parts
        if not amount.isdigit():
            raise ValueError(f"invalid duration value: {amount}")
        for prefix, short in _SPELLED.items():
            if unit.startswith(prefix):
                return int(amount) * _UNITS[short]
        raise ValueError(f"unknown duration unit: {unit}")

    raise ValueError(f"invalid duration format: {text}")


def format_duration(delta: timedelta) -> str:
    """Render *delta* compactly: ``45s``, ``30m``, ``2h``, ``2h30m``, ``1d3h``."""
    seconds = delta.total_seconds()
    if seconds < 0:
        return "-" + format_duration(-delta)
    if seconds < 60:
        return f"{seconds:.0f}s"
    if seconds < 3600:
        return f"{seconds / 60:.0f}m"
    if seconds < 86400:
        hours, minutes = int(seconds // 3600), int(seconds // 60) % 60
        return f"{hours}h" if minutes == 0 else f"{hours}h{minutes}m"
    days, hours = int(seconds // 86400), int(seconds // 3600) % 24
    return f"{days}d" if hours == 0 else f"{days}d{hours}h"


def validate_instance_type(instance_type: str) -> None:
    if instance_type not in VALID_INSTANCE_TYPES:
        raise ValueError(f"invalid instance type: {instance_type}")


def validate_availability_zone(zone: str) -> None:
    """Check the ``region-number+letter`` shape, e.g. ``us-east-1a``."""
    if not zone:
        raise ValueError("availability zone cannot be empty")
    parts = zone.split("-")
    if len(parts) < 3 or len(parts[-1]) < 2:
        raise ValueError(f"invalid availability zone format: {zone}")
