"""
Needed-capacity arithmetic.

CPU utilization gets its breathing room added in percentage points. Memory
peaks, rates and sizes (network, IOPS, throughput, disk) are scaled by
(1 + room / 100).
"""
from typing import Mapping, Optional

from rightsizer.exceptions import InvalidInputError

BYTES_PER_MB = 1024 * 1024


def breathing_room(
    preferences: Mapping[str, Optional[str]],
    name: str,
    defaults: Mapping[str, float],
) -> float:
    """
    Read a breathing-room percentage from preferences.

    Raises:
        InvalidInputError: If the value is not a number
    """
    raw = preferences.get(name)
    if raw is None or raw.strip() == "":
        return float(defaults.get(name, 0))
    try:
        return float(raw)
    except ValueError:
        raise InvalidInputError(f"expected a percentage, got {raw!r}", field=name) from None


def utilization_headroom(capacity: float, utilization_percent: float, room: float) -> float:
    """
    Capacity needed for a utilization percentage plus breathing room.

    4 vCPUs at 10% with 20 points of room need 4 * (10 + 20) / 100 = 1.2 vCPUs.
    """
    return capacity * (utilization_percent + room) / 100.0


def rate_headroom(observed: float, room: float) -> float:
    return observed * (1 + room / 100.0)


def size_headroom(size: float, used_percent: float, room: float) -> float:
    """Disk size needed for the used share, at least 1 GiB, plus breathing room."""
    return rate_headroom(max(1.0, size * used_percent / 100.0), room)
