"""
Recommendation descriptions.

The engine always builds a structured usage/needs summary. A pluggable
generator may turn it into prose; without one, the summary lines are
rendered as-is.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

import structlog

from rightsizer.models.schemas import ResourceKind, ResourceSpec

logger = structlog.get_logger()

UPSIZING_EXCLUDED = "No recommendation available as upsizing feature is disabled"
NO_CHEAPER_ALTERNATIVE = "Current configuration retained, no cheaper alternative found"


@dataclass
class UsageNeedsSummary:
    """What a description generator is given."""
    kind: ResourceKind
    resource_id: str
    current_family: str
    recommended_family: Optional[str]
    usage: List[str] = field(default_factory=list)
    needs: List[str] = field(default_factory=list)
    changes: List[str] = field(default_factory=list)
    exclude_burstable: bool = False

    def render(self) -> str:
        lines = self.changes + self.usage + self.needs
        if self.exclude_burstable:
            lines.append("- Burstable instances are excluded.")
        return "\n".join(lines)


class DescriptionGenerator(Protocol):
    async def describe(self, summary: UsageNeedsSummary) -> str:
        ...


async def generate_description(
    generator: Optional[DescriptionGenerator],
    summary: UsageNeedsSummary,
) -> str:
    """Generator output verbatim, or "" if it fails."""
    if generator is None:
        return summary.render()
    try:
        text = await generator.describe(summary)
    except Exception as e:
        logger.warning(
            "description_generation_failed",
            resource=summary.resource_id,
            error=str(e),
        )
        return ""
    return (text or "").strip()


def describe_needs(preferences, kept_current) -> List[str]:
    lines = []
    for name in sorted(preferences):
        if name in kept_current:
            lines.append(
                f"- You asked {name} to be same as the current value which is {kept_current[name]}"
            )
        elif preferences[name] not in (None, ""):
            lines.append(f"- You asked {name} to be {preferences[name]}")
    return lines


def _fmt(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")


def describe_volume_change(current: ResourceSpec, recommended: ResourceSpec) -> List[str]:
    """
    Lines describing how a volume changes.

    Provisioned IOPS/throughput are compared above baseline, the way the
    provider bills them.
    """
    lines = []
    if recommended.family != current.family:
        lines.append(f"- change your volume from {current.family} to {recommended.family}")

    old_size = current.dimensions.get("size", 0)
    new_size = recommended.dimensions.get("size", 0)
    if int(new_size) != int(old_size):
        lines.append(f"- change volume size from {int(old_size)} to {int(new_size)}")

    for dimension, label in (("provisioned_iops", "iops"), ("provisioned_throughput", "throughput")):
        if dimension not in recommended.dimensions:
            continue
        new = recommended.dimensions[dimension]
        old = current.dimensions.get(dimension)
        if old is None:
            if new > 0:
                lines.append(f"- add provisioned {label}: {_fmt(new)}")
        elif new > old:
            lines.append(f"- increase provisioned {label} from {_fmt(old)} to {_fmt(new)}")
        elif new < old:
            lines.append(f"- decrease provisioned {label} from {_fmt(old)} to {_fmt(new)}")
    return lines
