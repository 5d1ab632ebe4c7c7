"""
Preference resolution into typed catalog constraints.

A preference key is either absent (no constraint), present with an empty
value (keep the current resource's value) or present with a value (explicit
override). Constraints are compiled into SQLAlchemy predicates against the
catalog model, never into SQL text.
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import not_, or_
from sqlalchemy.sql.elements import ColumnElement

from rightsizer.exceptions import InvalidInputError
from rightsizer.models.schemas import ResourceSpec

EXCLUDE_UPSIZING = "ExcludeUpsizingFeature"
EXCLUDE_BURSTABLE = "ExcludeBurstableInstances"
EXCLUDE_BURSTABLE_UNLESS_CURRENT = "if current resource is burstable"

SPECIAL_KEYS = frozenset({EXCLUDE_UPSIZING, EXCLUDE_BURSTABLE})


class Comparator(str, Enum):
    EQ = "="
    GTE = ">="
    LIKE = "LIKE"
    NOT_LIKE = "NOT LIKE"
    IN = "IN"
    NULL_OR_GTE = "IS NULL OR >="


class Coercion(str, Enum):
    NUMERIC = "numeric"
    TEXT = "text"
    PATTERN = "pattern"


@dataclass(frozen=True)
class PreferenceBinding:
    """
    How one preference maps onto the catalog.

    Attributes:
        column: Catalog model attribute the constraint applies to
        comparator: Comparison used in the predicate
        coercion: How raw string values are typed
        current_field: ResourceSpec field read for "keep current" (defaults to column)
        value_map: Human-readable value to catalog value
        drop_unmapped: Explicit values missing from value_map impose no constraint
    """
    column: str
    comparator: Comparator = Comparator.EQ
    coercion: Coercion = Coercion.TEXT
    current_field: Optional[str] = None
    value_map: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    drop_unmapped: bool = False

    @property
    def source_field(self) -> str:
        return self.current_field or self.column


@dataclass(frozen=True)
class PreferenceTable:
    """Immutable preference-name to binding table for one resource kind."""
    bindings: Mapping[str, PreferenceBinding]
    burstable_column: Optional[str] = None
    burstable_pattern: str = "t%"

    def __contains__(self, name: str) -> bool:
        return name in self.bindings


@dataclass(frozen=True)
class Constraint:
    """A typed predicate over one catalog column."""
    column: str
    comparator: Comparator
    value: Any
    source: str

    def to_clause(self, model) -> ColumnElement:
        column = getattr(model, self.column)
        if self.comparator == Comparator.EQ:
            return column == self.value
        if self.comparator == Comparator.GTE:
            return column >= self.value
        if self.comparator == Comparator.LIKE:
            return column.like(self.value)
        if self.comparator == Comparator.NOT_LIKE:
            return not_(column.like(self.value))
        if self.comparator == Comparator.IN:
            return column.in_(list(self.value))
        if self.comparator == Comparator.NULL_OR_GTE:
            return or_(column.is_(None), column >= self.value)
        raise ValueError(f"Unsupported comparator: {self.comparator}")

    def __str__(self) -> str:
        return f"{self.column} {self.comparator.value} {self.value!r}"


@dataclass
class ResolvedPreferences:
    constraints: List[Constraint] = field(default_factory=list)
    values: Dict[str, Any] = field(default_factory=dict)
    kept_current: Dict[str, Any] = field(default_factory=dict)
    exclude_upsizing: bool = False
    exclude_burstable: bool = False

    def value(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def has(self, name: str) -> bool:
        return name in self.values

    def add(self, constraint: Constraint) -> None:
        self.constraints.append(constraint)

    def clauses(self, model) -> List[ColumnElement]:
        return [c.to_clause(model) for c in self.constraints]


def is_unset(value: Optional[str]) -> bool:
    return value is None or value.strip() == ""


class PreferenceResolver:
    """Turns a sparse preference map into constraints for one catalog."""

    def __init__(self, table: PreferenceTable):
        self.table = table

    def resolve(
        self,
        preferences: Mapping[str, Optional[str]],
        current: ResourceSpec,
        floors: Optional[Mapping[str, float]] = None,
    ) -> ResolvedPreferences:
        """
        Resolve preferences against the current resource.

        Args:
            preferences: Preference name to raw value (None/"" means keep current)
            current: The resource as observed today
            floors: Needed headroom per preference name, used when the
                preference is not given at all

        Returns:
            Constraints plus resolved values and special flags

        Raises:
            InvalidInputError: If an explicit value cannot be coerced
        """
        resolved = ResolvedPreferences()
        self._resolve_special(preferences, current, resolved)

        for name, raw in preferences.items():
            if name in SPECIAL_KEYS:
                continue
            binding = self.table.bindings.get(name)
            if binding is None:
                continue

            if is_unset(raw):
                value = current.value_of(binding.source_field)
                if value is None or value == "":
                    continue
                value = self._coerce(name, binding, value)
                resolved.kept_current[name] = value
            else:
                value = raw.strip()
                if binding.value_map:
                    mapped = binding.value_map.get(value)
                    if mapped is None and binding.drop_unmapped:
                        continue
                    value = mapped or value
                value = self._coerce(name, binding, value)

            resolved.values[name] = value
            resolved.add(Constraint(binding.column, binding.comparator, value, name))

        for name, needed in (floors or {}).items():
            if name in preferences or needed is None:
                continue
            binding = self.table.bindings[name]
            comparator = binding.comparator
            if comparator not in (Comparator.GTE, Comparator.NULL_OR_GTE):
                comparator = Comparator.GTE
            resolved.values[name] = needed
            resolved.add(Constraint(binding.column, comparator, needed, name))

        return resolved

    def _resolve_special(
        self,
        preferences: Mapping[str, Optional[str]],
        current: ResourceSpec,
        resolved: ResolvedPreferences,
    ) -> None:
        upsizing = preferences.get(EXCLUDE_UPSIZING)
        resolved.exclude_upsizing = upsizing is not None and upsizing.strip() == "Yes"

        burstable = preferences.get(EXCLUDE_BURSTABLE)
        if burstable is None or self.table.burstable_column is None:
            return
        burstable = burstable.strip()
        if burstable == "Yes":
            resolved.exclude_burstable = True
        elif burstable == EXCLUDE_BURSTABLE_UNLESS_CURRENT:
            resolved.exclude_burstable = not current.family.startswith("t")

        if resolved.exclude_burstable:
            resolved.add(Constraint(
                self.table.burstable_column,
                Comparator.NOT_LIKE,
                self.table.burstable_pattern,
                EXCLUDE_BURSTABLE,
            ))

    def _coerce(self, name: str, binding: PreferenceBinding, value: Any) -> Any:
        if binding.comparator == Comparator.IN:
            if isinstance(value, str):
                return tuple(v.strip() for v in value.split(",") if v.strip())
            if isinstance(value, Sequence):
                return tuple(value)
            return (value,)

        if binding.coercion == Coercion.NUMERIC:
            try:
                return float(value)
            except (TypeError, ValueError):
                raise InvalidInputError(f"expected a number, got {value!r}", field=name) from None

        # Patterns keep caller wildcards; a plain value matches exactly
        return str(value)


# ============================================================================
# STATIC PREFERENCE TABLES
# ============================================================================

TENANCY_TO_CATALOG = MappingProxyType({
    "default": "Shared",
    "dedicated": "Dedicated",
    "host": "Host",
})

USAGE_OPERATION_HUMAN_TO_MACHINE = MappingProxyType({
    "Linux/UNIX": "RunInstances",
    "Red Hat BYOL Linux": "RunInstances:00g0",
    "Red Hat Enterprise Linux": "RunInstances:0010",
    "Red Hat Enterprise Linux with HA": "RunInstances:1010",
    "Red Hat Enterprise Linux with SQL Server Standard and HA": "RunInstances:1014",
    "Red Hat Enterprise Linux with SQL Server Enterprise and HA": "RunInstances:1110",
    "Red Hat Enterprise Linux with SQL Server Standard": "RunInstances:0014",
    "Red Hat Enterprise Linux with SQL Server Web": "RunInstances:0210",
    "Red Hat Enterprise Linux with SQL Server Enterprise": "RunInstances:0110",
    "SQL Server Enterprise": "RunInstances:0100",
    "SQL Server Standard": "RunInstances:0004",
    "SQL Server Web": "RunInstances:0200",
    "SUSE Linux": "RunInstances:000g",
    "Ubuntu Pro": "RunInstances:0g00",
    "Windows": "RunInstances:0002",
    "Windows BYOL": "RunInstances:0800",
    "Windows with SQL Server Enterprise": "RunInstances:0102",
    "Windows with SQL Server Standard": "RunInstances:0006",
    "Windows with SQL Server Web": "RunInstances:0202",
})

EC2_INSTANCE_PREFERENCES = PreferenceTable(
    bindings=MappingProxyType({
        "InstanceFamily": PreferenceBinding("instance_family"),
        "Tenancy": PreferenceBinding("tenancy"),
        "UsageOperation": PreferenceBinding(
            "operation",
            value_map=USAGE_OPERATION_HUMAN_TO_MACHINE,
            drop_unmapped=True,
        ),
        "EBSOptimized": PreferenceBinding("ebs_optimized"),
        "LicenseModel": PreferenceBinding("license_model"),
        "Region": PreferenceBinding("region_code", current_field="region"),
        "CurrentGeneration": PreferenceBinding("current_generation"),
        "PhysicalProcessor": PreferenceBinding("physical_processor", coercion=Coercion.PATTERN,
                                               comparator=Comparator.LIKE),
        "ClockSpeed": PreferenceBinding("clock_speed"),
        "ProcessorArchitecture": PreferenceBinding("processor_architecture",
                                                   coercion=Coercion.PATTERN,
                                                   comparator=Comparator.LIKE),
        "ENASupport": PreferenceBinding("enhanced_networking_supported"),
        "vCPU": PreferenceBinding("vcpu", Comparator.GTE, Coercion.NUMERIC),
        "MemoryGB": PreferenceBinding("memory_gb", Comparator.GTE, Coercion.NUMERIC),
    }),
    burstable_column="instance_type",
)

EBS_VOLUME_PREFERENCES = PreferenceTable(
    bindings=MappingProxyType({
        "IOPS": PreferenceBinding("max_iops", Comparator.GTE, Coercion.NUMERIC, current_field="iops"),
        "Throughput": PreferenceBinding("max_throughput", Comparator.GTE, Coercion.NUMERIC,
                                        current_field="throughput"),
        "Size": PreferenceBinding("max_size", Comparator.GTE, Coercion.NUMERIC, current_field="size"),
    }),
)

RDS_STORAGE_PREFERENCES = PreferenceTable(
    bindings=MappingProxyType({
        "StorageIops": PreferenceBinding("max_iops", Comparator.NULL_OR_GTE, Coercion.NUMERIC,
                                         current_field="iops"),
        "StorageThroughput": PreferenceBinding("max_throughput_mb", Comparator.NULL_OR_GTE, Coercion.NUMERIC,
                                               current_field="throughput"),
        "StorageSize": PreferenceBinding("max_volume_size_gb", Comparator.GTE, Coercion.NUMERIC,
                                         current_field="size"),
    }),
)
