"""
Declarative row schemas for upstream pricing CSVs.

A RowSchema maps upstream column names to typed catalog fields. One
generic loader converts every catalog's rows, so adding a column means
adding a FieldSpec, not parsing code.
"""
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional

from rightsizer.exceptions import RowValidationError

_NUMBER = re.compile(r"\d+(?:\.\d+)?")

BYTES_PER_GIB = 1024 ** 3
BYTES_PER_MIB = 1024 ** 2

_SIZE_UNITS_GIB = {"tib": 1024.0, "tb": 1024.0, "gib": 1.0, "gb": 1.0}


# ============================================================================
# PARSERS
# ============================================================================

def _numbers(value: str):
    return [float(n) for n in _NUMBER.findall(value.replace(",", ""))]


def parse_text(value: str) -> str:
    return value.strip()


def parse_float(value: str) -> float:
    return float(value.replace(",", ""))


def parse_int(value: str) -> int:
    return int(parse_float(value))


def parse_price(value: str) -> Decimal:
    try:
        return Decimal(value.strip())
    except InvalidOperation:
        raise ValueError(f"not a price: {value!r}") from None


def parse_largest_number(value: str) -> float:
    """'1,000 - 64,000' -> 64000; '16000' -> 16000."""
    numbers = _numbers(value)
    if not numbers:
        raise ValueError(f"no number in {value!r}")
    return max(numbers)


def parse_memory_gb(value: str) -> float:
    """'16 GiB' -> 16.0."""
    return parse_largest_number(value)


def parse_network_bandwidth(value: str) -> float:
    """
    Network performance label to bytes per second.

    'Up to 10 Gigabit' -> 10 GiB/8; '100 Megabit' -> 100 MiB/8. Labels
    without a number ('Moderate') are rejected.
    """
    amount = parse_largest_number(value)
    if "megabit" in value.lower():
        return amount * BYTES_PER_MIB / 8
    return amount * BYTES_PER_GIB / 8


def parse_mbps_as_mb(value: str) -> float:
    """'Up to 4750 Mbps' -> MB/s."""
    return parse_largest_number(value) / 8


def parse_size_gib(value: str) -> float:
    """'16 TiB' -> 16384; '20 GB' -> 20; '16384' -> 16384."""
    amount = parse_largest_number(value)
    for unit, scale in _SIZE_UNITS_GIB.items():
        if re.search(rf"\b{unit}\b", value, re.IGNORECASE):
            return amount * scale
    return amount


def parse_throughput_mb(value: str) -> float:
    """'1000 MiB/s' -> 1000."""
    return parse_largest_number(value)


# ============================================================================
# SCHEMA
# ============================================================================

@dataclass(frozen=True)
class FieldSpec:
    """
    One upstream column.

    Attributes:
        field: Catalog model attribute
        parser: Converts the raw string; raises ValueError when unparsable
        required: Missing or unparsable values reject the row
        default: Value stored when an optional column is missing or unparsable
    """
    field: str
    parser: Callable[[str], Any] = parse_text
    required: bool = False
    default: Any = None


RowFilter = Callable[[Mapping[str, str]], bool]
RowDeriver = Callable[[Dict[str, Any], Mapping[str, str]], None]


@dataclass(frozen=True)
class RowSchema:
    """
    Column mapping for one catalog.

    Attributes:
        name: Catalog name used in logs
        columns: Upstream column name to FieldSpec
        accept: Rows it returns False for are filtered, not counted as invalid
        derive: Fills fields computed from several columns; may raise
            RowValidationError
    """
    name: str
    columns: Mapping[str, FieldSpec]
    accept: Optional[RowFilter] = None
    derive: Optional[RowDeriver] = None


def load_row(schema: RowSchema, raw: Mapping[str, str]) -> Optional[Dict[str, Any]]:
    """
    Convert one upstream row into catalog model fields.

    Args:
        schema: Column mapping of the target catalog
        raw: Upstream row keyed by column name

    Returns:
        Field dict, or None when the accept rule filters the row out

    Raises:
        RowValidationError: If a required field is missing or unparsable
    """
    if schema.accept is not None and not schema.accept(raw):
        return None

    record: Dict[str, Any] = {}
    for column, spec in schema.columns.items():
        value = raw.get(column)
        if value is None or value.strip() == "":
            if spec.required:
                raise RowValidationError(column, "missing required value")
            record[spec.field] = spec.default
            continue

        try:
            record[spec.field] = spec.parser(value)
        except ValueError as e:
            if spec.required:
                raise RowValidationError(column, str(e)) from None
            record[spec.field] = spec.default

    if schema.derive is not None:
        schema.derive(record, raw)
    return record


def _on_demand(raw: Mapping[str, str]) -> bool:
    return raw.get("TermType", "") == "OnDemand"


# ============================================================================
# COMPUTE INSTANCES
# ============================================================================

def _accept_instance(raw: Mapping[str, str]) -> bool:
    return (
        _on_demand(raw)
        and raw.get("Product Family") == "Compute Instance"
        and raw.get("CapacityStatus") == "Used"
    )


EC2_INSTANCE_SCHEMA = RowSchema(
    name="ec2_instance_types",
    columns=MappingProxyType({
        "Instance Type": FieldSpec("instance_type", required=True),
        "Region Code": FieldSpec("region_code", required=True),
        "Instance Family": FieldSpec("instance_family"),
        "vCPU": FieldSpec("vcpu", parse_int, default=0),
        "Memory": FieldSpec("memory_gb", parse_memory_gb, default=0.0),
        "Network Performance": FieldSpec("network_max_bandwidth", parse_network_bandwidth, default=0.0),
        "Dedicated EBS Throughput": FieldSpec("ebs_max_throughput", parse_mbps_as_mb),
        "Tenancy": FieldSpec("tenancy"),
        "operation": FieldSpec("operation"),
        "Pre Installed S/W": FieldSpec("pre_installed_sw"),
        "Operating System": FieldSpec("operating_system"),
        "License Model": FieldSpec("license_model"),
        "CapacityStatus": FieldSpec("capacity_status"),
        "EBS Optimized": FieldSpec("ebs_optimized"),
        "Current Generation": FieldSpec("current_generation"),
        "Physical Processor": FieldSpec("physical_processor"),
        "Clock Speed": FieldSpec("clock_speed"),
        "Processor Architecture": FieldSpec("processor_architecture"),
        "Enhanced Networking Supported": FieldSpec("enhanced_networking_supported"),
        "TermType": FieldSpec("term_type"),
        "Unit": FieldSpec("unit"),
        "PricePerUnit": FieldSpec("price_per_unit", parse_price, required=True),
    }),
    accept=_accept_instance,
)


# ============================================================================
# BLOCK VOLUMES
# ============================================================================

EBS_CHARGE_TYPES = MappingProxyType({
    "Storage": "size",
    "System Operation": "iops",
    "Provisioned Throughput": "throughput",
})

EBS_PRICE_GROUP_TIERS = MappingProxyType({
    "EBS IOPS": 1,
    "EBS IOPS Tier 2": 2,
    "EBS IOPS Tier 3": 3,
})

# Per-request I/O charges are not part of any volume price model
_EBS_IGNORED_GROUPS = frozenset({"EBS I/O Requests"})


def _accept_volume(raw: Mapping[str, str]) -> bool:
    return (
        _on_demand(raw)
        and raw.get("Product Family") in EBS_CHARGE_TYPES
        and raw.get("Group", "") not in _EBS_IGNORED_GROUPS
    )


def _derive_volume(record: Dict[str, Any], raw: Mapping[str, str]) -> None:
    record["charge_type"] = EBS_CHARGE_TYPES[raw["Product Family"]]
    record["volume_type"] = record["volume_type"].lower()
    record["tier_index"] = EBS_PRICE_GROUP_TIERS.get(record.get("price_group") or "", 1)


EBS_VOLUME_SCHEMA = RowSchema(
    name="ebs_volume_types",
    columns=MappingProxyType({
        "Volume API Name": FieldSpec("volume_type", required=True),
        "Region Code": FieldSpec("region_code", required=True),
        "Group": FieldSpec("price_group"),
        "Max IOPS/volume": FieldSpec("max_iops", parse_largest_number, default=0.0),
        "Max throughput/volume": FieldSpec("max_throughput", parse_throughput_mb, default=0.0),
        "Max Volume Size": FieldSpec("max_size", parse_size_gib, default=0.0),
        "Unit": FieldSpec("unit"),
        "PricePerUnit": FieldSpec("price_per_unit", parse_price, required=True),
    }),
    accept=_accept_volume,
    derive=_derive_volume,
)


# ============================================================================
# MANAGED DATABASE STORAGE
# ============================================================================

RDS_VOLUME_TYPE_FAMILIES = MappingProxyType({
    "General Purpose": "gp2",
    "General Purpose-GP3": "gp3",
    "Provisioned IOPS": "io1",
    "Provisioned IOPS-IO2": "io2",
    "Magnetic": "magnetic",
    "General Purpose-Aurora": "aurora",
    "IO Optimized-Aurora": "aurora-iopt",
})

RDS_CHARGE_TYPES = MappingProxyType({
    "Database Storage": "size",
    "Provisioned IOPS": "iops",
    "Provisioned Throughput": "throughput",
    "System Operation": "io_request",
})

RDS_IOPS_GROUP_FAMILIES = MappingProxyType({
    "RDS Provisioned IOPS": "io1",
    "RDS Provisioned IO2 IOPS": "io2",
    "RDS Provisioned GP3 IOPS": "gp3",
})

RDS_IO_OPERATION_FAMILIES = MappingProxyType({
    "RDS I/O Operation": "magnetic",
    "Aurora I/O Operation": "aurora",
})

# Per-family limits, not published in the price list
RDS_STORAGE_LIMITS = MappingProxyType({
    "gp2": (64000.0, 1000.0),
    "gp3": (64000.0, 4000.0),
    "io1": (256000.0, 4000.0),
    "io2": (256000.0, 4000.0),
    "magnetic": (1000.0, 100.0),
    "aurora": (None, None),
    "aurora-iopt": (None, None),
})


def _rds_family(record: Dict[str, Any], raw: Mapping[str, str]) -> Optional[str]:
    charge_type = record["charge_type"]
    if charge_type == "size":
        return RDS_VOLUME_TYPE_FAMILIES.get(raw.get("Volume Type", ""))
    if charge_type == "iops":
        return RDS_IOPS_GROUP_FAMILIES.get(record.get("group_description") or "")
    if charge_type == "throughput":
        return "gp3"
    return RDS_IO_OPERATION_FAMILIES.get(record.get("group_name") or "")


def _accept_storage(raw: Mapping[str, str]) -> bool:
    if not _on_demand(raw) or raw.get("Product Family") not in RDS_CHARGE_TYPES:
        return False
    if raw["Product Family"] == "System Operation":
        return raw.get("Group") in RDS_IO_OPERATION_FAMILIES
    return True


def _derive_storage(record: Dict[str, Any], raw: Mapping[str, str]) -> None:
    record["charge_type"] = RDS_CHARGE_TYPES[record["product_family"]]
    family = _rds_family(record, raw)
    if family is None:
        raise RowValidationError("Volume Type", f"unknown storage family for {raw.get('Volume Type')!r}")
    record["volume_type"] = family
    record["max_iops"], record["max_throughput_mb"] = RDS_STORAGE_LIMITS[family]


RDS_STORAGE_SCHEMA = RowSchema(
    name="rds_db_storage",
    columns=MappingProxyType({
        "Product Family": FieldSpec("product_family", required=True),
        "Region Code": FieldSpec("region_code", required=True),
        "Database Engine": FieldSpec("database_engine"),
        "Database Edition": FieldSpec("database_edition"),
        "Deployment Option": FieldSpec("deployment_option"),
        "Group": FieldSpec("group_name"),
        "Group Description": FieldSpec("group_description"),
        "Min Volume Size": FieldSpec("min_volume_size_gb", parse_size_gib, default=0.0),
        "Max Volume Size": FieldSpec("max_volume_size_gb", parse_size_gib, default=0.0),
        "Unit": FieldSpec("unit"),
        "PricePerUnit": FieldSpec("price_per_unit", parse_price, required=True),
    }),
    accept=_accept_storage,
    derive=_derive_storage,
)
