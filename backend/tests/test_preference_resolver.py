"""
Unit tests for preference resolution.
"""
import pytest

from rightsizer.engine.preferences import (
    EBS_VOLUME_PREFERENCES,
    EC2_INSTANCE_PREFERENCES,
    RDS_STORAGE_PREFERENCES,
    Comparator,
    PreferenceResolver,
)
from rightsizer.exceptions import InvalidInputError
from rightsizer.models.catalog import EC2InstanceType
from rightsizer.models.schemas import ResourceKind, ResourceSpec


@pytest.fixture
def current_instance():
    return ResourceSpec(
        kind=ResourceKind.COMPUTE_INSTANCE,
        family="m5.xlarge",
        region="us-east-1",
        dimensions={"vcpu": 4, "memory_gb": 16},
        attributes={
            "instance_family": "General purpose",
            "tenancy": "Shared",
            "operation": "RunInstances",
            "physical_processor": "Intel Xeon Platinum 8175",
        },
    )


@pytest.fixture
def resolver():
    return PreferenceResolver(EC2_INSTANCE_PREFERENCES)


def by_source(resolved):
    return {c.source: c for c in resolved.constraints}


class TestPreferenceFallback:
    """Test absent, present-empty and explicit preferences."""

    def test_absent_key_adds_nothing(self, resolver, current_instance):
        """Test an absent preference imposes no constraint."""
        resolved = resolver.resolve({}, current_instance)

        assert resolved.constraints == []

    def test_empty_value_keeps_current(self, resolver, current_instance):
        """Test present-empty resolves to exactly the current value."""
        resolved = resolver.resolve({"InstanceFamily": "", "Tenancy": None}, current_instance)

        constraints = by_source(resolved)
        assert constraints["InstanceFamily"].value == "General purpose"
        assert constraints["InstanceFamily"].comparator == Comparator.EQ
        assert constraints["Tenancy"].value == "Shared"
        assert resolved.kept_current == {"InstanceFamily": "General purpose", "Tenancy": "Shared"}

    def test_empty_pattern_keeps_exact_current(self, resolver, current_instance):
        """Test a LIKE preference kept from current matches the value exactly."""
        resolved = resolver.resolve({"PhysicalProcessor": ""}, current_instance)

        assert by_source(resolved)["PhysicalProcessor"].value == "Intel Xeon Platinum 8175"

    def test_empty_value_without_current_is_dropped(self, resolver, current_instance):
        """Test keep-current on an unknown current value adds nothing."""
        resolved = resolver.resolve({"ClockSpeed": ""}, current_instance)

        assert resolved.constraints == []

    def test_explicit_value(self, resolver, current_instance):
        """Test an explicit value overrides the current one."""
        resolved = resolver.resolve({"Tenancy": "Dedicated"}, current_instance)

        assert by_source(resolved)["Tenancy"].value == "Dedicated"
        assert resolved.kept_current == {}

    def test_unknown_key_ignored(self, resolver, current_instance):
        """Test unknown preference names never reach the query."""
        resolved = resolver.resolve({"Colour": "blue", "vCPU; DROP TABLE": "1"}, current_instance)

        assert resolved.constraints == []

    def test_numeric_coercion(self, resolver, current_instance):
        """Test numeric preferences become >= floats."""
        resolved = resolver.resolve({"vCPU": "8", "MemoryGB": ""}, current_instance)

        constraints = by_source(resolved)
        assert constraints["vCPU"].value == 8.0
        assert constraints["vCPU"].comparator == Comparator.GTE
        assert constraints["MemoryGB"].value == 16

    def test_numeric_garbage_rejected(self, resolver, current_instance):
        """Test an unparsable number is invalid input."""
        with pytest.raises(InvalidInputError) as exc:
            resolver.resolve({"vCPU": "lots"}, current_instance)

        assert exc.value.field == "vCPU"


class TestUsageOperation:
    """Test usage operation mapping."""

    def test_human_value_mapped(self, resolver, current_instance):
        """Test human-readable operations map to operation codes."""
        resolved = resolver.resolve({"UsageOperation": "Windows"}, current_instance)

        assert by_source(resolved)["UsageOperation"].value == "RunInstances:0002"

    def test_unmapped_value_dropped(self, resolver, current_instance):
        """Test an unknown operation imposes no constraint."""
        resolved = resolver.resolve({"UsageOperation": "Plan 9"}, current_instance)

        assert not resolved.has("UsageOperation")
        assert resolved.constraints == []


class TestSpecialKeys:
    """Test upsizing and burstable switches."""

    def test_exclude_upsizing(self, resolver, current_instance):
        """Test ExcludeUpsizingFeature is a flag, not a constraint."""
        resolved = resolver.resolve({"ExcludeUpsizingFeature": "Yes"}, current_instance)

        assert resolved.exclude_upsizing
        assert resolved.constraints == []

    def test_exclude_burstable_yes(self, resolver, current_instance):
        """Test burstable exclusion adds a NOT LIKE 't%' constraint."""
        resolved = resolver.resolve({"ExcludeBurstableInstances": "Yes"}, current_instance)

        constraint = by_source(resolved)["ExcludeBurstableInstances"]
        assert constraint.comparator == Comparator.NOT_LIKE
        assert constraint.value == "t%"

    def test_exclude_burstable_unless_current_is_burstable(self, resolver, current_instance):
        """Test the conditional form keeps burstables for a burstable current type."""
        burstable = current_instance.model_copy(update={"family": "t3.large"})
        value = "if current resource is burstable"

        assert resolver.resolve({"ExcludeBurstableInstances": value}, current_instance).exclude_burstable
        assert not resolver.resolve({"ExcludeBurstableInstances": value}, burstable).exclude_burstable

    def test_constraints_compile_to_clauses(self, resolver, current_instance):
        """Test constraints compile to SQLAlchemy expressions with bound values."""
        resolved = resolver.resolve(
            {"ExcludeBurstableInstances": "Yes", "vCPU": "2"}, current_instance
        )

        clauses = [str(c.compile(compile_kwargs={"literal_binds": True}))
                   for c in resolved.clauses(EC2InstanceType)]
        assert any("NOT LIKE 't%'" in c for c in clauses)
        assert any("vcpu >= 2" in c for c in clauses)


class TestFloors:
    """Test needed-capacity floors."""

    def test_floor_applies_when_absent(self, resolver, current_instance):
        """Test computed needs become >= constraints."""
        resolved = resolver.resolve({}, current_instance, floors={"vCPU": 1.2, "MemoryGB": None})

        assert by_source(resolved)["vCPU"].value == 1.2
        assert not resolved.has("MemoryGB")

    def test_preference_overrides_floor(self, resolver, current_instance):
        """Test an explicit preference wins over the computed need."""
        resolved = resolver.resolve({"vCPU": "8"}, current_instance, floors={"vCPU": 1.2})

        assert [c.value for c in resolved.constraints] == [8.0]

    def test_storage_floors_allow_unbounded_rows(self, current_instance):
        """Test storage IOPS floors accept rows with no published limit."""
        storage = ResourceSpec(
            kind=ResourceKind.MANAGED_STORAGE,
            family="aurora",
            region="us-east-1",
            dimensions={"size": 100, "iops": 0, "throughput": 0},
        )
        resolved = PreferenceResolver(RDS_STORAGE_PREFERENCES).resolve(
            {}, storage, floors={"StorageIops": 500, "StorageSize": 100}
        )

        constraints = by_source(resolved)
        assert constraints["StorageIops"].comparator == Comparator.NULL_OR_GTE
        assert constraints["StorageSize"].comparator == Comparator.GTE

    def test_volume_keep_current_iops(self):
        """Test an empty IOPS preference pins the current volume IOPS."""
        spec = ResourceSpec(
            kind=ResourceKind.BLOCK_VOLUME,
            family="gp3",
            region="us-east-1",
            dimensions={"size": 100, "iops": 3000, "throughput": 125},
        )
        resolved = PreferenceResolver(EBS_VOLUME_PREFERENCES).resolve(
            {"IOPS": ""}, spec, floors={"IOPS": 50, "Size": 20}
        )

        assert resolved.value("IOPS") == 3000
        assert resolved.value("Size") == 20
