"""
Unit tests for flag models, the registry and definition validation.
"""

import pytest
from datetime import datetime, timezone

import pydantic

from service_feature_flags.app.flags.models import (
    FeatureFlag, FlagDefinition, UserTier, RolloutStrategy, EvaluationResult, EvaluationSource,
    BulkEvaluationResult, flag_key
)
from service_feature_flags.app.flags.registry import (
    FlagRegistry, DEFAULT_FLAG_DEFINITIONS, REGISTRY_VERSION, default_definitions
)
from service_feature_flags.app.flags.validation import (
    build_definition, find_dependency_cycle, validate_dependencies, dependents_of
)
from shared.errors import ValidationError, DependencyCycleError
from shared.test_helpers import create_definition, create_test_registry


class TestFlagDefinition:
    """Test cases for FlagDefinition validation."""

    def test_tier_based_requires_tier(self):
        """Test tier_based without required_tier is rejected."""
        with pytest.raises(pydantic.ValidationError):
            FlagDefinition(**create_definition("f1", "tier_based"))

    def test_tier_only_with_tier_based(self):
        """Test required_tier on another strategy is rejected."""
        with pytest.raises(pydantic.ValidationError):
            FlagDefinition(**create_definition("f1", "all_users", required_tier="premium"))

    def test_percentage_bounds(self):
        """Test rollout_percentage must be within 0..100."""
        with pytest.raises(pydantic.ValidationError):
            FlagDefinition(**create_definition("f1", "percentage_rollout", rollout_percentage=101))
        with pytest.raises(pydantic.ValidationError):
            FlagDefinition(**create_definition("f1", "percentage_rollout", rollout_percentage=-1))
        with pytest.raises(pydantic.ValidationError):
            FlagDefinition(**create_definition("f1", "percentage_rollout"))

    def test_user_list_requires_whitelist(self):
        """Test user_list without a whitelist is rejected."""
        with pytest.raises(pydantic.ValidationError):
            FlagDefinition(**create_definition("f1", "user_list"))

    def test_self_dependency_rejected(self):
        """Test a flag cannot depend on itself."""
        with pytest.raises(pydantic.ValidationError):
            FlagDefinition(**create_definition("f1", dependencies=["f1"]))

    def test_duplicate_dependencies_rejected(self):
        """Test dependencies must be unique."""
        with pytest.raises(pydantic.ValidationError):
            FlagDefinition(**create_definition("f1", dependencies=["f2", "f2"]))

    def test_unknown_field_rejected(self):
        """Test definitions do not accept unknown fields."""
        with pytest.raises(pydantic.ValidationError):
            FlagDefinition(**create_definition("f1", rollout="all"))

    def test_enum_members_normalized(self):
        """Test flag enum members are stored as ids."""
        definition = FlagDefinition(**create_definition(
            FeatureFlag.CUSTOM_BRANDING,
            "tier_based",
            required_tier=UserTier.ENTERPRISE,
            dependencies=[FeatureFlag.PREMIUM_UI_COMPONENTS]
        ))

        assert definition.flag == "custom_branding"
        assert definition.dependencies == ("premium_ui_components",)
        assert definition.strategy == RolloutStrategy.TIER_BASED

    def test_definitions_are_immutable(self):
        """Test definitions cannot be changed in place."""
        definition = FlagDefinition(**create_definition("f1"))

        with pytest.raises(pydantic.ValidationError):
            definition.enabled = False

    def test_naive_timestamps_are_utc(self):
        """Test naive timestamps are read as UTC."""
        definition = FlagDefinition(**create_definition("f1", created_at=datetime(2024, 1, 1)))

        assert definition.created_at.tzinfo == timezone.utc

    def test_record_round_trip(self):
        """Test a definition survives its storage record."""
        definition = FlagDefinition(**create_definition(
            "vip_support",
            "user_list",
            user_whitelist=["u2", "u1"],
            user_blacklist=["b2", "b1"],
            dependencies=["beta_ui"],
            conditions={"environments": ["production"], "custom_rules": {"region": "eu"}}
        ))

        record = definition.to_record()

        assert record["strategy"] == "user_list"
        assert record["user_whitelist"] == ["u1", "u2"]
        assert record["user_blacklist"] == ["b1", "b2"]
        assert FlagDefinition.from_record(record) == definition


class TestEvaluationResult:
    """Test cases for evaluation results."""

    def test_fail_closed_default(self):
        """Test the fail-closed default."""
        result = EvaluationResult.fail_closed("beta_ui")

        assert result.enabled is False
        assert result.reason == "evaluation_error"
        assert result.source == EvaluationSource.DEFAULT
        assert result.cacheable is False

    def test_cacheable(self):
        """Test which reasons may be cached."""
        assert EvaluationResult("f1", True, "all_users_enabled").cacheable
        assert EvaluationResult("f1", False, "dependencies_not_met:f2").cacheable
        assert not EvaluationResult("f1", False, "dependency_cycle").cacheable
        assert not EvaluationResult("f1", False, "dependency_depth_exceeded").cacheable

    def test_from_dict(self):
        """Test results read back from a cache payload."""
        result = EvaluationResult("f2", True, "ab_test_enabled", variant="B", metadata={"created_by": "tests"})

        restored = EvaluationResult.from_dict(result.to_dict())

        assert restored == result
        assert result.to_dict()["source"] == "store"

    def test_bulk_enabled_flags(self):
        """Test enabled flags keep evaluation order."""
        bulk = BulkEvaluationResult(user_id="u1", evaluations={
            "f3": EvaluationResult("f3", True, "all_users_enabled"),
            "f1": EvaluationResult("f1", False, "flag_disabled"),
            "f2": EvaluationResult("f2", True, "ab_test_enabled"),
        })

        assert bulk.enabled_flags == ["f3", "f2"]


class TestUserTier:
    """Test cases for tier ordering."""

    def test_ranks_ascend(self):
        """Test FREE < EMAIL_CAPTURED < PREMIUM < ENTERPRISE."""
        ranks = [tier.rank for tier in (UserTier.FREE, UserTier.EMAIL_CAPTURED, UserTier.PREMIUM, UserTier.ENTERPRISE)]

        assert ranks == sorted(ranks)
        assert len(set(ranks)) == 4


class TestFlagRegistry:
    """Test cases for the known flag registry."""

    def test_default_registry(self):
        """Test the default registry holds every FeatureFlag member in order."""
        registry = FlagRegistry.default()

        assert list(registry) == [flag.value for flag in FeatureFlag]
        assert registry.version == REGISTRY_VERSION
        assert FeatureFlag.CUSTOM_BRANDING in registry
        assert "custom_branding" in registry
        assert "beta_ui" not in registry
        assert 42 not in registry

    def test_extend(self):
        """Test extending returns a new registry."""
        registry = FlagRegistry.default()

        extended = registry.extend("beta_ui", "custom_branding", version="2024.2")

        assert "beta_ui" in extended
        assert "beta_ui" not in registry
        assert len(extended) == len(registry) + 1
        assert extended.version == "2024.2"

    def test_require(self):
        """Test require rejects unknown ids."""
        registry = create_test_registry()

        assert registry.require(FeatureFlag.PRIORITY_PROCESSING) == "priority_processing"
        with pytest.raises(ValidationError) as exc_info:
            registry.require("unknown_flag")
        assert exc_info.value.details["flag"] == "unknown_flag"

    def test_default_definitions(self):
        """Test defaults are built for flags in the registry only."""
        definitions = default_definitions(FlagRegistry.default())
        flags = {definition.flag for definition in definitions}

        assert flags == {flag.value for flag in DEFAULT_FLAG_DEFINITIONS}
        branding = next(d for d in definitions if d.flag == "custom_branding")
        assert branding.required_tier == UserTier.ENTERPRISE

        assert default_definitions(FlagRegistry(["beta_ui"])) == []


class TestValidation:
    """Test cases for definition validation helpers."""

    def test_build_definition_collects_errors(self):
        """Test pydantic errors become a ValidationError with field details."""
        with pytest.raises(ValidationError) as exc_info:
            build_definition({"flag": "f1", "strategy": "sometimes"})

        fields = {error["field"] for error in exc_info.value.details["errors"]}
        assert "strategy" in fields
        assert "metadata" in fields

    def test_build_definition_passes_definitions_through(self):
        """Test an existing definition is returned unchanged."""
        definition = FlagDefinition(**create_definition("f1"))

        assert build_definition(definition) is definition

    def test_find_dependency_cycle(self):
        """Test cycles are reported as paths."""
        graph = {"a": ["b"], "b": ["c"], "c": ["a"], "d": ["a"]}

        assert find_dependency_cycle(graph, "d") == ["a", "b", "c", "a"]
        assert find_dependency_cycle({"a": ["b"], "b": []}, "a") is None

    def test_validate_dependencies_rejects_cycle(self):
        """Test a definition closing a cycle is rejected."""
        registry = create_test_registry()
        existing = {
            "f1": FlagDefinition(**create_definition("f1", dependencies=["f2"])),
            "f2": FlagDefinition(**create_definition("f2")),
        }
        closing = FlagDefinition(**create_definition("f2", dependencies=["f1"]))

        with pytest.raises(DependencyCycleError) as exc_info:
            validate_dependencies(closing, existing, registry)

        assert exc_info.value.code == "DEPENDENCY_CYCLE"
        assert exc_info.value.cycle == ["f2", "f1", "f2"]
        assert isinstance(exc_info.value, ValidationError)

    def test_validate_dependencies_rejects_unknown(self):
        """Test dependencies on unknown flags are rejected."""
        definition = FlagDefinition(**create_definition("f1", dependencies=["nonexistent"]))

        with pytest.raises(ValidationError) as exc_info:
            validate_dependencies(definition, {}, create_test_registry())

        assert exc_info.value.details["unknown_dependencies"] == ["nonexistent"]

    def test_dependents_of(self):
        """Test transitive dependents, nearest first."""
        definitions = [
            FlagDefinition(**create_definition("f1")),
            FlagDefinition(**create_definition("f2", dependencies=["f1"])),
            FlagDefinition(**create_definition("f3", dependencies=["f2"])),
            FlagDefinition(**create_definition("beta_ui")),
        ]

        assert dependents_of("f1", definitions) == ["f2", "f3"]
        assert dependents_of("f3", definitions) == []


def test_flag_key():
    """Test flag ids from enum members and strings."""
    assert flag_key(FeatureFlag.WHITE_LABEL_PLATFORM) == "white_label_platform"
    assert flag_key("beta_ui") == "beta_ui"
