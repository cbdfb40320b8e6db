"""
Integration tests for the feature flag lifecycle.
"""

import pytest

from service_feature_flags.app.events import FlagEventType
from service_feature_flags.app.flags.models import EvaluationSource, UserTier
from shared.test_helpers import build_test_service, create_definition, create_user, test_data_factory


class TestFeatureFlagFlow:
    """Integration tests for create, evaluate, update and delete."""

    @pytest.fixture
    def users(self):
        """One user per tier."""
        return {user.tier: user for user in test_data_factory.create_test_users()}

    @pytest.mark.asyncio
    async def test_flag_lifecycle(self, users):
        """Test a flag from creation to deletion."""
        service = build_test_service(seed_defaults=True)
        events = []
        service.events.subscribe(events.append)
        await service.start()

        free_user = users[UserTier.FREE]
        premium_user = users[UserTier.PREMIUM]

        # Seeded defaults are live immediately
        assert await service.get_enabled_features(free_user) == []
        assert await service.has_feature_access("priority_processing", premium_user) is True

        # Introduce a flag for premium users only
        await service.create_flag(create_definition("beta_ui", "tier_based", required_tier="premium"))
        assert await service.has_feature_access("beta_ui", free_user) is False
        assert await service.has_feature_access("beta_ui", premium_user) is True

        # Cached decisions do not outlive the widening of the audience
        await service.update_flag("beta_ui", {"strategy": "all_users", "required_tier": None})
        widened = await service.evaluate_flag("beta_ui", free_user)
        assert (widened.enabled, widened.reason, widened.source) == (True, "all_users_enabled", EvaluationSource.STORE)

        # A dependent flag follows its dependency
        await service.create_flag(create_definition("dashboard_v2", dependencies=["beta_ui"]))
        assert await service.has_feature_access("dashboard_v2", free_user) is True

        await service.update_flag("beta_ui", {"enabled": False})
        gated = await service.evaluate_flag("dashboard_v2", free_user)
        assert (gated.enabled, gated.reason) == (False, "dependencies_not_met:beta_ui")

        # Removal makes the flag unknown to evaluation
        await service.delete_flag("dashboard_v2")
        removed = await service.evaluate_flag("dashboard_v2", free_user)
        assert (removed.enabled, removed.reason) == (False, "flag_not_found")

        health = await service.health_check()
        assert health["status"] == "healthy"
        assert health["flags_loaded"] == 5

        await service.stop()

        assert [event.type for event in events] == [
            FlagEventType.CREATED,
            FlagEventType.UPDATED,
            FlagEventType.CREATED,
            FlagEventType.UPDATED,
            FlagEventType.DELETED,
        ]

        # One per registered flag for the enabled-features sweep, plus seven single evaluations
        assert service.get_stats().total_evaluations == len(service.registry) + 7

    @pytest.mark.asyncio
    async def test_definitions_survive_restart(self):
        """Test a second service over the same repository sees earlier mutations."""
        first = build_test_service()
        await first.start()
        await first.create_flag(create_definition("vip_support", "user_list", user_whitelist=["vip-1"]))
        await first.update_flag("vip_support", {"user_whitelist": ["vip-1", "vip-2"]})
        await first.stop()

        second = build_test_service(repository=first.store.repository)
        await second.start()

        result = await second.evaluate_flag("vip_support", create_user("vip-2"))
        assert (result.enabled, result.reason) == (True, "user_whitelisted")
        assert second.get_flag("vip_support").user_whitelist == frozenset({"vip-1", "vip-2"})

    @pytest.mark.asyncio
    async def test_rollout_is_sticky_across_services(self):
        """Test separate instances agree on percentage rollout membership."""
        definitions = [create_definition("beta_ui", "percentage_rollout", rollout_percentage=30)]
        first = build_test_service(definitions)
        second = build_test_service(definitions)
        await first.start()
        await second.start()

        ids = [f"user-{i}" for i in range(200)]
        first_enabled = [await first.has_feature_access("beta_ui", create_user(user_id)) for user_id in ids]
        second_enabled = [await second.has_feature_access("beta_ui", create_user(user_id)) for user_id in ids]

        assert first_enabled == second_enabled
        assert 0 < sum(first_enabled) < len(ids)
