"""
Known flag registry for the Feature Flag Service.
"""

from typing import Dict, Any, Iterable, Iterator, List, Optional, Tuple

from shared.errors import ValidationError
from .models import (
    FeatureFlag, FlagKey, FlagDefinition, FlagMetadata, RolloutStrategy, UserTier, flag_key
)


REGISTRY_VERSION = "2024.1"


class FlagRegistry:
    """Closed, versioned set of flag ids the service will evaluate.

    The registry is fixed at construction. Deployments that gate extra
    capabilities build a registry with ``extend`` rather than mutating the
    one in use.
    """

    def __init__(self, flags: Iterable[FlagKey], version: str = REGISTRY_VERSION):
        ordered: Dict[str, None] = {}
        for flag in flags:
            ordered[flag_key(flag)] = None
        self._flags: Tuple[str, ...] = tuple(ordered)
        self._members = frozenset(self._flags)
        self.version = version

    @classmethod
    def default(cls, extra: Iterable[FlagKey] = (), version: str = REGISTRY_VERSION) -> "FlagRegistry":
        """Registry of every FeatureFlag member plus ``extra`` ids."""
        return cls(list(FeatureFlag) + list(extra), version=version)

    def extend(self, *flags: FlagKey, version: Optional[str] = None) -> "FlagRegistry":
        return FlagRegistry(self._flags + tuple(flags), version=version or self.version)

    def __contains__(self, flag: object) -> bool:
        if isinstance(flag, (str, FeatureFlag)):
            return flag_key(flag) in self._members
        return False

    def __iter__(self) -> Iterator[str]:
        return iter(self._flags)

    def __len__(self) -> int:
        return len(self._flags)

    def require(self, flag: FlagKey) -> str:
        """Return the normalized id, raising ValidationError if unknown."""
        key = flag_key(flag)
        if key not in self._members:
            raise ValidationError(
                f"Unknown feature flag '{key}'",
                {"flag": key, "registry_version": self.version}
            )
        return key


# Definitions seeded into an empty store on first load
DEFAULT_FLAG_DEFINITIONS: Dict[FeatureFlag, Dict[str, Any]] = {
    FeatureFlag.ADVANCED_PLANNING_SESSIONS: {
        "enabled": True,
        "strategy": RolloutStrategy.TIER_BASED,
        "required_tier": UserTier.PREMIUM,
        "metadata": {
            "description": "Extended planning sessions with deeper analysis for premium users",
            "created_by": "system",
            "business_justification": "Premium tier differentiation and value proposition",
        },
    },
    FeatureFlag.PRIORITY_PROCESSING: {
        "enabled": True,
        "strategy": RolloutStrategy.TIER_BASED,
        "required_tier": UserTier.PREMIUM,
        "metadata": {
            "description": "Faster processing times with dedicated infrastructure",
            "created_by": "system",
            "business_justification": "Premium user experience improvement",
        },
    },
    FeatureFlag.UNLIMITED_SESSION_HISTORY: {
        "enabled": True,
        "strategy": RolloutStrategy.TIER_BASED,
        "required_tier": UserTier.PREMIUM,
        "metadata": {
            "description": "Unlimited session storage and advanced search",
            "created_by": "system",
            "business_justification": "Premium tier value and user retention",
        },
    },
    FeatureFlag.CUSTOM_BRANDING: {
        "enabled": True,
        "strategy": RolloutStrategy.TIER_BASED,
        "required_tier": UserTier.ENTERPRISE,
        "metadata": {
            "description": "Custom branding and white-label capabilities",
            "created_by": "system",
            "business_justification": "Enterprise tier differentiation",
        },
    },
}


def default_definitions(registry: FlagRegistry) -> List[FlagDefinition]:
    """Build the default definitions for flags present in ``registry``."""
    definitions = []
    for flag, config in DEFAULT_FLAG_DEFINITIONS.items():
        if flag in registry:
            definitions.append(FlagDefinition(
                flag=flag.value,
                enabled=config["enabled"],
                strategy=config["strategy"],
                required_tier=config.get("required_tier"),
                metadata=FlagMetadata(**config["metadata"]),
            ))
    return definitions
