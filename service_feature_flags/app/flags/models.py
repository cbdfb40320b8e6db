"""
Flag data models for the Feature Flag Service.
"""

from typing import Dict, Any, Optional, List, Tuple, FrozenSet, Union
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class FeatureFlag(str, Enum):
    """Platform capabilities gated by flags."""
    # Planning features
    ADVANCED_PLANNING_SESSIONS = "advanced_planning_sessions"
    EXTENDED_SESSION_DURATION = "extended_session_duration"
    DETAILED_QUESTIONING = "detailed_questioning"

    # Processing features
    PRIORITY_PROCESSING = "priority_processing"
    DEDICATED_INFRASTRUCTURE = "dedicated_infrastructure"
    FASTER_LLM_RESPONSES = "faster_llm_responses"

    # Template features
    TECHNICAL_ARCHITECTURE_TEMPLATES = "technical_architecture_templates"
    IMPLEMENTATION_ROADMAP_TEMPLATES = "implementation_roadmap_templates"
    PREMIUM_TEMPLATE_LIBRARY = "premium_template_library"

    # History and search
    UNLIMITED_SESSION_HISTORY = "unlimited_session_history"
    ADVANCED_SEARCH_CAPABILITIES = "advanced_search_capabilities"
    SESSION_CATEGORIZATION = "session_categorization"

    # Branding features
    CUSTOM_BRANDING = "custom_branding"
    CUSTOM_LOGO_COLOR_SCHEME = "custom_logo_color_scheme"
    WHITE_LABEL_PLATFORM = "white_label_platform"

    # Premium experience
    PREMIUM_USER_SUPPORT = "premium_user_support"
    PRIORITY_ASSISTANCE = "priority_assistance"
    PREMIUM_UI_COMPONENTS = "premium_ui_components"


FlagKey = Union[str, FeatureFlag]


def flag_key(flag: FlagKey) -> str:
    """Normalize a flag enum member or id string to its id string."""
    if isinstance(flag, Enum):
        return str(flag.value)
    return str(flag)


class UserTier(str, Enum):
    """Subscription tiers, lowest first."""
    FREE = "free"
    EMAIL_CAPTURED = "email_captured"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return _TIER_RANKS[self]


_TIER_RANKS = {
    UserTier.FREE: 0,
    UserTier.EMAIL_CAPTURED: 1,
    UserTier.PREMIUM: 2,
    UserTier.ENTERPRISE: 3,
}


class RolloutStrategy(str, Enum):
    """Rollout strategy types."""
    ALL_USERS = "all_users"
    PERCENTAGE_ROLLOUT = "percentage_rollout"
    USER_LIST = "user_list"
    TIER_BASED = "tier_based"
    AB_TEST = "ab_test"


class EvaluationSource(str, Enum):
    """Where an evaluation result came from."""
    CACHE = "cache"
    STORE = "store"
    DEFAULT = "default"


# Evaluation reasons
FLAG_NOT_FOUND = "flag_not_found"
FLAG_DISABLED = "flag_disabled"
ENVIRONMENT_NOT_TARGETED = "environment_not_targeted"
OUTSIDE_ACTIVE_WINDOW = "outside_active_window"
DEPENDENCIES_NOT_MET = "dependencies_not_met"
DEPENDENCY_CYCLE = "dependency_cycle"
DEPENDENCY_DEPTH_EXCEEDED = "dependency_depth_exceeded"
USER_BLACKLISTED = "user_blacklisted"
UNKNOWN_STRATEGY = "unknown_strategy"
EVALUATION_ERROR = "evaluation_error"

UNCACHEABLE_REASONS = frozenset({EVALUATION_ERROR, DEPENDENCY_CYCLE, DEPENDENCY_DEPTH_EXCEEDED})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class FlagMetadata(BaseModel):
    """Informational metadata attached to a flag."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    description: str = Field(..., description="What the flag gates")
    created_by: str = Field(..., description="Author of the flag")
    business_justification: str = Field(..., description="Why the flag exists")
    expected_impact: Optional[str] = Field(None, description="Expected impact")
    rollout_plan: Optional[str] = Field(None, description="Rollout plan")


class DateRange(BaseModel):
    """Window during which a flag is active."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    start_date: datetime
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        return self


class FlagConditions(BaseModel):
    """Optional targeting conditions."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    environments: Optional[Tuple[str, ...]] = Field(None, description="Environments the flag applies to")
    date_range: Optional[DateRange] = Field(None, description="Active date range")
    custom_rules: Dict[str, Any] = Field(default_factory=dict, description="Informational custom rules")


class FlagDefinition(BaseModel):
    """Feature flag definition.

    Instances are immutable. Strategy-specific fields are checked at
    construction: ``required_tier`` only with ``tier_based``,
    ``rollout_percentage`` only with ``percentage_rollout`` and a
    ``user_whitelist`` is required for ``user_list``.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    flag: str = Field(..., min_length=1, description="Flag id")
    enabled: bool = Field(True, description="Global kill switch")
    strategy: RolloutStrategy = Field(..., description="Rollout strategy")
    required_tier: Optional[UserTier] = Field(None, description="Minimum tier for tier_based")
    rollout_percentage: Optional[float] = Field(None, ge=0, le=100, description="Rollout share for percentage_rollout")
    user_whitelist: Optional[FrozenSet[str]] = Field(None, description="Users enabled by user_list")
    user_blacklist: FrozenSet[str] = Field(default_factory=frozenset, description="Users always denied")
    dependencies: Tuple[str, ...] = Field(default_factory=tuple, description="Flags that must be enabled first")
    metadata: FlagMetadata
    conditions: Optional[FlagConditions] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_evaluated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", "last_evaluated_at")
    @classmethod
    def ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @field_validator("flag", mode="before")
    @classmethod
    def normalize_flag(cls, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        return value

    @field_validator("dependencies", mode="before")
    @classmethod
    def normalize_dependencies(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(flag_key(dep) for dep in value)
        return value

    @model_validator(mode="after")
    def check_strategy_fields(self) -> "FlagDefinition":
        if self.strategy == RolloutStrategy.TIER_BASED:
            if self.required_tier is None:
                raise ValueError("required_tier is required for tier_based strategy")
        elif self.required_tier is not None:
            raise ValueError("required_tier is only allowed for tier_based strategy")

        if self.strategy == RolloutStrategy.PERCENTAGE_ROLLOUT:
            if self.rollout_percentage is None:
                raise ValueError("rollout_percentage is required for percentage_rollout strategy")
        elif self.rollout_percentage is not None:
            raise ValueError("rollout_percentage is only allowed for percentage_rollout strategy")

        if self.strategy == RolloutStrategy.USER_LIST and self.user_whitelist is None:
            raise ValueError("user_whitelist is required for user_list strategy")

        if self.flag in self.dependencies:
            raise ValueError("a flag cannot depend on itself")
        if len(set(self.dependencies)) != len(self.dependencies):
            raise ValueError("dependencies must not contain duplicates")

        return self

    def to_record(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible record for durable storage."""
        record = self.model_dump(mode="json")
        # Sets serialize in arbitrary order; keep records stable
        record["user_blacklist"] = sorted(self.user_blacklist)
        if self.user_whitelist is not None:
            record["user_whitelist"] = sorted(self.user_whitelist)
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "FlagDefinition":
        """Deserialize a durable storage record."""
        return cls.model_validate(record)


class UserContext(BaseModel):
    """Already-resolved identity and subscription of the caller."""
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1, description="User ID")
    tier: UserTier = Field(UserTier.FREE, description="Subscription tier")
    subscription_id: Optional[str] = None
    subscription_status: Optional[str] = None
    organization_id: Optional[str] = None
    email: Optional[str] = None
    registration_date: Optional[datetime] = None
    last_active_date: Optional[datetime] = None
    custom_attributes: Dict[str, Any] = Field(default_factory=dict)


@dataclass
class EvaluationResult:
    """Result of a flag evaluation."""
    flag: str
    enabled: bool
    reason: str
    source: EvaluationSource = EvaluationSource.STORE
    evaluation_time_ms: float = 0.0
    variant: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def cacheable(self) -> bool:
        return self.reason not in UNCACHEABLE_REASONS

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["source"] = self.source.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvaluationResult":
        return cls(
            flag=data["flag"],
            enabled=bool(data["enabled"]),
            reason=data["reason"],
            source=EvaluationSource(data.get("source", EvaluationSource.STORE.value)),
            evaluation_time_ms=float(data.get("evaluation_time_ms", 0.0)),
            variant=data.get("variant"),
            metadata=data.get("metadata"),
        )

    @classmethod
    def fail_closed(cls, flag: str, evaluation_time_ms: float = 0.0) -> "EvaluationResult":
        """The safe default returned whenever evaluation cannot complete."""
        return cls(
            flag=flag,
            enabled=False,
            reason=EVALUATION_ERROR,
            source=EvaluationSource.DEFAULT,
            evaluation_time_ms=evaluation_time_ms,
        )


@dataclass
class BulkEvaluationResult:
    """Result of evaluating several flags for one user."""
    user_id: str
    evaluations: Dict[str, EvaluationResult] = field(default_factory=dict)
    total_evaluation_time_ms: float = 0.0
    cache_hit_rate: float = 0.0

    @property
    def enabled_flags(self) -> List[str]:
        return [flag for flag, result in self.evaluations.items() if result.enabled]
