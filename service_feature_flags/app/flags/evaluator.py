"""
Flag evaluation engine for the Feature Flag Service.
"""

import asyncio
import time
from datetime import datetime
from typing import Awaitable, Callable, Dict, NamedTuple, Optional, Tuple

from shared.logging import get_logger
from .models import (
    FlagDefinition, FlagConditions, UserContext, EvaluationResult, EvaluationSource,
    RolloutStrategy, utcnow,
    FLAG_NOT_FOUND, FLAG_DISABLED, ENVIRONMENT_NOT_TARGETED, OUTSIDE_ACTIVE_WINDOW,
    DEPENDENCIES_NOT_MET, DEPENDENCY_CYCLE, DEPENDENCY_DEPTH_EXCEEDED,
    USER_BLACKLISTED, UNKNOWN_STRATEGY,
)


# Resolves a dependency flag for the same user; receives the evaluation path
DependencyResolver = Callable[[str, Tuple[str, ...]], Awaitable[EvaluationResult]]

DEFAULT_MAX_DEPENDENCY_DEPTH = 10


def stable_hash(user_id: str) -> int:
    """Bucket a user id into 0..99.

    32-bit rolling ``h * 31 + byte`` over the UTF-8 bytes, read as a signed
    32-bit integer, absolute value modulo 100. The value never depends on the
    process, the flag or time, which keeps percentage rollouts sticky.
    """
    h = 0
    for byte in user_id.encode("utf-8"):
        h = (h * 31 + byte) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return abs(h) % 100


class StrategyOutcome(NamedTuple):
    enabled: bool
    reason: str
    variant: Optional[str] = None


class Evaluator:
    """Pure strategy interpreter.

    Performs no I/O; dependencies are resolved through the caller-supplied
    resolver so they can go through the same cache/store path.
    """

    def __init__(
        self,
        environment: Optional[str] = None,
        max_dependency_depth: int = DEFAULT_MAX_DEPENDENCY_DEPTH,
        clock: Callable[[], datetime] = utcnow
    ):
        self.logger = get_logger("feature_flags.evaluator")
        self.environment = environment
        self.max_dependency_depth = max_dependency_depth
        self._clock = clock
        self._strategies: Dict[RolloutStrategy, Callable[[FlagDefinition, UserContext], StrategyOutcome]] = {
            RolloutStrategy.ALL_USERS: self._all_users,
            RolloutStrategy.TIER_BASED: self._tier_based,
            RolloutStrategy.PERCENTAGE_ROLLOUT: self._percentage_rollout,
            RolloutStrategy.USER_LIST: self._user_list,
            RolloutStrategy.AB_TEST: self._ab_test,
        }

    async def evaluate(
        self,
        flag: str,
        definition: Optional[FlagDefinition],
        user: UserContext,
        resolve_dependency: DependencyResolver,
        path: Tuple[str, ...] = ()
    ) -> EvaluationResult:
        """Evaluate ``definition`` for ``user``; the first decisive rule wins."""
        start_time = time.perf_counter()

        def result(enabled: bool, reason: str, source: EvaluationSource = EvaluationSource.STORE,
                   variant: Optional[str] = None) -> EvaluationResult:
            return EvaluationResult(
                flag=flag,
                enabled=enabled,
                reason=reason,
                source=source,
                evaluation_time_ms=(time.perf_counter() - start_time) * 1000,
                variant=variant,
                metadata=definition.metadata.model_dump() if definition is not None else None,
            )

        if definition is None:
            return result(False, FLAG_NOT_FOUND, EvaluationSource.DEFAULT)

        if not definition.enabled:
            return result(False, FLAG_DISABLED)

        condition_failure = self._check_conditions(definition.conditions)
        if condition_failure:
            return result(False, condition_failure)

        if definition.dependencies:
            chain = path + (flag,)
            if any(dep in chain for dep in definition.dependencies):
                self.logger.warning("Dependency cycle during evaluation", flag=flag, path=list(chain))
                return result(False, DEPENDENCY_CYCLE)
            if len(chain) >= self.max_dependency_depth:
                self.logger.warning(
                    "Dependency depth exceeded",
                    flag=flag,
                    depth=len(chain),
                    max_depth=self.max_dependency_depth
                )
                return result(False, DEPENDENCY_DEPTH_EXCEEDED)

            dependency_results = await asyncio.gather(
                *(resolve_dependency(dep, chain) for dep in definition.dependencies)
            )

            for reason in (DEPENDENCY_CYCLE, DEPENDENCY_DEPTH_EXCEEDED):
                if any(dep.reason == reason for dep in dependency_results):
                    return result(False, reason)

            unmet = [dep.flag for dep in dependency_results if not dep.enabled]
            if unmet:
                return result(False, f"{DEPENDENCIES_NOT_MET}:{','.join(unmet)}")

        if user.user_id in definition.user_blacklist:
            return result(False, USER_BLACKLISTED)

        outcome = self.evaluate_strategy(definition, user)
        return result(outcome.enabled, outcome.reason, variant=outcome.variant)

    def evaluate_strategy(self, definition: FlagDefinition, user: UserContext) -> StrategyOutcome:
        """Dispatch on the definition's rollout strategy."""
        handler = self._strategies.get(definition.strategy)
        if handler is None:
            self.logger.warning("Unknown rollout strategy", flag=definition.flag, strategy=str(definition.strategy))
            return StrategyOutcome(False, UNKNOWN_STRATEGY)
        return handler(definition, user)

    def _check_conditions(self, conditions: Optional[FlagConditions]) -> Optional[str]:
        if conditions is None:
            return None

        if conditions.environments and self.environment not in conditions.environments:
            return ENVIRONMENT_NOT_TARGETED

        if conditions.date_range is not None:
            now = self._clock()
            if now < conditions.date_range.start_date:
                return OUTSIDE_ACTIVE_WINDOW
            if conditions.date_range.end_date is not None and now > conditions.date_range.end_date:
                return OUTSIDE_ACTIVE_WINDOW

        return None

    def _all_users(self, definition: FlagDefinition, user: UserContext) -> StrategyOutcome:
        return StrategyOutcome(True, "all_users_enabled")

    def _tier_based(self, definition: FlagDefinition, user: UserContext) -> StrategyOutcome:
        if definition.required_tier is None:
            return StrategyOutcome(False, "no_required_tier_specified")

        if user.tier.rank >= definition.required_tier.rank:
            return StrategyOutcome(True, "tier_access_granted")
        return StrategyOutcome(False, f"requires_tier_{definition.required_tier.name}")

    def _percentage_rollout(self, definition: FlagDefinition, user: UserContext) -> StrategyOutcome:
        if definition.rollout_percentage is None:
            return StrategyOutcome(False, "no_rollout_percentage_specified")

        if stable_hash(user.user_id) < definition.rollout_percentage:
            return StrategyOutcome(True, "percentage_rollout_included")
        return StrategyOutcome(False, "percentage_rollout_excluded")

    def _user_list(self, definition: FlagDefinition, user: UserContext) -> StrategyOutcome:
        if definition.user_whitelist is None:
            return StrategyOutcome(False, "no_user_whitelist_specified")

        if user.user_id in definition.user_whitelist:
            return StrategyOutcome(True, "user_whitelisted")
        return StrategyOutcome(False, "user_not_whitelisted")

    def _ab_test(self, definition: FlagDefinition, user: UserContext) -> StrategyOutcome:
        variant = "A" if stable_hash(user.user_id) < 50 else "B"
        return StrategyOutcome(True, "ab_test_enabled", variant)
