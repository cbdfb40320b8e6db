"""
FastAPI feature gates backed by the Feature Flag Service.
"""

from typing import Callable, Iterable, Optional

from fastapi import Depends, HTTPException, Request

from shared.errors import FeatureAccessDeniedError, MultipleFeaturesRequiredError
from shared.logging import get_logger
from .flags.models import FlagKey, UserContext, EvaluationResult, BulkEvaluationResult, flag_key
from .service import FeatureFlagService


logger = get_logger("feature_flags.gate")

ServiceProvider = Callable[..., FeatureFlagService]
UserProvider = Callable[..., UserContext]


def service_from_app(request: Request) -> FeatureFlagService:
    """Service provider for apps built by ``create_app``."""
    return request.app.state.feature_flags


def require_feature(
    flag: FlagKey,
    get_service: ServiceProvider,
    get_user: UserProvider,
    allow_fallback: bool = False,
    error_message: Optional[str] = None
):
    """Dependency that rejects the request with 403 unless ``flag`` is enabled.

    With ``allow_fallback`` the request proceeds either way and the handler
    receives the evaluation result to serve degraded functionality.
    """
    key = flag_key(flag)

    async def feature_gate(
        service: FeatureFlagService = Depends(get_service),
        user: UserContext = Depends(get_user)
    ) -> EvaluationResult:
        result = await service.evaluate_flag(key, user)
        if result.enabled or allow_fallback:
            return result

        logger.info("Feature access denied", flag=key, user_id=user.user_id, reason=result.reason)
        error = FeatureAccessDeniedError(key, result.reason, user.tier.value, error_message)
        raise HTTPException(status_code=403, detail=error.to_response().model_dump())

    return feature_gate


def require_features(
    flags: Iterable[FlagKey],
    get_service: ServiceProvider,
    get_user: UserProvider,
    require_all: bool = True
):
    """Dependency that requires all (or, with ``require_all=False``, any) of ``flags``."""
    keys = [flag_key(flag) for flag in flags]

    async def features_gate(
        service: FeatureFlagService = Depends(get_service),
        user: UserContext = Depends(get_user)
    ) -> BulkEvaluationResult:
        bulk = await service.evaluate_flags(keys, user)
        enabled = set(bulk.enabled_flags)
        granted = all(key in enabled for key in keys) if require_all else any(key in enabled for key in keys)
        if granted:
            return bulk

        missing = [key for key in keys if key not in enabled]
        logger.info("Feature access denied", flags=keys, missing=missing, user_id=user.user_id)
        error = MultipleFeaturesRequiredError(missing, require_all, user.tier.value)
        raise HTTPException(status_code=403, detail=error.to_response().model_dump())

    return features_gate
