"""
Shared error handling for the feature flag service.
"""

from typing import Dict, Any, List, Optional

from opentelemetry import trace
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class FeatureFlagException(Exception):
    """Base exception for feature flag operations."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(FeatureFlagException):
    """A flag definition violates its invariants."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class DependencyCycleError(ValidationError):
    """Flag dependencies would form a cycle."""

    def __init__(self, cycle: List[str], details: Optional[Dict[str, Any]] = None):
        self.cycle = list(cycle)
        super().__init__(
            f"Dependency cycle detected: {' -> '.join(self.cycle)}",
            {"cycle": self.cycle, **(details or {})}
        )
        self.code = "DEPENDENCY_CYCLE"


class FlagNotFoundError(FeatureFlagException):
    """Direct lookup of a flag that has no definition."""

    def __init__(self, flag: str, details: Optional[Dict[str, Any]] = None):
        self.flag = flag
        super().__init__("FLAG_NOT_FOUND", f"Feature flag '{flag}' not found", {"flag": flag, **(details or {})})


class FlagAlreadyExistsError(FeatureFlagException):
    """Create of a flag that already has a definition."""

    def __init__(self, flag: str, details: Optional[Dict[str, Any]] = None):
        self.flag = flag
        super().__init__("FLAG_ALREADY_EXISTS", f"Feature flag '{flag}' already exists", {"flag": flag, **(details or {})})


class BackendUnavailableError(FeatureFlagException):
    """Durable store or cache backend could not be reached."""

    def __init__(self, backend: str, message: str = "Backend unavailable", details: Optional[Dict[str, Any]] = None):
        self.backend = backend
        super().__init__("BACKEND_UNAVAILABLE", f"{backend}: {message}", details)


class FeatureAccessDeniedError(FeatureFlagException):
    """A gated operation was attempted without access to its feature."""

    def __init__(self, flag: str, reason: str, user_tier: str, message: Optional[str] = None):
        self.flag = flag
        self.reason = reason
        super().__init__(
            "FEATURE_ACCESS_DENIED",
            message or f"Access to feature '{flag}' denied",
            {"required_feature": flag, "reason": reason, "user_tier": user_tier}
        )


class MultipleFeaturesRequiredError(FeatureFlagException):
    """A gated operation needs all (or any) of several features."""

    def __init__(self, missing: List[str], require_all: bool, user_tier: str):
        self.missing = list(missing)
        super().__init__(
            "MULTIPLE_FEATURES_REQUIRED",
            f"Access requires {'all' if require_all else 'any'} of the specified features",
            {"missing_features": self.missing, "user_tier": user_tier}
        )
