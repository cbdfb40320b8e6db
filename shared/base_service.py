"""
Base HTTP service for the feature flag service.
"""

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Dict, Any, Optional
import os
import time

from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from shared.config import BaseConfig
from shared.logging import configure_logging, get_logger, set_request_id, clear_context
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.errors import FeatureFlagException


# HTTP status per error code; anything else is a client error
ERROR_STATUS_CODES = {
    "VALIDATION_ERROR": 400,
    "DEPENDENCY_CYCLE": 400,
    "FEATURE_ACCESS_DENIED": 403,
    "MULTIPLE_FEATURES_REQUIRED": 403,
    "FLAG_NOT_FOUND": 404,
    "FLAG_ALREADY_EXISTS": 409,
    "BACKEND_UNAVAILABLE": 503,
}


class BaseService:
    """Base service class with common HTTP functionality.

    Subclasses provide ``startup``/``shutdown`` and ``_check_health``; the
    health route answers 503 when the reported status is ``unhealthy``.
    """

    def __init__(self, service_name: str, config: BaseConfig, metrics: Optional[MetricsCollector] = None):
        self.service_name = service_name
        self.config = config
        self.logger = get_logger(service_name)
        self.metrics = metrics or get_metrics_collector(service_name)

        # Configure logging
        configure_logging(service_name, self.config.log_level, json_logs=self.config.env != "local")

        # Create FastAPI app
        self.app = self._create_app()

        # Set up middleware
        self._setup_middleware()

        # Set up routes
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            self._start_time = time.time()
            await self.startup()
            try:
                yield
            finally:
                await self.shutdown()

        return FastAPI(
            title=f"{self.service_name.replace('_', ' ').title()} Service",
            description=f"{self.service_name.replace('_', ' ').title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            lifespan=lifespan,
        )

    def _setup_middleware(self):
        """Set up middleware."""

        # CORS middleware
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        # Request timing middleware
        @self.app.middleware("http")
        async def add_request_timing(request: Request, call_next):
            start_time = time.time()
            request_id = set_request_id(request.headers.get("X-Request-ID"))

            try:
                response = await call_next(request)
            finally:
                clear_context()

            duration = time.time() - start_time

            self.metrics.record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=response.status_code,
                duration=duration
            )

            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
                request_id=request_id
            )

            response.headers["X-Request-ID"] = request_id
            return response

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            try:
                health = await self._check_health()
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={
                        "service": self.service_name,
                        "status": "unhealthy",
                        "error": str(e)
                    }
                )

            body = {
                "service": self.service_name,
                "uptime_seconds": self._get_uptime(),
                "version": "1.0.0",
                "commit": os.getenv("GIT_COMMIT", "unknown"),
                **health
            }
            status_code = 503 if health.get("status") == "unhealthy" else 200
            return JSONResponse(status_code=status_code, content=body)

        if self.config.enable_metrics:
            @self.app.get("/metrics")
            async def metrics_endpoint():
                """Prometheus metrics endpoint."""
                return Response(
                    content=generate_latest(self.metrics.registry),
                    media_type=CONTENT_TYPE_LATEST
                )

        # Error handlers
        @self.app.exception_handler(FeatureFlagException)
        async def feature_flag_exception_handler(request: Request, exc: FeatureFlagException):
            """Handle FeatureFlagException."""
            self.logger.error(
                "Feature flag error",
                code=exc.code,
                message=exc.message,
                details=exc.details
            )
            self.metrics.record_error(exc.code)
            return JSONResponse(
                status_code=ERROR_STATUS_CODES.get(exc.code, 400),
                content=exc.to_response().model_dump()
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content={
                    "code": "INTERNAL_ERROR",
                    "message": "Internal server error",
                    "details": {}
                }
            )

    async def startup(self):
        """Start service dependencies. Override in subclasses."""

    async def shutdown(self):
        """Stop service dependencies. Override in subclasses."""

    async def _check_health(self) -> Dict[str, Any]:
        """Report service health. Override in subclasses."""
        return {"status": "healthy"}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        if not hasattr(self, '_start_time'):
            self._start_time = time.time()
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
