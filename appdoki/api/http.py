"""HTTP API for the appdoki service.

Builds the FastAPI application: auth routes, access gate middleware,
correlation IDs, error handlers, health and metrics endpoints.
"""

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from appdoki import __version__
from appdoki.api.auth import error_response
from appdoki.api.auth import router as auth_router
from appdoki.api.auth_middleware import DEFAULT_EXEMPT_PATHS, AuthMiddleware
from appdoki.config import Settings
from appdoki.domain.exceptions import DomainError
from appdoki.domain.services.auth_flow import AuthFlowController
from appdoki.domain.services.user import UserDirectory
from appdoki.infra.db.session import DatabaseSessionManager
from appdoki.infra.health import HealthChecker
from appdoki.infra.observability import get_metrics_text
from appdoki.infra.observability.logging import set_correlation_id
from appdoki.security.auth import AuthenticationError, ProviderUnavailableError
from appdoki.security.gate import AccessGate
from appdoki.security.oidc import IdentityProviderClient, OIDCProviderClient

logger = logging.getLogger(__name__)


def create_http_app(
    settings: Settings,
    provider: IdentityProviderClient | None = None,
    session_manager: DatabaseSessionManager | None = None,
) -> FastAPI:
    """Create FastAPI application for the HTTP API.

    Collaborators that are not passed in are built from settings and owned
    by the application: initialized on startup, closed on shutdown.

    Args:
        settings: Application settings
        provider: Identity provider client (default: OIDCProviderClient.from_settings)
        session_manager: Database session manager (default: built from settings)

    Returns:
        FastAPI application
    """
    owns_provider = provider is None
    owns_sessions = session_manager is None

    if provider is None:
        provider = OIDCProviderClient.from_settings(settings)
    if session_manager is None:
        session_manager = DatabaseSessionManager(settings)
    health_checker = HealthChecker(session_manager, provider)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if not session_manager.is_initialized:
            await session_manager.init()
        if settings.environment == "lab":
            await session_manager.create_all()

        try:
            await provider.load_metadata()
        except ProviderUnavailableError as e:
            # Retried lazily on the first login
            logger.warning("Identity provider discovery failed at startup", extra={"error": str(e)})

        logger.info(
            "HTTP API started",
            extra={"environment": settings.environment, "provider": settings.oidc_provider_name},
        )
        try:
            yield
        finally:
            health_checker.set_shutdown()
            if owns_provider:
                await provider.aclose()
            if owns_sessions:
                await session_manager.close()
            logger.info("HTTP API stopped")

    app = FastAPI(
        title="appdoki",
        description="OIDC login and identity resolution service",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.provider = provider
    app.state.session_manager = session_manager
    app.state.health_checker = health_checker
    app.state.auth_controller = AuthFlowController(provider, UserDirectory(session_manager))

    exempt_paths = list(DEFAULT_EXEMPT_PATHS)
    if settings.debug:
        exempt_paths += [r"/docs", r"/redoc", r"/openapi\.json"]
    app.add_middleware(AuthMiddleware, gate=AccessGate(provider), exempt_paths=exempt_paths)

    # Middleware for correlation ID (wraps auth so 401s carry it too)
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next: Any) -> Any:
        """Add correlation ID to request context."""
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        set_correlation_id(correlation_id)

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(
        request: Request, exc: AuthenticationError
    ) -> JSONResponse:
        logger.warning(
            "Request failed authentication",
            extra={"path": request.url.path, "outcome": exc.kind, "error": str(exc)},
        )
        return error_response(exc)

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        logger.error(
            "Request failed",
            extra={"path": request.url.path, "outcome": exc.kind, "error": exc.message},
        )
        return error_response(exc)

    app.include_router(auth_router)

    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint.

        Returns:
            Service health status
        """
        return {
            "status": "healthy",
            "environment": settings.environment,
            "version": __version__,
        }

    @app.get("/health/ready")
    async def readiness_check() -> JSONResponse:
        """Readiness probe: 200 when all dependencies are reachable, else 503."""
        result = await health_checker.check_health()
        return JSONResponse(
            status_code=200 if result.is_ready else 503,
            content=result.to_dict(),
        )

    @app.get("/metrics")
    async def metrics() -> PlainTextResponse:
        """Prometheus metrics endpoint."""
        return PlainTextResponse(get_metrics_text())

    return app


__all__ = [
    "create_http_app",
]
