"""Readiness checks for load balancer integration.

Two components are checked:
- database: the user directory store answers a trivial query (critical)
- identity_provider: the discovery document answers (uncached) (non-critical; the
  access gate fails closed on its own when the provider is unreachable)

Health states:
- ready: all components operational
- degraded: at least one component failing
- shutdown: the service is stopping and should receive no new traffic
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from appdoki.infra.db.session import DatabaseSessionManager
from appdoki.security.auth import ProviderUnavailableError
from appdoki.security.oidc import IdentityProviderClient

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    READY = "ready"
    DEGRADED = "degraded"
    SHUTDOWN = "shutdown"


@dataclass
class ComponentHealth:
    """Health of a single dependency."""

    name: str
    healthy: bool
    message: str = ""
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "message": self.message,
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass
class HealthCheckResult:
    status: HealthStatus
    components: list[ComponentHealth]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_ready(self) -> bool:
        return self.status == HealthStatus.READY

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "components": {c.name: c.to_dict() for c in self.components},
        }


class HealthChecker:
    """Checks the service's dependencies and tracks shutdown state.

    Example:
        checker = HealthChecker(session_manager, provider)
        result = await checker.check_health()
        status_code = 200 if result.is_ready else 503
    """

    def __init__(
        self,
        session_manager: DatabaseSessionManager,
        provider: IdentityProviderClient,
    ) -> None:
        self.session_manager = session_manager
        self.provider = provider
        self._is_shutting_down = False

    def set_shutdown(self) -> None:
        """Mark the service as shutting down."""
        self._is_shutting_down = True
        logger.info("Health checker marked as shutting down")

    async def check_health(self) -> HealthCheckResult:
        if self._is_shutting_down:
            return HealthCheckResult(
                status=HealthStatus.SHUTDOWN,
                components=[
                    ComponentHealth(
                        name="service", healthy=False, message="Service is shutting down"
                    )
                ],
            )

        components = [await self._check_database(), await self._check_identity_provider()]
        status = (
            HealthStatus.READY
            if all(c.healthy for c in components)
            else HealthStatus.DEGRADED
        )
        return HealthCheckResult(status=status, components=components)

    async def _check_database(self) -> ComponentHealth:
        start = time.perf_counter()
        if not self.session_manager.is_initialized:
            return ComponentHealth(name="database", healthy=False, message="Not initialized")

        healthy = await self.session_manager.ping()
        return ComponentHealth(
            name="database",
            healthy=healthy,
            message="Connected" if healthy else "Connection failed",
            duration_ms=(time.perf_counter() - start) * 1000,
        )

    async def _check_identity_provider(self) -> ComponentHealth:
        start = time.perf_counter()
        try:
            await self.provider.check_reachability()
        except ProviderUnavailableError as e:
            logger.warning("Identity provider health check failed", extra={"error": str(e)})
            return ComponentHealth(
                name="identity_provider",
                healthy=False,
                message="Unreachable",
                duration_ms=(time.perf_counter() - start) * 1000,
            )

        return ComponentHealth(
            name="identity_provider",
            healthy=True,
            message="Reachable",
            duration_ms=(time.perf_counter() - start) * 1000,
        )


__all__ = [
    "HealthStatus",
    "ComponentHealth",
    "HealthCheckResult",
    "HealthChecker",
]
