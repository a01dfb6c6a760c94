"""Authentication middleware for the HTTP API.

Implements Starlette middleware to:
- Extract Bearer token from Authorization header
- Verify it via the AccessGate
- Attach identity claims to request.state.user
- Return 401 Unauthorized on any verification failure
"""

import logging
import re

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from appdoki.security.auth import AuthenticationError, extract_bearer_token
from appdoki.security.gate import AccessGate
from appdoki.security.oidc import hash_token

logger = logging.getLogger(__name__)

DEFAULT_EXEMPT_PATHS = [
    r"/health",
    r"/health/ready",
    r"/metrics",
    r"/auth/login",
    r"/auth/[^/]+/callback",
]


class AuthMiddleware(BaseHTTPMiddleware):
    """Starlette middleware for bearer credential authentication.

    Exempt paths are regular expressions matched against the full request path.

    Example:
        app = FastAPI()
        app.add_middleware(AuthMiddleware, gate=AccessGate(provider))
    """

    def __init__(self, app, gate: AccessGate, exempt_paths: list[str] | None = None):
        """Initialize auth middleware.

        Args:
            app: ASGI application
            gate: Access gate used to verify credentials
            exempt_paths: Path patterns exempt from authentication
        """
        super().__init__(app)
        self.gate = gate
        patterns = DEFAULT_EXEMPT_PATHS if exempt_paths is None else exempt_paths
        self.exempt_paths = [re.compile(pattern) for pattern in patterns]

    def is_exempt(self, path: str) -> bool:
        return any(pattern.fullmatch(path) for pattern in self.exempt_paths)

    async def dispatch(self, request: Request, call_next) -> Response:
        """Process request with authentication.

        Args:
            request: HTTP request
            call_next: Next middleware/handler

        Returns:
            HTTP response
        """
        if self.is_exempt(request.url.path):
            return await call_next(request)

        token = None
        try:
            token = extract_bearer_token(request.headers.get("Authorization"))
            user = await self.gate.verify(token)
        except AuthenticationError as e:
            extra = {
                "path": request.url.path,
                "method": request.method,
                "outcome": e.kind,
                "error": str(e),
            }
            if token:
                extra["token_hash"] = hash_token(token)[:16]
            logger.warning("Authentication failed", extra=extra)
            # Return 401 Unauthorized without exposing token details
            return JSONResponse(
                status_code=401,
                content={
                    "error": "unauthorized",
                    "message": "Invalid or missing authentication token",
                },
                headers={"WWW-Authenticate": "Bearer"},
            )

        request.state.user = user

        logger.debug(
            "Request authenticated",
            extra={
                "path": request.url.path,
                "method": request.method,
                "user_sub": user.sub,
            },
        )

        return await call_next(request)
