"""Authentication errors and identity claim types.

Every failure in the login flow and in bearer credential verification is an
``AuthenticationError`` subclass, so HTTP layers can fail closed on the base
class while logs and metrics still see the specific kind.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Base exception for authentication failures."""

    kind: str = "unauthorized"
    status_code: int = 401
    public_message: str = "Authentication failed"


class StateMismatchError(AuthenticationError):
    """Raised when the callback state does not match the issued state cookie."""

    kind = "state_mismatch"
    public_message = "Login state could not be validated"


class ExchangeFailedError(AuthenticationError):
    """Raised when the authorization code cannot be exchanged for tokens."""

    kind = "exchange_failed"
    public_message = "Authorization code exchange failed"


class MissingIdentityTokenError(AuthenticationError):
    """Raised when the token response carries no identity token."""

    kind = "missing_identity_token"
    status_code = 500
    public_message = "Identity provider response was incomplete"


class InvalidTokenError(AuthenticationError):
    """Raised when a JWT fails signature, issuer, audience or expiry checks."""

    kind = "invalid_token"
    public_message = "Invalid token"


class MalformedClaimsError(AuthenticationError):
    """Raised when verified claims lack a required field or have the wrong type."""

    kind = "malformed_claims"
    status_code = 500
    public_message = "Identity provider returned unusable claims"


class ProviderUnavailableError(AuthenticationError):
    """Raised when provider metadata or signing keys cannot be retrieved."""

    kind = "provider_unavailable"
    status_code = 503
    public_message = "Identity provider unavailable"


@dataclass
class IdentityClaims:
    """Verified identity claims from an OIDC identity token.

    Attributes:
        sub: OIDC subject (provider-scoped user ID)
        email: User's email address, if the token carries one
        name: Optional display name
        picture: Optional avatar URL
        expires_at: Token expiry (Unix timestamp)
        raw: Full verified claim set
    """

    sub: str
    email: str | None = None
    name: str | None = None
    picture: str | None = None
    expires_at: float | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


def _optional_str(claims: dict[str, Any], name: str) -> str | None:
    value = claims.get(name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedClaimsError(f"Claim '{name}' must be a string")
    return value


def parse_identity_claims(claims: dict[str, Any]) -> IdentityClaims:
    """Extract identity fields from a verified claim set.

    Args:
        claims: Claims returned by token verification

    Returns:
        IdentityClaims with typed fields

    Raises:
        MalformedClaimsError: If 'sub' is missing or a known claim has the wrong type
    """
    sub = claims.get("sub")
    if not sub or not isinstance(sub, str):
        raise MalformedClaimsError("Token missing 'sub' claim")

    exp = claims.get("exp")
    if exp is not None and not isinstance(exp, (int, float)):
        raise MalformedClaimsError("Claim 'exp' must be numeric")

    return IdentityClaims(
        sub=sub,
        email=_optional_str(claims, "email"),
        name=_optional_str(claims, "name"),
        picture=_optional_str(claims, "picture"),
        expires_at=float(exp) if exp is not None else None,
        raw=dict(claims),
    )


def extract_bearer_token(authorization_header: str | None) -> str:
    """Extract bearer token from Authorization header.

    Args:
        authorization_header: HTTP Authorization header value

    Returns:
        Bearer token string

    Raises:
        AuthenticationError: If header is missing or malformed
    """
    if not authorization_header:
        raise AuthenticationError("Missing Authorization header")

    parts = authorization_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Invalid Authorization header format. Expected: Bearer <token>")

    return parts[1]
