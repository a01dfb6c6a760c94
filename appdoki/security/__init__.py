"""Security module for appdoki.

Provides authentication primitives:
- auth: Error taxonomy, identity claims and bearer header parsing
- oidc: OpenID Connect identity provider client
- gate: Bearer credential verification for protected endpoints
"""

from appdoki.security.auth import (
    AuthenticationError,
    ExchangeFailedError,
    IdentityClaims,
    InvalidTokenError,
    MalformedClaimsError,
    MissingIdentityTokenError,
    ProviderUnavailableError,
    StateMismatchError,
    extract_bearer_token,
    parse_identity_claims,
)
from appdoki.security.gate import AccessGate
from appdoki.security.oidc import (
    IdentityProviderClient,
    OIDCProviderClient,
    ProviderMetadata,
    generate_state_token,
)

__all__ = [
    # Errors
    "AuthenticationError",
    "StateMismatchError",
    "ExchangeFailedError",
    "MissingIdentityTokenError",
    "InvalidTokenError",
    "MalformedClaimsError",
    "ProviderUnavailableError",
    # Claims
    "IdentityClaims",
    "parse_identity_claims",
    "extract_bearer_token",
    # Provider
    "IdentityProviderClient",
    "OIDCProviderClient",
    "ProviderMetadata",
    "generate_state_token",
    # Gate
    "AccessGate",
]
