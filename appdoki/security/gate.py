"""Bearer credential verification for protected endpoints."""

from appdoki.infra.observability import record_auth_check
from appdoki.security.auth import AuthenticationError, IdentityClaims, parse_identity_claims
from appdoki.security.oidc import IdentityProviderClient


class AccessGate:
    """Verifies session credentials presented as bearer tokens.

    A session credential is an identity token issued by the provider, so the
    checks are the provider client's: signature, issuer, audience and expiry.
    Any failure, including an unreachable provider, rejects the request.

    Example:
        gate = AccessGate(provider)
        claims = await gate.verify(token)
    """

    def __init__(self, provider: IdentityProviderClient) -> None:
        self.provider = provider

    async def verify(self, credential: str) -> IdentityClaims:
        """Verify a credential and return its identity claims.

        Raises:
            AuthenticationError: If the credential is rejected
        """
        try:
            claims = parse_identity_claims(await self.provider.verify_identity_token(credential))
        except AuthenticationError:
            record_auth_check(success=False)
            raise

        record_auth_check(success=True)
        return claims
