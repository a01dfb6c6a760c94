"""OpenID Connect identity provider client.

Wraps the three provider capabilities the login flow needs:
- Consent page URL construction (authorization-code flow, offline access)
- Authorization code exchange at the token endpoint
- Identity token verification against the provider's signing keys

Discovery metadata and signing keys (JWKS) are cached; nothing else is kept
between calls. Verification fails closed: if signing keys cannot be refreshed
the token is rejected with ProviderUnavailableError, stale keys are never used.
"""

import asyncio
import base64
import hashlib
import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlencode

import httpx
from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import JoseError

from appdoki.config import Settings
from appdoki.infra.observability import record_jwks_refresh
from appdoki.security.auth import (
    ExchangeFailedError,
    InvalidTokenError,
    ProviderUnavailableError,
)

logger = logging.getLogger(__name__)

# Clock skew tolerance (±30 seconds)
CLOCK_SKEW_SECONDS = 30

JWKS_CACHE_TTL_SECONDS = 3600  # 1 hour for public keys
JWKS_MIN_REFRESH_INTERVAL_SECONDS = 60  # unknown-kid refreshes

ALLOWED_ALGORITHMS = [
    "RS256",
    "RS384",
    "RS512",
    "PS256",
    "PS384",
    "PS512",
    "ES256",
    "ES384",
    "ES512",
]

jwt = JsonWebToken(ALLOWED_ALGORITHMS)


class IdentityProviderClient(Protocol):
    """Capability interface the login flow and access gate depend on."""

    async def load_metadata(self) -> "ProviderMetadata": ...

    async def check_reachability(self) -> None: ...

    def build_consent_url(self, state: str) -> str: ...

    async def exchange_code(self, code: str) -> dict[str, Any]: ...

    async def verify_identity_token(self, raw_token: str | bytes) -> dict[str, Any]: ...


@dataclass
class ProviderMetadata:
    """Subset of the OIDC discovery document used by the client."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str


@dataclass
class CachedJWKS:
    """Cached JWKS (JSON Web Key Set)."""

    keys: dict[str, Any]  # kid -> key mapping
    fetched_at: float  # Unix timestamp
    expires_at: float  # Unix timestamp


def generate_state_token() -> str:
    """Generate an unguessable, URL-safe login state value."""
    return secrets.token_urlsafe(16)


def hash_token(token: str | bytes) -> str:
    """Hash a token for logging and correlation (never log plaintext).

    Args:
        token: JWT token (str or bytes)

    Returns:
        SHA256 hex digest of token
    """
    token_bytes = token if isinstance(token, bytes) else token.encode()
    return hashlib.sha256(token_bytes).hexdigest()


class OIDCProviderClient:
    """OAuth2/OIDC client for a single identity provider.

    Example:
        client = OIDCProviderClient(
            issuer="https://accounts.google.com",
            client_id="my-client-id",
            client_secret="my-client-secret",
            redirect_url="http://localhost:8080/auth/google/callback",
        )
        await client.load_metadata()
        url = client.build_consent_url(state)
        tokens = await client.exchange_code(code)
        claims = await client.verify_identity_token(tokens["id_token"])
    """

    def __init__(
        self,
        issuer: str,
        client_id: str,
        client_secret: str,
        redirect_url: str,
        scopes: list[str] | None = None,
        timeout: float = 10.0,
        jwks_cache_ttl: int = JWKS_CACHE_TTL_SECONDS,
        http_client: httpx.AsyncClient | None = None,
        metadata: ProviderMetadata | None = None,
    ) -> None:
        """Initialize the provider client.

        Args:
            issuer: OIDC issuer URL (discovery document lives under it)
            client_id: OAuth client ID (expected token audience)
            client_secret: OAuth client secret
            redirect_url: Redirect URL registered with the provider
            scopes: Scopes requested on the consent page
            timeout: Timeout in seconds for provider calls
            jwks_cache_ttl: Signing key cache lifetime in seconds
            http_client: Optional HTTP client for testing
            metadata: Pre-loaded discovery metadata (skips discovery)
        """
        self.issuer = issuer.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_url = redirect_url
        self.scopes = scopes or ["openid", "profile", "email"]
        self.timeout = timeout
        self.jwks_cache_ttl = jwks_cache_ttl

        self._http_client = http_client
        self._owns_http_client = http_client is None

        self._metadata = metadata
        self._jwks_cache: CachedJWKS | None = None
        self._last_forced_refresh = 0.0

        self._metadata_lock = asyncio.Lock()
        self._jwks_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "OIDCProviderClient":
        """Build a client from application settings.

        Raises:
            ValueError: If client credentials are not configured
        """
        if not settings.oidc_client_id or not settings.oidc_client_secret:
            raise ValueError("oidc_client_id and oidc_client_secret must be configured")

        return cls(
            issuer=settings.oidc_issuer,
            client_id=settings.oidc_client_id,
            client_secret=settings.oidc_client_secret,
            redirect_url=settings.redirect_url,
            scopes=list(settings.oidc_scopes),
            timeout=settings.oidc_http_timeout_seconds,
            jwks_cache_ttl=settings.oidc_jwks_cache_ttl_seconds,
            http_client=http_client,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # ========================================
    # Discovery
    # ========================================

    async def load_metadata(self) -> ProviderMetadata:
        """Fetch and cache the provider's discovery document.

        Returns:
            Provider metadata

        Raises:
            ProviderUnavailableError: If discovery fails or is incomplete
        """
        if self._metadata is not None:
            return self._metadata

        async with self._metadata_lock:
            if self._metadata is not None:
                return self._metadata

            discovery_url = f"{self.issuer}/.well-known/openid-configuration"
            try:
                logger.debug("Fetching OIDC discovery", extra={"url": discovery_url})
                response = await self._get_client().get(discovery_url, timeout=self.timeout)
                response.raise_for_status()
                document = response.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.error(
                    "OIDC discovery failed",
                    extra={"error": str(e), "issuer": self.issuer},
                )
                raise ProviderUnavailableError(f"OIDC discovery failed: {e}") from e

            if not isinstance(document, dict):
                raise ProviderUnavailableError("OIDC discovery returned unexpected payload")

            required = ("authorization_endpoint", "token_endpoint", "jwks_uri")
            missing = [name for name in required if not document.get(name)]
            if missing:
                raise ProviderUnavailableError(f"OIDC discovery missing {', '.join(missing)}")

            self._metadata = ProviderMetadata(
                issuer=(document.get("issuer") or self.issuer).rstrip("/"),
                authorization_endpoint=document["authorization_endpoint"],
                token_endpoint=document["token_endpoint"],
                jwks_uri=document["jwks_uri"],
            )
            logger.info(
                "OIDC discovery loaded",
                extra={"issuer": self._metadata.issuer},
            )
            return self._metadata

    async def check_reachability(self) -> None:
        """Fetch the discovery document, bypassing the metadata cache.

        Raises:
            ProviderUnavailableError: If the provider does not answer with a document
        """
        discovery_url = f"{self.issuer}/.well-known/openid-configuration"
        try:
            response = await self._get_client().get(discovery_url, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"OIDC discovery unreachable: {e}") from e

    # ========================================
    # Authorization Code Flow
    # ========================================

    def build_consent_url(self, state: str) -> str:
        """Build the provider consent page URL.

        Args:
            state: Login state value to round-trip through the provider

        Returns:
            Consent page URL requesting an authorization code with offline access

        Raises:
            ProviderUnavailableError: If discovery metadata has not been loaded
        """
        if self._metadata is None:
            raise ProviderUnavailableError("OIDC discovery metadata not loaded")

        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "scope": " ".join(self.scopes),
            "state": state,
            "access_type": "offline",
        }
        endpoint = self._metadata.authorization_endpoint
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the callback

        Returns:
            Token response dict (access_token, id_token, optional refresh_token, ...)

        Raises:
            ExchangeFailedError: On network error, provider error, or invalid/expired code
        """
        try:
            metadata = await self.load_metadata()
        except ProviderUnavailableError as e:
            raise ExchangeFailedError(f"Token exchange failed: {e}") from e

        token_data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_url,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }

        try:
            logger.debug(
                "Exchanging authorization code for tokens",
                extra={"token_endpoint": metadata.token_endpoint},
            )
            response = await self._get_client().post(
                metadata.token_endpoint,
                data=token_data,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.error("HTTP error during token exchange", extra={"error": str(e)})
            raise ExchangeFailedError(f"Token exchange failed: {e}") from e

        if response.status_code != 200:
            logger.error(
                "Token exchange failed",
                extra={"status_code": response.status_code, "error": response.text[:500]},
            )
            raise ExchangeFailedError(
                f"Token exchange failed with status {response.status_code}"
            )

        try:
            tokens = response.json()
        except ValueError as e:
            raise ExchangeFailedError("Token endpoint returned invalid JSON") from e

        if not isinstance(tokens, dict):
            raise ExchangeFailedError("Token endpoint returned unexpected payload")

        logger.info(
            "Token exchange successful",
            extra={
                "has_access_token": "access_token" in tokens,
                "has_refresh_token": "refresh_token" in tokens,
                "has_id_token": "id_token" in tokens,
            },
        )
        return tokens

    # ========================================
    # Identity Token Verification
    # ========================================

    async def verify_identity_token(self, raw_token: str | bytes) -> dict[str, Any]:
        """Verify an identity token and return its claims.

        Checks signature (key selected by 'kid'), issuer, audience (client ID)
        and expiry with clock skew tolerance.

        Args:
            raw_token: Encoded JWT (str or bytes)

        Returns:
            Verified claims dict

        Raises:
            InvalidTokenError: If any check fails
            ProviderUnavailableError: If signing keys cannot be retrieved
        """
        token_hash = hash_token(raw_token)[:16]

        header = self._decode_header(raw_token)
        alg = header.get("alg")
        if alg not in ALLOWED_ALGORITHMS:
            logger.warning(
                "JWT uses unsupported algorithm",
                extra={"alg": alg, "token_hash": token_hash},
            )
            raise InvalidTokenError(f"Unsupported JWT algorithm: {alg}")

        key = await self._get_signing_key(header.get("kid"))
        issuers = {self.issuer}
        if self._metadata is not None:
            issuers.add(self._metadata.issuer)

        try:
            claims = jwt.decode(
                raw_token,
                key,
                claims_options={
                    "iss": {"essential": True, "values": sorted(issuers)},
                    "aud": {"essential": True, "value": self.client_id},
                    "sub": {"essential": True},
                    "exp": {"essential": True},
                },
            )
            claims.validate(leeway=CLOCK_SKEW_SECONDS)
        except (JoseError, ValueError, TypeError, KeyError) as e:
            logger.warning(
                "JWT validation failed",
                extra={"error": str(e), "token_hash": token_hash},
            )
            raise InvalidTokenError(f"Invalid JWT token: {e}") from e

        logger.debug(
            "Identity token verified",
            extra={"user_sub": claims.get("sub"), "token_hash": token_hash},
        )
        return dict(claims)

    def _decode_header(self, token: str | bytes) -> dict[str, Any]:
        """Decode JWT header without verification.

        Raises:
            InvalidTokenError: If header is malformed
        """
        try:
            if isinstance(token, bytes):
                token = token.decode("utf-8")

            parts = token.split(".")
            if len(parts) != 3:
                raise InvalidTokenError("Invalid JWT format")

            header_b64 = parts[0]
            padding = (4 - len(header_b64) % 4) % 4
            header = json.loads(base64.urlsafe_b64decode(header_b64 + "=" * padding))
        except InvalidTokenError:
            raise
        except (ValueError, UnicodeDecodeError) as e:
            raise InvalidTokenError(f"Failed to decode JWT header: {e}") from e

        if not isinstance(header, dict):
            raise InvalidTokenError("JWT header is not an object")
        kid = header.get("kid")
        if kid is not None and not isinstance(kid, str):
            raise InvalidTokenError("JWT header kid must be a string")
        return header

    async def _get_signing_key(self, kid: str | None) -> Any:
        """Select the signing key for a token, refreshing once on unknown kid.

        Raises:
            InvalidTokenError: If no key matches
            ProviderUnavailableError: If keys cannot be fetched
        """
        jwks = await self._get_jwks()
        key = self._select_key(jwks, kid)

        if key is None and kid and self._may_force_refresh():
            logger.info("Unknown signing key id, refreshing JWKS", extra={"kid": kid})
            self._last_forced_refresh = time.time()
            jwks = await self._get_jwks(force=True)
            key = self._select_key(jwks, kid)

        if key is None:
            raise InvalidTokenError(f"No matching key found for kid: {kid}")
        return key

    @staticmethod
    def _select_key(jwks: CachedJWKS, kid: str | None) -> Any:
        if kid:
            return jwks.keys.get(kid)
        # Without a kid only an unambiguous key set is usable
        if len(jwks.keys) == 1:
            return next(iter(jwks.keys.values()))
        return None

    def _may_force_refresh(self) -> bool:
        return time.time() - self._last_forced_refresh >= JWKS_MIN_REFRESH_INTERVAL_SECONDS

    async def _get_jwks(self, force: bool = False) -> CachedJWKS:
        """Get JWKS from cache or fetch from the provider.

        Args:
            force: Refresh even if the cache has not expired

        Raises:
            ProviderUnavailableError: If keys cannot be fetched or none are usable
        """
        requested_at = time.time()
        cached = self._jwks_cache
        if not force and cached and requested_at < cached.expires_at:
            logger.debug("JWKS cache hit")
            return cached

        async with self._jwks_lock:
            # Another task may have refreshed while we waited
            cached = self._jwks_cache
            if cached and time.time() < cached.expires_at:
                if not force or cached.fetched_at > requested_at:
                    return cached

            try:
                metadata = await self.load_metadata()
                logger.debug("Fetching JWKS", extra={"url": metadata.jwks_uri})
                response = await self._get_client().get(metadata.jwks_uri, timeout=self.timeout)
                response.raise_for_status()
                jwks_data = response.json()
            except (httpx.HTTPError, ValueError, ProviderUnavailableError) as e:
                record_jwks_refresh(success=False)
                logger.error(
                    "Failed to fetch JWKS from OIDC provider",
                    extra={"error": str(e), "issuer": self.issuer},
                )
                raise ProviderUnavailableError(f"Unable to fetch signing keys: {e}") from e

            keys: dict[str, Any] = {}
            for key_data in jwks_data.get("keys", []) if isinstance(jwks_data, dict) else []:
                kid = key_data.get("kid") if isinstance(key_data, dict) else None
                if not kid or not isinstance(kid, str):
                    continue
                try:
                    keys[kid] = JsonWebKey.import_key(key_data)
                except (JoseError, ValueError, TypeError, KeyError) as e:
                    logger.warning(
                        "Skipping unusable signing key",
                        extra={"kid": kid, "error": str(e)},
                    )

            if not keys:
                record_jwks_refresh(success=False)
                raise ProviderUnavailableError("OIDC provider returned no usable signing keys")

            now = time.time()
            self._jwks_cache = CachedJWKS(
                keys=keys, fetched_at=now, expires_at=now + self.jwks_cache_ttl
            )
            record_jwks_refresh(success=True)

            logger.info(
                "JWKS fetched and cached",
                extra={"key_count": len(keys), "ttl_seconds": self.jwks_cache_ttl},
            )
            return self._jwks_cache
