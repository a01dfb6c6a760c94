"""Shared pytest fixtures.

These fixtures live at `tests/` scope so they are available to every test module.

Key goals:
- Real RSA signing keys (generated once per session) so identity tokens are
  verified end to end, not mocked.
- A fake identity provider speaking the provider client interface, with call
  counters for asserting which steps ran.
- File-backed SQLite databases under tmp_path (each connection to
  ``:memory:`` would see its own empty database).
"""

from __future__ import annotations

import time
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest
from authlib.jose import JsonWebKey
from authlib.jose import jwt as jose_jwt
from prometheus_client.parser import text_string_to_metric_families

from appdoki.config import Settings
from appdoki.infra.db.session import DatabaseSessionManager
from appdoki.infra.observability import get_metrics_text
from appdoki.security.oidc import OIDCProviderClient, ProviderMetadata

ISSUER = "https://accounts.example.com"
CLIENT_ID = "test-client-id"
CLIENT_SECRET = "test-client-secret"
REDIRECT_URL = "http://testserver/auth/google/callback"
KID = "test-key"

DISCOVERY = {
    "issuer": ISSUER,
    "authorization_endpoint": f"{ISSUER}/o/oauth2/auth",
    "token_endpoint": f"{ISSUER}/token",
    "jwks_uri": f"{ISSUER}/certs",
}


@pytest.fixture(scope="session")
def signing_key():
    """Provider signing key (RSA 2048)."""
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


@pytest.fixture(scope="session")
def other_key():
    """A key the provider never published."""
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


@pytest.fixture
def jwks(signing_key) -> dict[str, Any]:
    """Published key set containing only the provider signing key."""
    return {"keys": [signing_key.as_dict(is_private=False, kid=KID, alg="RS256", use="sig")]}


@pytest.fixture
def make_id_token(signing_key):
    """Factory for signed identity tokens.

    Claims default to a valid token for CLIENT_ID from ISSUER; pass a claim
    as None to omit it.
    """

    def _make(key=None, kid: str | None = KID, alg: str = "RS256", **overrides: Any) -> str:
        now = int(time.time())
        claims: dict[str, Any] = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "sub": "110169484474386276334",
            "email": "jane@example.com",
            "name": "Jane Doe",
            "picture": "https://example.com/jane.png",
            "iat": now,
            "exp": now + 3600,
        }
        claims.update(overrides)
        claims = {name: value for name, value in claims.items() if value is not None}

        header = {"alg": alg}
        if kid is not None:
            header["kid"] = kid
        return jose_jwt.encode(header, claims, key or signing_key).decode("utf-8")

    return _make


class ProviderEndpoints:
    """Canned provider endpoints served through httpx.MockTransport."""

    def __init__(self, jwks: dict[str, Any]) -> None:
        self.discovery: dict[str, Any] | Exception = dict(DISCOVERY)
        self.jwks_responses: list[dict[str, Any] | Exception] = [jwks]
        self.token_status = 200
        self.token_payload: Any = {"access_token": "at", "id_token": "raw"}
        self.token_error: Exception | None = None

        self.discovery_calls = 0
        self.jwks_calls = 0
        self.token_requests: list[dict[str, str]] = []

        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self._handle))

    def _handle(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)

        if url.endswith("/.well-known/openid-configuration"):
            self.discovery_calls += 1
            if isinstance(self.discovery, Exception):
                raise self.discovery
            return httpx.Response(200, json=self.discovery)

        if url == DISCOVERY["jwks_uri"]:
            self.jwks_calls += 1
            # Last configured response repeats
            index = min(self.jwks_calls, len(self.jwks_responses)) - 1
            result = self.jwks_responses[index]
            if isinstance(result, Exception):
                raise result
            return httpx.Response(200, json=result)

        if url == DISCOVERY["token_endpoint"] and request.method == "POST":
            form = parse_qs(request.content.decode())
            self.token_requests.append({name: values[0] for name, values in form.items()})
            if self.token_error:
                raise self.token_error
            if isinstance(self.token_payload, str):
                return httpx.Response(self.token_status, text=self.token_payload)
            return httpx.Response(self.token_status, json=self.token_payload)

        return httpx.Response(404, json={"error": "not_found"})


@pytest.fixture
async def provider_endpoints(jwks) -> ProviderEndpoints:
    endpoints = ProviderEndpoints(jwks)
    yield endpoints
    await endpoints.client.aclose()


@pytest.fixture
def provider_client(provider_endpoints) -> OIDCProviderClient:
    """Real provider client talking to mocked provider endpoints."""
    return OIDCProviderClient(
        issuer=ISSUER,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        redirect_url=REDIRECT_URL,
        http_client=provider_endpoints.client,
    )


class FakeIdentityProvider:
    """In-memory identity provider implementing the provider client interface."""

    def __init__(self) -> None:
        self.tokens: dict[str, Any] = {"access_token": "at", "id_token": "raw-id-token"}
        self.claims: dict[str, Any] = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "sub": "110169484474386276334",
            "email": "jane@example.com",
            "name": "Jane Doe",
            "picture": "https://example.com/jane.png",
            "exp": time.time() + 3600,
        }
        self.exchange_error: Exception | None = None
        self.verify_error: Exception | None = None
        self.metadata_error: Exception | None = None

        self.metadata_loads = 0
        self.reachability_checks = 0
        self.exchange_calls: list[str] = []
        self.verify_calls: list[str] = []

    async def load_metadata(self) -> ProviderMetadata:
        self.metadata_loads += 1
        if self.metadata_error:
            raise self.metadata_error
        return ProviderMetadata(**DISCOVERY)

    async def check_reachability(self) -> None:
        self.reachability_checks += 1
        if self.metadata_error:
            raise self.metadata_error

    def build_consent_url(self, state: str) -> str:
        return f"{DISCOVERY['authorization_endpoint']}?state={state}&access_type=offline"

    async def exchange_code(self, code: str) -> dict[str, Any]:
        self.exchange_calls.append(code)
        if self.exchange_error:
            raise self.exchange_error
        return dict(self.tokens)

    async def verify_identity_token(self, raw_token: str | bytes) -> dict[str, Any]:
        self.verify_calls.append(raw_token)
        if self.verify_error:
            raise self.verify_error
        return dict(self.claims)


@pytest.fixture
def fake_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def db_settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'appdoki.db'}",
        oidc_issuer=ISSUER,
        oidc_client_id=CLIENT_ID,
        oidc_client_secret=CLIENT_SECRET,
        oidc_redirect_url=REDIRECT_URL,
    )


@pytest.fixture
async def session_manager(db_settings) -> DatabaseSessionManager:
    """Initialized session manager with all tables created."""
    manager = DatabaseSessionManager(db_settings)
    await manager.init()
    await manager.create_all()

    yield manager

    await manager.close()


@pytest.fixture
def metric_value():
    """Read a counter sample from the metrics registry."""

    def _value(sample_name: str, **labels: str) -> float:
        total = 0.0
        for family in text_string_to_metric_families(get_metrics_text()):
            for sample in family.samples:
                if sample.name != sample_name:
                    continue
                if all(sample.labels.get(k) == v for k, v in labels.items()):
                    total += sample.value
        return total

    return _value
