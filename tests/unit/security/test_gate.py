"""Tests for AccessGate bearer credential verification."""

import pytest

from appdoki.security.auth import (
    AuthenticationError,
    IdentityClaims,
    InvalidTokenError,
    MalformedClaimsError,
    ProviderUnavailableError,
)
from appdoki.security.gate import AccessGate


@pytest.mark.asyncio
async def test_verify_returns_identity_claims(fake_provider, metric_value) -> None:
    gate = AccessGate(fake_provider)
    before = metric_value("appdoki_auth_checks_total", result="success")

    claims = await gate.verify("raw-id-token")

    assert isinstance(claims, IdentityClaims)
    assert claims.sub == "110169484474386276334"
    assert claims.email == "jane@example.com"
    assert claims.name == "Jane Doe"
    assert claims.raw["aud"] == "test-client-id"
    assert fake_provider.verify_calls == ["raw-id-token"]
    assert metric_value("appdoki_auth_checks_total", result="success") == before + 1


@pytest.mark.asyncio
async def test_verify_rejects_invalid_token(fake_provider, metric_value) -> None:
    fake_provider.verify_error = InvalidTokenError("bad signature")
    gate = AccessGate(fake_provider)
    before = metric_value("appdoki_auth_checks_total", result="failure")

    with pytest.raises(InvalidTokenError):
        await gate.verify("forged")

    assert metric_value("appdoki_auth_checks_total", result="failure") == before + 1


@pytest.mark.asyncio
async def test_verify_fails_closed_when_provider_unavailable(fake_provider) -> None:
    fake_provider.verify_error = ProviderUnavailableError("jwks down")
    gate = AccessGate(fake_provider)

    with pytest.raises(AuthenticationError):
        await gate.verify("raw-id-token")


@pytest.mark.asyncio
async def test_verify_requires_subject(fake_provider) -> None:
    del fake_provider.claims["sub"]
    gate = AccessGate(fake_provider)

    with pytest.raises(MalformedClaimsError):
        await gate.verify("raw-id-token")


@pytest.mark.asyncio
async def test_verify_accepts_token_without_email(fake_provider) -> None:
    del fake_provider.claims["email"]
    gate = AccessGate(fake_provider)

    claims = await gate.verify("raw-id-token")

    assert claims.email is None


@pytest.mark.asyncio
async def test_verify_with_real_provider_client(provider_client, make_id_token) -> None:
    gate = AccessGate(provider_client)

    claims = await gate.verify(make_id_token())
    assert claims.email == "jane@example.com"

    with pytest.raises(InvalidTokenError):
        await gate.verify(make_id_token(aud="another-app"))
