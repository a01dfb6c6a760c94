"""Authorization-code login flow.

Drives a login attempt from consent redirect to session credential:

    begin_login()        -> state + consent URL (caller sets cookie, redirects)
    complete_callback()  -> state check, code exchange, identity token
                            verification, claim parsing, user resolution

Steps run strictly in order and the first failure aborts the attempt. Every
terminal outcome is logged and counted; token material never reaches the logs.
"""

import logging
import secrets
from dataclasses import dataclass

from appdoki.domain.exceptions import DirectoryError
from appdoki.domain.models import NewUserIdentity, UserIdentity
from appdoki.domain.services.user import UserDirectory
from appdoki.infra.observability import record_login_attempt
from appdoki.security.auth import (
    AuthenticationError,
    ExchangeFailedError,
    IdentityClaims,
    MalformedClaimsError,
    MissingIdentityTokenError,
    StateMismatchError,
    parse_identity_claims,
)
from appdoki.security.oidc import IdentityProviderClient, generate_state_token, hash_token

logger = logging.getLogger(__name__)


@dataclass
class LoginStart:
    """Result of beginning a login attempt."""

    state: str
    url: str


@dataclass
class CallbackResult:
    """Result of a completed login attempt.

    Attributes:
        token: Session credential (the verified raw identity token)
        user: Resolved local user
    """

    token: str
    user: UserIdentity


class AuthFlowController:
    """Orchestrates the login flow between provider and user directory.

    Example:
        controller = AuthFlowController(provider, directory)

        start = await controller.begin_login()
        # ... set start.state cookie, redirect to start.url ...

        result = await controller.complete_callback(
            code=request.query_params.get("code"),
            state=request.query_params.get("state"),
            expected_state=request.cookies.get("oauthstate"),
        )
    """

    def __init__(self, provider: IdentityProviderClient, directory: UserDirectory) -> None:
        """Initialize the controller.

        Args:
            provider: Identity provider client
            directory: User directory used for find-or-create
        """
        self.provider = provider
        self.directory = directory

    async def begin_login(self) -> LoginStart:
        """Start a login attempt.

        Returns:
            Fresh state value and the consent URL embedding it

        Raises:
            ProviderUnavailableError: If provider metadata cannot be loaded
        """
        await self.provider.load_metadata()
        state = generate_state_token()
        return LoginStart(state=state, url=self.provider.build_consent_url(state))

    async def complete_callback(
        self,
        *,
        code: str | None,
        state: str | None,
        expected_state: str | None,
        error: str | None = None,
    ) -> CallbackResult:
        """Complete a login attempt from the provider callback.

        Args:
            code: Authorization code from the callback query
            state: State value from the callback query
            expected_state: State value issued at login (from the cookie)
            error: Error reported by the provider, if any

        Returns:
            Session credential and resolved user

        Raises:
            StateMismatchError: State missing or different from the issued one
            ExchangeFailedError: Provider error, missing code or failed exchange
            MissingIdentityTokenError: Token response has no identity token
            InvalidTokenError: Identity token failed verification
            ProviderUnavailableError: Signing keys could not be retrieved
            MalformedClaimsError: Verified claims lack sub/email or have wrong types
            DirectoryError: User record could not be resolved
        """
        try:
            result = await self._complete_callback(
                code=code, state=state, expected_state=expected_state, error=error
            )
        except (AuthenticationError, DirectoryError) as e:
            record_login_attempt(e.kind)
            logger.warning(
                "Login attempt failed",
                extra={"outcome": e.kind, "error": str(e)},
            )
            raise

        record_login_attempt("success")
        logger.info(
            "Login completed",
            extra={
                "outcome": "success",
                "user_id": result.user.id,
                "token_hash": hash_token(result.token)[:16],
            },
        )
        return result

    async def _complete_callback(
        self,
        *,
        code: str | None,
        state: str | None,
        expected_state: str | None,
        error: str | None,
    ) -> CallbackResult:
        if not state or not expected_state or not secrets.compare_digest(
            state.encode(), expected_state.encode()
        ):
            raise StateMismatchError("Callback state does not match issued state")

        if error:
            raise ExchangeFailedError(f"Provider returned error: {error}")
        if not code:
            raise ExchangeFailedError("Callback is missing the authorization code")

        tokens = await self.provider.exchange_code(code)

        raw_token = tokens.get("id_token")
        if not isinstance(raw_token, str) or not raw_token:
            raise MissingIdentityTokenError("Token response has no id_token")

        claims = parse_identity_claims(await self.provider.verify_identity_token(raw_token))
        user = await self.resolve_identity(claims)

        return CallbackResult(token=raw_token, user=user)

    async def resolve_identity(self, claims: IdentityClaims) -> UserIdentity:
        """Find or create the local user for already-verified claims.

        Claims are not re-verified here.

        Raises:
            MalformedClaimsError: If the claims carry no email
            DirectoryError: If the user record cannot be resolved
        """
        if not claims.email:
            raise MalformedClaimsError("Token missing 'email' claim")

        return await self.directory.find_or_create(
            NewUserIdentity(
                email=claims.email,
                name=claims.name,
                picture=claims.picture,
                external_subject=claims.sub,
            )
        )
