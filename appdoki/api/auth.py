"""Authentication routes.

    GET /auth/login                 set state cookie, redirect to consent page
    GET /auth/{provider}/callback   complete login, return session credential
    GET /auth/url                   consent URL for clients that redirect themselves
    GET /auth/user                  local user for the authenticated caller
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from appdoki.config import Settings
from appdoki.domain.exceptions import DomainError
from appdoki.domain.services.auth_flow import AuthFlowController
from appdoki.security.auth import AuthenticationError, IdentityClaims

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def error_response(exc: AuthenticationError | DomainError) -> JSONResponse:
    """Render an error as a generic JSON body (no internal details)."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "message": exc.public_message},
    )


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_auth_controller(request: Request) -> AuthFlowController:
    return request.app.state.auth_controller


def get_current_user(request: Request) -> IdentityClaims:
    """Return the identity attached by AuthMiddleware.

    Raises:
        HTTPException: 401 if the request was not authenticated
    """
    user = getattr(request.state, "user", None)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def set_state_cookie(
    response: JSONResponse | RedirectResponse, settings: Settings, state: str
) -> None:
    response.set_cookie(
        key=settings.state_cookie_name,
        value=state,
        max_age=settings.state_cookie_max_age_seconds,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.state_cookie_secure,
    )


def clear_state_cookie(response: JSONResponse, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.state_cookie_name,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.state_cookie_secure,
    )


@router.get("/login")
async def login(
    settings: Settings = Depends(get_app_settings),
    controller: AuthFlowController = Depends(get_auth_controller),
) -> RedirectResponse:
    """Start a login: issue state cookie and redirect to the provider."""
    start = await controller.begin_login()

    response = RedirectResponse(start.url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    set_state_cookie(response, settings, start.state)
    return response


@router.get("/{provider}/callback")
async def callback(
    provider: str,
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    settings: Settings = Depends(get_app_settings),
    controller: AuthFlowController = Depends(get_auth_controller),
) -> JSONResponse:
    """Complete a login and return the session credential.

    The state cookie is cleared on every outcome, so each state value is
    accepted at most once.
    """
    if provider != settings.oidc_provider_name:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    try:
        result = await controller.complete_callback(
            code=code,
            state=state,
            expected_state=request.cookies.get(settings.state_cookie_name),
            error=error,
        )
    except (AuthenticationError, DomainError) as e:
        response = error_response(e)
    else:
        response = JSONResponse({"Token": result.token})

    clear_state_cookie(response, settings)
    return response


@router.get("/url")
async def consent_url(
    settings: Settings = Depends(get_app_settings),
    controller: AuthFlowController = Depends(get_auth_controller),
) -> JSONResponse:
    """Return the consent URL; the state cookie is set as for /auth/login."""
    start = await controller.begin_login()

    response = JSONResponse({"URL": start.url})
    set_state_cookie(response, settings, start.state)
    return response


@router.get("/user")
async def current_user(
    claims: IdentityClaims = Depends(get_current_user),
    controller: AuthFlowController = Depends(get_auth_controller),
) -> dict[str, Any]:
    """Resolve (or create) the local user for the authenticated caller."""
    user = await controller.resolve_identity(claims)
    return user.model_dump()
