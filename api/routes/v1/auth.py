"""
api/routes/v1/auth.py -- Password authentication and password reset endpoints.

Routes:
  POST /api/v1/auth/register                -- create account; sets session cookie
  POST /api/v1/auth/login                   -- password login; sets session cookie
  POST /api/v1/auth/logout                  -- destroys the session; clears cookie
  GET  /api/v1/auth/user                    -- current user (requires session)
  POST /api/v1/auth/forgot-password         -- issue + mail a reset token (always 200)
  GET  /api/v1/auth/reset-password/{token}  -- check a reset token
  POST /api/v1/auth/reset-password/{token}  -- redeem a reset token
  GET  /api/v1/auth/providers               -- enabled OAuth providers (public)
  GET  /api/v1/protected                    -- sample route behind get_current_user

The handlers are glue: every rule lives in auth/. Domain errors raised by
the services (InvalidCredentials, DuplicateUsername, ...) propagate to the
AuthError exception handler in api/main.py, which renders the safe message.

Security:
  Login, register and reset routes are rate-limited per IP (limits from settings).
  Cache-Control: no-store on every response that sets a session cookie.
  forgot-password answers identically for known and unknown addresses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    OAuthProviderInfo,
    ProtectedResponse,
    ProtectedUser,
    RegisterRequest,
    ResetPasswordRequest,
    TokenStatusResponse,
    UserResponse,
)
from auth.dependencies import (
    clear_session_cookie,
    get_authenticator,
    get_current_user,
    get_session_id,
    set_session_cookie,
)
from auth.errors import InvalidOrExpiredToken, RegistrationDisabled
from auth.models import AuthSession, PublicUser
from auth.oauth import get_enabled_providers
from auth.reset import PasswordResetCoordinator
from core.config import get_settings

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."
RESET_SUCCESS_MESSAGE = "Your password has been reset. You can now log in with your new password."

# Auth policy:
# - POST /auth/register, /auth/login, /auth/logout:     public
# - POST /auth/forgot-password, reset-password/{token}:  public (token is the credential)
# - GET  /auth/providers:                                public
# - GET  /auth/user, /protected:                         requires session (get_current_user)
router = APIRouter()


def _reset_coordinator(request: Request) -> PasswordResetCoordinator:
    return request.app.state.reset_coordinator


def _session_response(result: AuthSession, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=UserResponse.from_public(result.user).model_dump(),
    )
    set_session_cookie(resp, result.session_id)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Registration, login, logout
# ---------------------------------------------------------------------------


@limiter.limit(lambda: get_settings().register_rate_limit)
@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a password account and log it in."""
    if not get_settings().self_registration_enabled:
        raise RegistrationDisabled()
    result = get_authenticator(request).register(
        body.username,
        body.password,
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
        profile_image_url=body.profile_image_url,
    )
    return _session_response(result, status_code=201)


@limiter.limit(lambda: get_settings().login_rate_limit)
@router.post("/auth/login", response_model=UserResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set the session cookie.

    Wrong username and wrong password produce the same InvalidCredentials
    response.
    """
    result = get_authenticator(request).login(body.username, body.password)
    return _session_response(result)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Destroy the server-side session and clear the cookie. Idempotent."""
    get_authenticator(request).logout(get_session_id(request))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_session_cookie(resp)
    return resp


@router.get("/auth/user", response_model=UserResponse)
def current_user(user: PublicUser = Depends(get_current_user)) -> UserResponse:
    """Return the public view of the user bound to the presented session."""
    return UserResponse.from_public(user)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(lambda: get_settings().reset_rate_limit)
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Mail a reset link if the address is registered. Same answer either way."""
    _reset_coordinator(request).request_reset(body.email)
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@limiter.limit(lambda: get_settings().reset_rate_limit)
@router.get("/auth/reset-password/{token}", response_model=TokenStatusResponse)
def verify_reset_token(request: Request, token: str) -> TokenStatusResponse:
    """200 {"valid": true} for a live token; 400 invalid_or_expired_token otherwise."""
    if not _reset_coordinator(request).verify_token(token):
        raise InvalidOrExpiredToken()
    return TokenStatusResponse(valid=True)


@limiter.limit(lambda: get_settings().reset_rate_limit)
@router.post("/auth/reset-password/{token}", response_model=MessageResponse)
def reset_password(request: Request, token: str, body: ResetPasswordRequest) -> MessageResponse:
    _reset_coordinator(request).reset_password(token, body.password)
    return MessageResponse(message=RESET_SUCCESS_MESSAGE)


# ---------------------------------------------------------------------------
# Public metadata and sample protected route
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers; empty when none are set up."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


@router.get("/protected", response_model=ProtectedResponse)
def protected(user: PublicUser = Depends(get_current_user)) -> ProtectedResponse:
    return ProtectedResponse(
        message="This is protected data",
        user=ProtectedUser(id=user.id, username=user.username, email=user.email, name=user.display_name),
    )
