"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The opaque session id is read from, in priority order:
  1. the session cookie (name from SESSION_COOKIE_NAME) -- browser clients.
  2. an "Authorization: Bearer <session id>" header -- API clients.

get_current_user() resolves it through the Authenticator held on
app.state and raises auth.errors.Unauthorized (rendered as 401 by the API
exception handler) when there is no live session or its user is gone.

Layer rule: may import fastapi because this module is part of the FastAPI
dependency injection system; no imports from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import PublicUser
from auth.service import Authenticator
from core.config import get_settings


def get_session_id(request: Request) -> str | None:
    """Return the presented session id, or None."""
    session_id = request.cookies.get(get_settings().session_cookie_name)
    if not session_id:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            session_id = auth_header[7:].strip()
    return session_id or None


def get_authenticator(request: Request) -> Authenticator:
    return request.app.state.authenticator


def get_current_user(request: Request) -> PublicUser:
    """Require an authenticated session.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: PublicUser = Depends(get_current_user)): ...
    """
    return get_authenticator(request).current_user(get_session_id(request))


def set_session_cookie(response, session_id: str) -> None:
    """Write the opaque session id as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POSTs.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the server-side session lifetime.
    """
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        value=session_id,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.session_ttl_seconds,
    )


def clear_session_cookie(response) -> None:
    """Expire the session cookie with the attributes it was set with."""
    settings = get_settings()
    response.delete_cookie(
        settings.session_cookie_name,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )
