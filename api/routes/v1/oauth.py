"""
api/routes/v1/oauth.py -- OAuth / OIDC login endpoints.

Routes:
  GET /api/v1/auth/oauth/{provider}           -- redirect to the provider
  GET /api/v1/auth/oauth/{provider}/callback  -- code exchange, federated login

The callback hands the verified identity to the Federated Identity Bridge,
sets the PortalAuth session cookie and redirects to "/". Failures redirect
to /login with a short error code rather than rendering provider details.

The {provider} path parameter is whitelisted against get_enabled_providers()
so unknown or unconfigured names never reach authlib.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import RedirectResponse

from api.models import ErrorDetail
from auth.dependencies import set_session_cookie
from auth.errors import MissingEmail
from auth.oauth import get_enabled_providers, get_oauth_identity

logger = logging.getLogger("portalauth.api.oauth")

router = APIRouter()


def _require_provider(provider: str) -> None:
    if provider not in {p["name"] for p in get_enabled_providers()}:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(code="unknown_provider", message="OAuth provider is not configured.").model_dump(),
        )


@router.get("/auth/oauth/{provider}")
async def oauth_login(request: Request, provider: str):
    """Redirect the browser to the provider's consent screen."""
    _require_provider(provider)
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/oauth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str):
    """Exchange the authorization code and log the matching user in."""
    _require_provider(provider)
    client = request.app.state.oauth.create_client(provider)
    try:
        token = await client.authorize_access_token(request)
    except OAuthError as exc:
        logger.warning("%s OAuth callback failed: %s", provider, exc.error)
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    identity = await get_oauth_identity(client, provider, token)
    bridge = request.app.state.federated_bridge
    try:
        result = await run_in_threadpool(bridge.authenticate, identity)
    except MissingEmail:
        return RedirectResponse("/login?error=missing_email", status_code=302)

    resp = RedirectResponse("/", status_code=302)
    set_session_cookie(resp, result.session_id)
    resp.headers["Cache-Control"] = "no-store"
    return resp
