"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered.

Security notes:
  Email verification is mandatory. identity_from_userinfo() only passes the
  email through when the provider asserts email_verified; otherwise the
  identity carries email=None and the Federated Identity Bridge rejects it
  with MissingEmail. An unverified address could belong to someone else.

  OAuth state (CSRF protection for the authorization code flow) is handled
  by authlib through Starlette's SessionMiddleware.

Supported providers:
  google -- Authorization code flow; OIDC discovery.
  oidc   -- Generic OIDC discovery (Okta, Azure AD, Keycloak, Authentik, etc.)

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import FederatedIdentity
from core.config import get_settings

logger = logging.getLogger("portalauth.auth.oauth")

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")

if _cfg.oidc_client_id and _cfg.oidc_client_secret and _cfg.oidc_discovery_url:
    oauth.register(
        name="oidc",
        client_id=_cfg.oidc_client_id,
        client_secret=_cfg.oidc_client_secret,
        server_metadata_url=_cfg.oidc_discovery_url,
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Generic OIDC provider registered (display name: %s)", _cfg.oidc_display_name)


# ---------------------------------------------------------------------------
# Provider metadata
# ---------------------------------------------------------------------------


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every configured provider.

    Used by GET /api/v1/auth/providers and to whitelist the {provider} path
    parameter of the OAuth routes.
    """
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    if cfg.oidc_client_id and cfg.oidc_client_secret and cfg.oidc_discovery_url:
        providers.append({"name": "oidc", "label": cfg.oidc_display_name})
    return providers


# ---------------------------------------------------------------------------
# Identity extraction
# ---------------------------------------------------------------------------


def identity_from_userinfo(userinfo: dict | None, provider: str) -> FederatedIdentity:
    """Normalise OIDC userinfo claims into a FederatedIdentity.

    The email claim is only kept when email_verified is true. Some providers
    omit email_verified entirely; that counts as unverified.
    """
    userinfo = userinfo or {}
    email = userinfo.get("email") if userinfo.get("email_verified", False) else None
    if userinfo.get("email") and email is None:
        logger.warning("%s OAuth: email present but not verified; dropping it", provider)
    subject = userinfo.get("sub")
    return FederatedIdentity(
        email=email,
        display_name=userinfo.get("name"),
        external_uid=str(subject) if subject is not None else None,
        avatar_url=userinfo.get("picture"),
        provider=provider,
    )


async def get_oauth_identity(client, provider: str, token: dict) -> FederatedIdentity:
    """Extract a FederatedIdentity from a provider token response.

    Google and generic OIDC put the id_token claims under token["userinfo"].
    When they are missing, the userinfo endpoint is queried instead.
    """
    if provider not in ("google", "oidc"):
        raise ValueError(f"Unknown OAuth provider: {provider!r}")
    userinfo = token.get("userinfo")
    if not userinfo:
        userinfo = await client.userinfo(token=token)
    return identity_from_userinfo(dict(userinfo), provider)
