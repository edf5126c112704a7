"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration for federated login.

build_oauth() registers only the providers whose client id and secret are
both configured; get_enabled_providers() reports the same set so the login
page can render buttons dynamically. api/main.py builds the registry once at
startup and stores it on app.state.oauth.

Security notes:
  Email verification is mandatory. get_oauth_user_info() raises ValueError
  if the provider does not confirm the email is verified. An unverified
  email could belong to an attacker who added a victim's address without
  confirming it, and federated login links accounts by email.

  The OAuth state parameter (CSRF protection) is handled by authlib through
  Starlette SessionMiddleware.

Supported providers:
  google -- Authorization code flow; OIDC discovery.
  github -- Authorization code flow; static endpoints.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from authlib.integrations.starlette_client import OAuth

from core.config import Settings

logger = logging.getLogger("keystone.auth.oauth")


@dataclass(frozen=True)
class FederatedIdentity:
    """Normalized identity asserted by a provider."""

    email: str
    subject: str
    name: str | None = None
    image: str | None = None


# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------


def build_oauth(settings: Settings) -> OAuth:
    oauth = OAuth()

    # Google -- OIDC discovery
    if settings.google_client_id and settings.google_client_secret:
        oauth.register(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")

    # GitHub -- static endpoints (no OIDC discovery document)
    if settings.github_client_id and settings.github_client_secret:
        oauth.register(
            name="github",
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
            authorize_url="https://github.com/login/oauth/authorize",
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": "read:user user:email"},
        )
        logger.info("GitHub OAuth provider registered")

    return oauth


def get_enabled_providers(settings: Settings) -> list[dict]:
    """Return {"name", "label"} for every configured provider."""
    providers: list[dict] = []
    if settings.google_client_id and settings.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    if settings.github_client_id and settings.github_client_secret:
        providers.append({"name": "github", "label": "GitHub"})
    return providers


# ---------------------------------------------------------------------------
# Identity extraction -- provider-specific normalization
# ---------------------------------------------------------------------------


async def get_oauth_user_info(client, provider: str, token: dict) -> FederatedIdentity:
    """Extract a verified FederatedIdentity from a provider token response.

    Raises:
        ValueError: If a verified email cannot be confirmed or the provider is unknown.
    """
    if provider == "github":
        return await _get_github_user_info(client, token)
    if provider == "google":
        return _get_oidc_user_info(token, provider)
    raise ValueError(f"Unknown OAuth provider: {provider!r}")


async def _get_github_user_info(client, token: dict) -> FederatedIdentity:
    """GitHub needs two calls: GET /user for the stable id, GET /user/emails for
    the primary verified email. Only an entry with primary=true AND
    verified=true is accepted.
    """
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()

    email: str | None = None
    for entry in emails_resp.json():
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break

    if not email:
        raise ValueError(
            "GitHub OAuth: no primary verified email found. "
            "The user must verify their email address on GitHub before logging in."
        )

    return FederatedIdentity(
        email=email,
        subject=str(profile["id"]),
        name=profile.get("name") or profile.get("login"),
        image=profile.get("avatar_url"),
    )


def _get_oidc_user_info(token: dict, provider: str) -> FederatedIdentity:
    """Read email, email_verified, sub, name and picture from the id_token claims.

    Providers that omit email_verified are treated as unverified.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider} OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(
            f"{provider} OAuth: email is not verified. "
            "The provider must confirm email ownership before login is allowed."
        )

    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError(f"{provider} OAuth: missing email or sub claim in userinfo")

    return FederatedIdentity(email=email, subject=subject, name=userinfo.get("name"), image=userinfo.get("picture"))
