"""
auth/oauth.py -- OAuth provider list for the sign-in screen.

The identity provider runs the OAuth dance itself: the login route asks the
backend for the provider's authorization URL (PKCE verifier stored in the
signed session) and the provider redirects back to /auth/callback?code=...
This module only decides which buttons to render and validates provider
names taken from the URL.

Providers are enabled in two places: in the Supabase dashboard (client id and
secret) and here via OAUTH_PROVIDERS, so a button never points at a provider
the project cannot serve.

Layer rule: no imports from api/, web/ or admin/.
"""

from __future__ import annotations

from core.config import get_settings

_LABELS: dict[str, str] = {
    "github": "GitHub",
    "google": "Google",
    "gitlab": "GitLab",
    "azure": "Microsoft",
    "bitbucket": "Bitbucket",
}


def get_enabled_providers() -> list[dict[str, str]]:
    """Return [{"name": ..., "label": ...}] for every configured provider, in config order."""
    return [
        {"name": name, "label": _LABELS.get(name, name.capitalize())}
        for name in get_settings().enabled_oauth_providers
    ]


def is_enabled_provider(provider: str) -> bool:
    return provider in get_settings().enabled_oauth_providers
