"""Secure storage helpers for provider API keys."""

from __future__ import annotations

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

SERVICE_NAME = "healthlab"
PROVIDERS = ("meshy", "gemini")


def _account(provider: str) -> str:
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown provider {provider!r}. Expected one of {', '.join(PROVIDERS)}.")
    return f"{provider}_api_key"


def load_key(provider: str) -> str | None:
    """Load a provider API key from secure storage, None when unavailable."""
    try:
        return keyring.get_password(SERVICE_NAME, _account(provider))
    except KeyringError:
        return None


def save_key(provider: str, api_key: str) -> None:
    """Save a provider API key to secure storage."""
    keyring.set_password(SERVICE_NAME, _account(provider), api_key)


def delete_key(provider: str) -> bool:
    """Remove a provider API key; returns False when nothing was stored."""
    try:
        keyring.delete_password(SERVICE_NAME, _account(provider))
    except PasswordDeleteError:
        return False
    return True
