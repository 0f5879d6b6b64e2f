"""Explicit configuration passed to the provider clients.

Only ``Settings.from_env`` looks at the process environment; everything
downstream receives a ``Settings`` instance.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from healthlab.core import secrets
from healthlab.core.endpoints import DEFAULT_BASE_URLS
from healthlab.core.errors import ConfigurationError
from healthlab.core.models import ModelOption

DEFAULT_MODEL_ORDER: Tuple[ModelOption, ...] = (
    ModelOption("gemini-1.5-pro", "v1beta"),
    ModelOption("gemini-pro-vision", "v1beta"),
    ModelOption("gemini-2.0-flash-exp", "v1beta"),
    ModelOption("gemini-1.5-flash", "v1beta"),
    ModelOption("gemini-pro", "v1"),
)
DEFAULT_POLL_INTERVAL_S = 5.0
DEFAULT_HTTP_TIMEOUT_S = 30.0


@dataclass
class MeshySettings:
    """Connection options for the mesh-generation provider."""

    api_key: Optional[str] = None
    preferred_base: Optional[str] = None
    fallback_bases: Tuple[str, ...] = DEFAULT_BASE_URLS
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    max_poll_attempts: Optional[int] = None


@dataclass
class GeminiSettings:
    """Connection options for the image-understanding provider."""

    api_key: Optional[str] = None
    model_order: Tuple[ModelOption, ...] = DEFAULT_MODEL_ORDER


@dataclass
class Settings:
    meshy: MeshySettings = field(default_factory=MeshySettings)
    gemini: GeminiSettings = field(default_factory=GeminiSettings)
    http_timeout_s: float = DEFAULT_HTTP_TIMEOUT_S
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, use_keyring: bool = True) -> "Settings":
        """Build settings from environment variables (and ``.env`` when reading os.environ).

        API keys that are not in the environment are looked up in the system keyring.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        meshy_key = environ.get("MESHY_API_KEY") or None
        gemini_key = environ.get("GEMINI_API_KEY") or None
        if use_keyring:
            meshy_key = meshy_key or secrets.load_key("meshy")
            gemini_key = gemini_key or secrets.load_key("gemini")

        fallback_raw = environ.get("MESHY_FALLBACK_BASE_URLS", "")
        fallback_bases = tuple(part.strip() for part in fallback_raw.split(",") if part.strip())

        models_raw = environ.get("GEMINI_MODELS", "")
        model_order = parse_model_order(models_raw) if models_raw.strip() else DEFAULT_MODEL_ORDER

        return cls(
            meshy=MeshySettings(
                api_key=meshy_key,
                preferred_base=environ.get("MESHY_API_BASE_URL") or None,
                fallback_bases=fallback_bases or DEFAULT_BASE_URLS,
                poll_interval_s=_parse_float(environ, "MESHY_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_S),
                max_poll_attempts=_parse_optional_int(environ, "MESHY_MAX_POLL_ATTEMPTS"),
            ),
            gemini=GeminiSettings(api_key=gemini_key, model_order=model_order),
            http_timeout_s=_parse_float(environ, "HEALTHLAB_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT_S),
            log_level=environ.get("HEALTHLAB_LOG_LEVEL", "INFO"),
        )


def parse_model_order(raw: str) -> Tuple[ModelOption, ...]:
    """Parse ``name@version,name@version``; a bare name defaults to v1beta."""
    models = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        name, _, version = part.partition("@")
        if not name.strip():
            raise ConfigurationError(f"Invalid model entry {part!r} in GEMINI_MODELS")
        models.append(ModelOption(name.strip(), version.strip() or "v1beta"))
    return tuple(models)


def _parse_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ConfigurationError(f"{name} must not be negative, got {raw!r}")
    return value


def _parse_optional_int(environ: Mapping[str, str], name: str) -> Optional[int]:
    raw = environ.get(name, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value
