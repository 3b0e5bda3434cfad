"""
Runtime configuration for the gateway.

Everything comes from environment variables (optionally loaded from a .env
file by the server entry point). Provider keys are not validated here: a
missing key surfaces as a failed job, not as a startup crash.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
DEFAULT_OAUTH_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


def _env_list(name: str, default: list) -> list:
    raw = os.getenv(name, "")
    items = [item.strip() for item in raw.split(",") if item.strip()]
    return items or default


def _env_port() -> Optional[int]:
    raw = os.getenv("PORT", "")
    return int(raw) if raw.isdigit() else None


@dataclass
class Settings:
    """All knobs the gateway reads from the environment."""

    port: Optional[int] = field(default_factory=_env_port)
    public_base_url: str = field(
        default_factory=lambda: os.getenv("PUBLIC_BASE_URL", "http://localhost:8080")
    )
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    cors_origins: list = field(default_factory=lambda: _env_list("CORS_ORIGINS", ["*"]))

    # ── Gemini (Generative Language API, static key) ─────────────────────
    gemini_api_key: str = field(
        default_factory=lambda: os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY", "")
    )
    gemini_api_base: str = field(
        default_factory=lambda: os.getenv(
            "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
        )
    )
    gemini_text_model: str = field(
        default_factory=lambda: os.getenv("GEMINI_TEXT_MODEL", "gemini-2.0-flash")
    )
    gemini_image_model: str = field(
        default_factory=lambda: os.getenv(
            "GEMINI_IMAGE_MODEL", "gemini-2.0-flash-preview-image-generation"
        )
    )

    # ── Vertex AI (OAuth via service account) ────────────────────────────
    image_provider: str = field(
        default_factory=lambda: os.getenv("IMAGE_PROVIDER", "gemini-image")
    )
    vertex_project: str = field(default_factory=lambda: os.getenv("VERTEX_PROJECT", ""))
    vertex_location: str = field(
        default_factory=lambda: os.getenv("VERTEX_LOCATION", "us-central1")
    )
    vertex_image_model: str = field(
        default_factory=lambda: os.getenv(
            "VERTEX_IMAGE_MODEL", "gemini-2.0-flash-preview-image-generation"
        )
    )
    service_account: str = field(
        default_factory=lambda: os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON")
        or os.getenv("GOOGLE_APPLICATION_CREDENTIALS", "")
    )
    oauth_scope: str = field(
        default_factory=lambda: os.getenv("OAUTH_SCOPE", DEFAULT_OAUTH_SCOPE)
    )
    token_safety_margin: float = field(
        default_factory=lambda: _env_float("TOKEN_SAFETY_MARGIN_SECONDS", 60.0)
    )

    # ── Kie.ai (Veo image-to-video) ──────────────────────────────────────
    kie_api_key: str = field(default_factory=lambda: os.getenv("KIE_API_KEY", ""))
    kie_api_base: str = field(
        default_factory=lambda: os.getenv("KIE_API_BASE", "https://api.kie.ai/api/v1")
    )
    kie_model: str = field(default_factory=lambda: os.getenv("KIE_MODEL", "veo3_fast"))

    provider_timeout: float = field(
        default_factory=lambda: _env_float("PROVIDER_TIMEOUT_SECONDS", 120.0)
    )

    @classmethod
    def from_env(cls) -> "Settings":
        return cls()


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Lazy-init the process-wide settings."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
