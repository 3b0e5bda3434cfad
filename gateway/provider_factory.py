import logging
from typing import Optional

import httpx

from .config import Settings
from .errors import NotFound, ValidationError
from .gemini import GeminiClient, generative_language_url, vertex_url
from .kie import KieVideoClient
from .pipeline.models import JobKind
from .providers import ApiKeyAuth, OAuthBearerAuth, StaticBearerAuth
from .token_cache import TokenCache

logger = logging.getLogger(__name__)

GEMINI_TEXT = "gemini-text"
GEMINI_IMAGE = "gemini-image"
VERTEX_IMAGE = "vertex-image"
KIE_VEO = "kie-veo"

IMAGE_PROVIDERS = {GEMINI_IMAGE, VERTEX_IMAGE}


class ProviderFactory:
    """
    Builds every provider client once and maps job kinds to provider tags.

    The auth scheme belongs to the provider: Gemini uses its API key, Vertex
    uses the service-account TokenCache, Kie uses a static bearer key.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        token_cache: Optional[TokenCache] = None,
    ):
        if settings.image_provider not in IMAGE_PROVIDERS:
            raise ValueError(
                f"IMAGE_PROVIDER must be one of {sorted(IMAGE_PROVIDERS)}, got {settings.image_provider!r}"
            )
        self.settings = settings
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.provider_timeout)
        self.token_cache = token_cache or TokenCache(
            settings.service_account,
            scope=settings.oauth_scope,
            safety_margin=settings.token_safety_margin,
            http_client=self.http_client,
        )

        gemini_auth = ApiKeyAuth(settings.gemini_api_key, provider="gemini")
        timeout = settings.provider_timeout
        self._providers = {
            GEMINI_TEXT: GeminiClient(
                GEMINI_TEXT,
                generative_language_url(settings.gemini_api_base, settings.gemini_text_model),
                gemini_auth, self.http_client, timeout=timeout, temperature=0.4,
            ),
            GEMINI_IMAGE: GeminiClient(
                GEMINI_IMAGE,
                generative_language_url(settings.gemini_api_base, settings.gemini_image_model),
                gemini_auth, self.http_client, timeout=timeout,
            ),
            VERTEX_IMAGE: GeminiClient(
                VERTEX_IMAGE,
                vertex_url(settings.vertex_project, settings.vertex_location, settings.vertex_image_model),
                OAuthBearerAuth(self.token_cache), self.http_client, timeout=timeout,
            ),
            KIE_VEO: KieVideoClient(
                KIE_VEO,
                settings.kie_api_base,
                StaticBearerAuth(settings.kie_api_key, provider="kie"),
                self.http_client, model=settings.kie_model, timeout=timeout,
            ),
        }

    def provider_for(self, kind: JobKind) -> str:
        """Provider tag recorded on a job of this kind."""
        if kind in (JobKind.ANALYZE, JobKind.GENERATE_LANDING_SECTION):
            return GEMINI_TEXT
        if kind == JobKind.GENERATE_IMAGE:
            return self.settings.image_provider
        if kind == JobKind.GENERATE_VIDEO:
            return KIE_VEO
        raise ValidationError(f"Unsupported job kind: {kind}")

    def get_provider(self, name: str):
        try:
            return self._providers[name]
        except KeyError:
            raise NotFound(f"Unknown provider: {name}")

    @property
    def video_provider(self) -> KieVideoClient:
        return self._providers[KIE_VEO]

    async def aclose(self):
        if self._owns_client:
            await self.http_client.aclose()
