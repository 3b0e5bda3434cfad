"""
Provider capability shapes, auth schemes and the shared HTTP helper.

Two capability shapes exist:
  - SyncGenerator:      one round trip, artifact inline (text, image)
  - AsyncTaskGenerator: submit returns a task id, completion is polled

Every HTTP call goes through `send()`, which maps transport errors and
non-2xx responses onto the gateway error taxonomy.
"""

import base64
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from .errors import AuthError, ProviderError, ProviderTimeout
from .token_cache import TokenCache

logger = logging.getLogger(__name__)


# ── Payloads ─────────────────────────────────────────────────────────────────

@dataclass
class ReferenceImage:
    """An image sent inline to a provider."""
    data: bytes
    mime_type: str = "image/png"
    url: Optional[str] = None

    def b64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")


@dataclass
class GenerationResult:
    text: Optional[str] = None
    image: Optional[bytes] = None
    mime_type: Optional[str] = None
    raw: dict = field(default_factory=dict, repr=False)


class TaskStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TaskPoll:
    task_id: str
    status: TaskStatus
    output: Optional[str] = None
    message: Optional[str] = None


# ── Capabilities ─────────────────────────────────────────────────────────────

@runtime_checkable
class SyncGenerator(Protocol):
    name: str
    auth: "AuthScheme"

    async def generate(
        self,
        prompt: str,
        reference_image: Optional[ReferenceImage] = None,
        expect: str = "text",
        json_output: bool = False,
    ) -> GenerationResult:
        ...


@runtime_checkable
class AsyncTaskGenerator(Protocol):
    name: str
    auth: "AuthScheme"

    async def submit(self, source_image: str, prompt: str, params: dict) -> str:
        ...

    async def poll(self, task_id: str) -> TaskPoll:
        ...


# ── Auth schemes ─────────────────────────────────────────────────────────────

class AuthScheme:
    """Produces request headers for one provider."""

    requires_oauth = False

    async def authenticate(self):
        """Acquire the credential up front; static keys have nothing to fetch."""

    async def headers(self) -> dict:
        raise NotImplementedError


class ApiKeyAuth(AuthScheme):
    """Static key in a header, e.g. `x-goog-api-key`."""

    def __init__(self, api_key: str, header: str = "x-goog-api-key", provider: str = ""):
        self.api_key = api_key
        self.header = header
        self.provider = provider

    async def headers(self) -> dict:
        if not self.api_key:
            raise AuthError(f"No API key configured for {self.provider or 'provider'}", provider=self.provider)
        return {self.header: self.api_key}


class StaticBearerAuth(ApiKeyAuth):
    """Static API key sent as a bearer token (Kie.ai)."""

    def __init__(self, api_key: str, provider: str = ""):
        super().__init__(api_key, header="Authorization", provider=provider)

    async def headers(self) -> dict:
        headers = await super().headers()
        return {"Authorization": f"Bearer {headers['Authorization']}"}


class OAuthBearerAuth(AuthScheme):
    """Short-lived bearer from the service-account TokenCache."""

    requires_oauth = True

    def __init__(self, token_cache: TokenCache):
        self.token_cache = token_cache

    async def authenticate(self):
        await self.token_cache.get_token()

    async def headers(self) -> dict:
        token = await self.token_cache.get_token()
        return {"Authorization": f"Bearer {token}"}


# ── HTTP helper ──────────────────────────────────────────────────────────────

def _error_detail(resp: httpx.Response) -> str:
    """Pull a readable message out of the usual provider error bodies."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:300]
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
        for key in ("msg", "message", "detail"):
            if body.get(key):
                return str(body[key])
    return str(body)[:300]


async def send(
    client: httpx.AsyncClient,
    provider: str,
    method: str,
    url: str,
    timeout: Optional[float] = None,
    **kwargs: Any,
) -> httpx.Response:
    """Issue one request and normalize failures. No retries."""
    try:
        resp = await client.request(method, url, timeout=timeout, **kwargs)
    except httpx.TimeoutException as e:
        raise ProviderTimeout(f"{provider} timed out: {e.__class__.__name__}", provider=provider)
    except httpx.HTTPError as e:
        raise ProviderError(f"{provider} request failed: {e}", provider=provider)

    if not resp.is_success:
        detail = _error_detail(resp)
        logger.warning(f"{provider} {method} {url} → {resp.status_code}: {detail}")
        raise ProviderError(
            f"{provider} returned {resp.status_code}: {detail}",
            provider=provider,
            status_code=resp.status_code,
        )
    return resp


def json_body(resp: httpx.Response, provider: str) -> Any:
    try:
        return resp.json()
    except ValueError:
        raise ProviderError(f"{provider} returned a non-JSON body: {resp.text[:200]}", provider=provider)
