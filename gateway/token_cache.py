"""
Short-lived OAuth credential cache for Google service accounts.

Signs a JWT with the service-account key, trades it at the token endpoint
for an access token and keeps it until shortly before it expires.
Concurrent callers during a refresh share a single in-flight exchange.
"""

import os
import json
import time
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

import httpx
from google.auth import crypt, jwt

from .config import DEFAULT_OAUTH_SCOPE, DEFAULT_TOKEN_URI
from .errors import AuthError

logger = logging.getLogger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME = 3600  # seconds, Google's maximum
DEFAULT_EXPIRES_IN = 3600


@dataclass(frozen=True)
class CachedCredential:
    token: str
    expires_at: float

    def is_fresh(self, now: float, margin: float) -> bool:
        return now < self.expires_at - margin


def load_service_account(source: Union[str, dict, None]) -> dict:
    """Accept a parsed dict, a raw JSON string or a path to the key file."""
    if isinstance(source, dict):
        info = source
    elif not source:
        raise AuthError("No service account configured")
    else:
        text = source.strip()
        if not text.startswith("{") and os.path.isfile(text):
            try:
                with open(text, "r", encoding="utf-8") as fh:
                    text = fh.read()
            except OSError as e:
                raise AuthError(f"Cannot read service account file: {e}")
        try:
            info = json.loads(text)
        except json.JSONDecodeError as e:
            raise AuthError(f"Malformed service account JSON: {e}")

    if not isinstance(info, dict):
        raise AuthError("Malformed service account JSON: expected an object")
    missing = [k for k in ("client_email", "private_key") if not info.get(k)]
    if missing:
        raise AuthError(f"Service account is missing {', '.join(missing)}")
    return info


class TokenCache:
    """
    Usage:
        cache = TokenCache(service_account_json, scope=...)
        token = await cache.get_token()
    """

    def __init__(
        self,
        service_account: Union[str, dict, None],
        scope: str = DEFAULT_OAUTH_SCOPE,
        token_uri: Optional[str] = None,
        safety_margin: float = 60.0,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._service_account = service_account
        self._info: Optional[dict] = None
        self.scope = scope
        self._token_uri = token_uri
        self.safety_margin = safety_margin
        self.timeout = timeout
        self._http_client = http_client
        self._clock = clock

        self._credential: Optional[CachedCredential] = None
        self._refresh: Optional[asyncio.Future] = None
        self.exchange_count = 0

    @property
    def credential(self) -> Optional[CachedCredential]:
        return self._credential

    def invalidate(self):
        """Drop the cached credential; the next call performs a fresh exchange."""
        self._credential = None

    async def get_token(self) -> str:
        cred = self._credential
        if cred is not None and cred.is_fresh(self._clock(), self.safety_margin):
            return cred.token

        if self._refresh is None:
            self._refresh = asyncio.ensure_future(self._refresh_credential())
        # Shielded: a caller giving up must not cancel the exchange the others await.
        cred = await asyncio.shield(self._refresh)
        return cred.token

    async def _refresh_credential(self) -> CachedCredential:
        try:
            cred = await self._exchange()
            self._credential = cred
            return cred
        finally:
            self._refresh = None

    def _service_account_info(self) -> dict:
        if self._info is None:
            self._info = load_service_account(self._service_account)
        return self._info

    def _sign_assertion(self, issued_at: int) -> str:
        info = self._service_account_info()
        claims = {
            "iss": info["client_email"],
            "scope": self.scope,
            "aud": self._token_uri or info.get("token_uri") or DEFAULT_TOKEN_URI,
            "iat": issued_at,
            "exp": issued_at + ASSERTION_LIFETIME,
        }
        try:
            signer = crypt.RSASigner.from_service_account_info(info)
            assertion = jwt.encode(signer, claims)
        except (ValueError, TypeError) as e:
            raise AuthError(f"Cannot sign assertion with service account key: {e}")
        return assertion.decode("utf-8") if isinstance(assertion, bytes) else assertion

    async def _exchange(self) -> CachedCredential:
        issued_at = int(self._clock())
        assertion = self._sign_assertion(issued_at)
        info = self._service_account_info()
        token_uri = self._token_uri or info.get("token_uri") or DEFAULT_TOKEN_URI

        self.exchange_count += 1
        logger.info(f"Exchanging service-account assertion for {info['client_email']} at {token_uri}")

        data = {"grant_type": JWT_BEARER_GRANT, "assertion": assertion}
        try:
            if self._http_client is not None:
                resp = await self._http_client.post(token_uri, data=data, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(token_uri, data=data)
        except httpx.HTTPError as e:
            raise AuthError(f"Token exchange failed: {e}")

        if not resp.is_success:
            raise AuthError(
                f"Token endpoint returned {resp.status_code}: {resp.text[:300]}",
                status_code=resp.status_code,
            )

        try:
            body = resp.json()
        except ValueError:
            raise AuthError(f"Token endpoint returned non-JSON body: {resp.text[:200]}")

        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise AuthError("Token endpoint response has no access_token")

        try:
            expires_in = float(body.get("expires_in") or DEFAULT_EXPIRES_IN)
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN

        cred = CachedCredential(token=token, expires_at=self._clock() + expires_in)
        logger.info(f"Access token cached, expires in {int(expires_in)}s")
        return cred
