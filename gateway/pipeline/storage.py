"""
Generated-asset storage and reference-image download.

Generated images live in memory and are served back by the gateway at
  {PUBLIC_BASE_URL}/assets/{asset_id}
so a later step (video) can hand the URL to a provider.
"""

import logging
import secrets
import threading
from io import BytesIO
from typing import Optional

import httpx
from PIL import Image, UnidentifiedImageError

from ..errors import NotFound, ProviderError
from ..providers import ReferenceImage, send

logger = logging.getLogger(__name__)

ASSET_PATH = "/assets/"


def sniff_mime(data: bytes, fallback: Optional[str] = None) -> Optional[str]:
    """Detect the image MIME type from the bytes themselves."""
    try:
        with Image.open(BytesIO(data)) as img:
            return Image.MIME.get(img.format or "", fallback)
    except (UnidentifiedImageError, OSError):
        return fallback


class AssetStore:
    def __init__(self, public_base_url: str):
        self.public_base_url = public_base_url.rstrip("/")
        self._assets: dict[str, tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    def put(self, data: bytes, mime_type: str = "image/png") -> str:
        asset_id = secrets.token_hex(16)
        with self._lock:
            self._assets[asset_id] = (data, mime_type)
        return asset_id

    def get(self, asset_id: str) -> tuple[bytes, str]:
        with self._lock:
            asset = self._assets.get(asset_id)
        if asset is None:
            raise NotFound(f"Asset {asset_id} not found")
        return asset

    def url_for(self, asset_id: str) -> str:
        return f"{self.public_base_url}{ASSET_PATH}{asset_id}"

    def asset_id_from_url(self, url: str) -> Optional[str]:
        prefix = f"{self.public_base_url}{ASSET_PATH}"
        if url.startswith(prefix):
            return url[len(prefix):] or None
        return None


async def download_image(
    client: httpx.AsyncClient,
    url: str,
    assets: Optional[AssetStore] = None,
    timeout: Optional[float] = None,
) -> ReferenceImage:
    """Fetch a reference image; our own assets are read without a round trip."""
    asset_id = assets.asset_id_from_url(url) if assets else None
    if asset_id:
        data, mime_type = assets.get(asset_id)
        return ReferenceImage(data=data, mime_type=mime_type, url=url)

    resp = await send(client, "source-image", "GET", url, timeout=timeout, follow_redirects=True)
    data = resp.content
    header_mime = resp.headers.get("content-type", "").split(";")[0].strip() or None
    mime_type = sniff_mime(data)
    if mime_type is None:
        raise ProviderError(
            f"Reference image at {url} is not a readable image ({header_mime or 'unknown type'})",
            provider="source-image",
        )
    logger.info(f"Downloaded reference image {url} ({len(data)} bytes, {mime_type})")
    return ReferenceImage(data=data, mime_type=mime_type, url=url)
