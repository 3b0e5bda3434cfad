"""
Gemini `generateContent` client: text and image generation.

Works against two endpoints with the same request/response shape:
  - Generative Language API (static API key)
  - Vertex AI publisher models (OAuth bearer from the TokenCache)
"""

import json
import base64
import logging
from typing import Optional

import httpx

from .errors import MissingArtifact, ProviderError
from .providers import (
    AuthScheme,
    GenerationResult,
    ReferenceImage,
    json_body,
    send,
)

logger = logging.getLogger(__name__)


def generative_language_url(api_base: str, model: str) -> str:
    return f"{api_base.rstrip('/')}/models/{model}:generateContent"


def vertex_url(project: str, location: str, model: str) -> str:
    return (
        f"https://{location}-aiplatform.googleapis.com/v1/projects/{project}"
        f"/locations/{location}/publishers/google/models/{model}:generateContent"
    )


def parse_json_text(text: Optional[str], provider: Optional[str] = None) -> dict:
    """Parse JSON from a model reply, tolerating markdown code fences."""
    text = (text or "").strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        if "```" in text:
            block = text.split("```")[1]
            if block.startswith("json"):
                block = block[4:]
            try:
                return json.loads(block.strip())
            except json.JSONDecodeError:
                pass
        raise ProviderError(f"Model returned invalid JSON: {text[:200]}", provider=provider)


class GeminiClient:
    """
    SyncGenerator over `generateContent`.

    Usage:
        client = GeminiClient("gemini-text", url, ApiKeyAuth(key), http)
        result = await client.generate("Describe this product", reference_image=img)
    """

    def __init__(
        self,
        name: str,
        url: str,
        auth: AuthScheme,
        http_client: httpx.AsyncClient,
        timeout: float = 120.0,
        temperature: float = 0.7,
    ):
        self.name = name
        self.url = url
        self.auth = auth
        self.http_client = http_client
        self.timeout = timeout
        self.temperature = temperature

    def _build_body(
        self,
        prompt: str,
        reference_image: Optional[ReferenceImage],
        expect: str,
        json_output: bool,
    ) -> dict:
        parts = []
        if reference_image is not None:
            parts.append({
                "inlineData": {
                    "mimeType": reference_image.mime_type,
                    "data": reference_image.b64(),
                }
            })
        parts.append({"text": prompt})

        config: dict = {"temperature": self.temperature}
        if expect == "image":
            config["responseModalities"] = ["TEXT", "IMAGE"]
        elif json_output:
            config["responseMimeType"] = "application/json"

        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": config,
        }

    async def generate(
        self,
        prompt: str,
        reference_image: Optional[ReferenceImage] = None,
        expect: str = "text",
        json_output: bool = False,
    ) -> GenerationResult:
        headers = await self.auth.headers()
        body = self._build_body(prompt, reference_image, expect, json_output)

        logger.info(
            f"{self.name}: generateContent expect={expect} "
            f"reference={'yes' if reference_image else 'no'}"
        )
        resp = await send(
            self.http_client, self.name, "POST", self.url,
            timeout=self.timeout, headers=headers, json=body,
        )
        return self._parse(json_body(resp, self.name), expect)

    def _parse(self, payload: dict, expect: str) -> GenerationResult:
        if not isinstance(payload, dict):
            raise ProviderError(f"{self.name} returned an unexpected body", provider=self.name)

        # Some errors come back as 200 with an error object
        if isinstance(payload.get("error"), dict):
            raise ProviderError(
                f"{self.name} error: {payload['error'].get('message', 'unknown')}",
                provider=self.name,
            )

        block = (payload.get("promptFeedback") or {}).get("blockReason")
        if block:
            raise ProviderError(f"{self.name} blocked the prompt: {block}", provider=self.name)

        candidates = payload.get("candidates") or []
        if not candidates:
            raise MissingArtifact(f"{self.name} returned no candidates", provider=self.name)

        parts = (candidates[0].get("content") or {}).get("parts") or []
        texts = []
        image = None
        mime_type = None
        for part in parts:
            if "text" in part:
                texts.append(part["text"])
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and image is None and inline.get("data"):
                try:
                    image = base64.b64decode(inline["data"])
                except (ValueError, TypeError):
                    raise ProviderError(f"{self.name} returned undecodable image data", provider=self.name)
                mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"

        text = "".join(texts).strip() or None

        if expect == "image" and image is None:
            reason = candidates[0].get("finishReason", "")
            raise MissingArtifact(
                f"{self.name} response contained no image data {reason}".strip(),
                provider=self.name,
            )
        if expect == "text" and not text:
            raise MissingArtifact(f"{self.name} response contained no text", provider=self.name)

        return GenerationResult(text=text, image=image, mime_type=mime_type, raw=payload)
