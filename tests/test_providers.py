"""
Provider clients: request shape, auth headers and error normalization.
"""

import base64

import httpx
import pytest

from gateway.errors import AuthError, MissingArtifact, ProviderError, ProviderTimeout
from gateway.gemini import GeminiClient, parse_json_text
from gateway.kie import KieVideoClient
from gateway.providers import (
    ApiKeyAuth,
    AsyncTaskGenerator,
    OAuthBearerAuth,
    ReferenceImage,
    StaticBearerAuth,
    SyncGenerator,
    TaskStatus,
    send,
)

from conftest import (
    KIE_BASE,
    KIE_POLL_URL,
    KIE_SUBMIT_URL,
    SERVICE_ACCOUNT,
    TEXT_URL,
    TOKEN_URI,
    StaticAssertionCache,
    gemini_image,
    gemini_text,
    make_png,
    request_json,
    token_response,
)

SOURCE = "https://cdn.test/product.png"


@pytest.fixture
def gemini(http_client):
    return GeminiClient("gemini-text", TEXT_URL, ApiKeyAuth("gemini-key"), http_client, timeout=5)


@pytest.fixture
def kie(http_client):
    return KieVideoClient("kie-veo", KIE_BASE, StaticBearerAuth("kie-key"), http_client, timeout=5)


class TestCapabilities:

    def test_clients_match_their_capability(self, gemini, kie):
        assert isinstance(gemini, SyncGenerator)
        assert isinstance(kie, AsyncTaskGenerator)
        assert not isinstance(gemini, AsyncTaskGenerator)


class TestAuthSchemes:

    @pytest.mark.asyncio
    async def test_api_key_header(self):
        assert await ApiKeyAuth("k").headers() == {"x-goog-api-key": "k"}

    @pytest.mark.asyncio
    async def test_static_bearer(self):
        assert await StaticBearerAuth("k").headers() == {"Authorization": "Bearer k"}

    @pytest.mark.asyncio
    async def test_missing_key_is_an_auth_error(self):
        with pytest.raises(AuthError):
            await StaticBearerAuth("", provider="kie").headers()

    @pytest.mark.asyncio
    async def test_oauth_bearer_uses_token_cache(self, upstream, http_client):
        upstream.add("POST", TOKEN_URI, token_response("ya29.abc"))
        auth = OAuthBearerAuth(StaticAssertionCache(SERVICE_ACCOUNT, http_client=http_client))

        assert auth.requires_oauth
        await auth.authenticate()
        assert await auth.headers() == {"Authorization": "Bearer ya29.abc"}
        assert len(upstream.calls_to(TOKEN_URI)) == 1


class TestSend:

    @pytest.mark.asyncio
    async def test_timeout_is_provider_timeout(self, upstream, http_client):
        def slow(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        upstream.add("GET", "https://slow.test/x", slow)
        with pytest.raises(ProviderTimeout):
            await send(http_client, "slow", "GET", "https://slow.test/x")

    @pytest.mark.asyncio
    async def test_non_2xx_carries_status_and_message(self, upstream, http_client):
        upstream.json("GET", "https://bad.test/x", {"error": {"message": "quota exceeded"}}, status=429)
        with pytest.raises(ProviderError) as exc:
            await send(http_client, "bad", "GET", "https://bad.test/x")
        assert exc.value.status_code == 429
        assert "quota exceeded" in exc.value.message
        assert exc.value.provider == "bad"


class TestGeminiClient:

    @pytest.mark.asyncio
    async def test_text_generation(self, upstream, gemini):
        upstream.json("POST", TEXT_URL, gemini_text('{"product": "mug"}'))

        result = await gemini.generate("describe", expect="text", json_output=True)

        assert result.text == '{"product": "mug"}'
        request = upstream.calls_to(TEXT_URL)[0]
        assert request.headers["x-goog-api-key"] == "gemini-key"
        body = request_json(request)
        assert body["generationConfig"]["responseMimeType"] == "application/json"
        assert body["contents"][0]["parts"][-1] == {"text": "describe"}

    @pytest.mark.asyncio
    async def test_reference_image_is_sent_inline(self, upstream, gemini):
        upstream.json("POST", TEXT_URL, gemini_text("ok"))
        png = make_png()

        await gemini.generate("look", reference_image=ReferenceImage(png, "image/png"))

        inline = request_json(upstream.calls[0])["contents"][0]["parts"][0]["inlineData"]
        assert inline["mimeType"] == "image/png"
        assert base64.b64decode(inline["data"]) == png

    @pytest.mark.asyncio
    async def test_image_generation(self, upstream, gemini):
        png = make_png()
        upstream.json("POST", TEXT_URL, gemini_image(png))

        result = await gemini.generate("ad", expect="image")

        assert result.image == png
        assert result.mime_type == "image/png"
        assert request_json(upstream.calls[0])["generationConfig"]["responseModalities"] == ["TEXT", "IMAGE"]

    @pytest.mark.asyncio
    async def test_missing_image_is_missing_artifact(self, upstream, gemini):
        upstream.json("POST", TEXT_URL, gemini_text("I cannot draw that"))
        with pytest.raises(MissingArtifact):
            await gemini.generate("ad", expect="image")

    @pytest.mark.asyncio
    async def test_no_candidates_is_missing_artifact(self, upstream, gemini):
        upstream.json("POST", TEXT_URL, {"candidates": []})
        with pytest.raises(MissingArtifact):
            await gemini.generate("x")

    @pytest.mark.asyncio
    async def test_blocked_prompt_is_provider_error(self, upstream, gemini):
        upstream.json("POST", TEXT_URL, {"promptFeedback": {"blockReason": "SAFETY"}})
        with pytest.raises(ProviderError, match="SAFETY"):
            await gemini.generate("x")

    @pytest.mark.asyncio
    async def test_error_body_is_provider_error(self, upstream, gemini):
        upstream.json("POST", TEXT_URL, {"error": {"code": 400, "message": "API key not valid"}}, status=400)
        with pytest.raises(ProviderError, match="API key not valid"):
            await gemini.generate("x")


class TestParseJsonText:

    def test_plain_json(self):
        assert parse_json_text('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        assert parse_json_text('```json\n{"a": 1}\n```') == {"a": 1}

    def test_garbage(self):
        with pytest.raises(ProviderError):
            parse_json_text("not json at all", "gemini-text")


class TestKieVideoClient:

    @pytest.mark.asyncio
    async def test_submit_returns_task_id(self, upstream, kie):
        upstream.image(SOURCE, make_png())
        upstream.json("POST", KIE_SUBMIT_URL, {"code": 200, "msg": "success", "data": {"taskId": "task-1"}})

        task_id = await kie.submit(SOURCE, "slow push-in", {"duration": 8, "aspect_ratio": "9:16"})

        assert task_id == "task-1"
        request = upstream.calls_to(KIE_SUBMIT_URL)[0]
        assert request.headers["Authorization"] == "Bearer kie-key"
        body = request_json(request)
        assert body["imageUrls"] == [SOURCE]
        assert body["aspectRatio"] == "9:16"
        assert body["duration"] == 8
        assert body["model"] == "veo3_fast"

    @pytest.mark.asyncio
    async def test_unreachable_source_fails_before_submit(self, upstream, kie):
        upstream.json("HEAD", SOURCE, {"error": "not found"}, status=404)

        with pytest.raises(ProviderError) as exc:
            await kie.submit(SOURCE, "p", {})

        assert exc.value.status_code == 404
        assert upstream.calls_to(KIE_SUBMIT_URL) == []

    @pytest.mark.asyncio
    async def test_business_error_code_is_provider_error(self, upstream, kie):
        upstream.image(SOURCE, make_png())
        upstream.json("POST", KIE_SUBMIT_URL, {"code": 402, "msg": "Insufficient credits"})

        with pytest.raises(ProviderError, match="Insufficient credits"):
            await kie.submit(SOURCE, "p", {})

    @pytest.mark.asyncio
    async def test_submit_without_task_id_is_missing_artifact(self, upstream, kie):
        upstream.image(SOURCE, make_png())
        upstream.json("POST", KIE_SUBMIT_URL, {"code": 200, "data": {}})

        with pytest.raises(MissingArtifact):
            await kie.submit(SOURCE, "p", {})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("record,status,output", [
        ({"successFlag": 0}, TaskStatus.PROCESSING, None),
        ({"successFlag": 1, "response": {"resultUrls": ["https://v.test/a.mp4"]}}, TaskStatus.COMPLETED, "https://v.test/a.mp4"),
        ({"successFlag": 1, "response": {"resultUrls": '["https://v.test/b.mp4"]'}}, TaskStatus.COMPLETED, "https://v.test/b.mp4"),
        ({"successFlag": 2, "errorMessage": "content policy"}, TaskStatus.FAILED, None),
        ({"status": "SUCCESS", "videoUrl": "https://v.test/c.mp4"}, TaskStatus.COMPLETED, "https://v.test/c.mp4"),
    ])
    async def test_poll_maps_status(self, upstream, kie, record, status, output):
        upstream.json("GET", KIE_POLL_URL, {"code": 200, "data": {"taskId": "t", **record}})

        poll = await kie.poll("t")

        assert poll.status == status
        assert poll.output == output
        assert upstream.calls_to(KIE_POLL_URL)[0].url.params["taskId"] == "t"

    @pytest.mark.asyncio
    async def test_completed_without_url_is_missing_artifact(self, upstream, kie):
        upstream.json("GET", KIE_POLL_URL, {"code": 200, "data": {"successFlag": 1, "response": {}}})
        with pytest.raises(MissingArtifact):
            await kie.poll("t")

    @pytest.mark.asyncio
    async def test_reachability_check_reads_headers_only(self, upstream, kie):
        upstream.image(SOURCE, make_png())
        upstream.json("POST", KIE_SUBMIT_URL, {"code": 200, "data": {"taskId": "task-1"}})

        await kie.submit(SOURCE, "p", {})

        assert [r.method for r in upstream.calls_to(SOURCE)] == ["HEAD"]

    @pytest.mark.asyncio
    async def test_head_refused_falls_back_to_get(self, upstream, kie):
        upstream.json("HEAD", SOURCE, {"error": "method not allowed"}, status=405)
        upstream.add("GET", SOURCE, lambda request: httpx.Response(
            200, content=make_png(), headers={"content-type": "image/png"},
        ))
        upstream.json("POST", KIE_SUBMIT_URL, {"code": 200, "data": {"taskId": "task-2"}})

        assert await kie.submit(SOURCE, "p", {}) == "task-2"
        assert [r.method for r in upstream.calls_to(SOURCE)] == ["HEAD", "GET"]

    @pytest.mark.asyncio
    async def test_source_that_is_not_an_image_fails_before_submit(self, upstream, kie):
        upstream.add("HEAD", SOURCE, lambda request: httpx.Response(200, headers={"content-type": "text/html"}))

        with pytest.raises(ProviderError, match="not an image"):
            await kie.submit(SOURCE, "p", {})
        assert upstream.calls_to(KIE_SUBMIT_URL) == []

    @pytest.mark.asyncio
    async def test_submit_with_non_object_body_is_provider_error(self, upstream, kie):
        upstream.image(SOURCE, make_png())
        upstream.json("POST", KIE_SUBMIT_URL, ["task-1"])

        with pytest.raises(ProviderError, match="unexpected body"):
            await kie.submit(SOURCE, "p", {})

    @pytest.mark.asyncio
    async def test_submit_with_non_object_data_is_missing_artifact(self, upstream, kie):
        upstream.image(SOURCE, make_png())
        upstream.json("POST", KIE_SUBMIT_URL, {"code": 200, "data": "queued"})

        with pytest.raises(MissingArtifact):
            await kie.submit(SOURCE, "p", {})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        [1, 2],
        "still working",
        {"code": 200, "data": "oops"},
        {"code": 200, "data": [{"successFlag": 1}]},
    ])
    async def test_poll_with_malformed_body_is_provider_error(self, upstream, kie, body):
        upstream.json("GET", KIE_POLL_URL, body)

        with pytest.raises(ProviderError) as exc:
            await kie.poll("t")

        assert exc.value.provider == "kie-veo"
