"""
Kie.ai Veo client: image-to-video as an asynchronous task.

submit() returns Kie's task id right away; poll() reads the task record.
Waiting for completion is the caller's business: nothing here loops.
"""

import json
import logging
from typing import Optional

import httpx

from .errors import MissingArtifact, ProviderError, ProviderTimeout
from .providers import AuthScheme, TaskPoll, TaskStatus, json_body, send

logger = logging.getLogger(__name__)

DEFAULT_ASPECT_RATIO = "9:16"
ASPECT_RATIOS = {"16:9", "9:16", "1:1", "Auto"}

# successFlag on the record-info payload
_SUCCESS_FLAGS = {
    0: TaskStatus.PROCESSING,
    1: TaskStatus.COMPLETED,
    2: TaskStatus.FAILED,
    3: TaskStatus.FAILED,
}
_STATUS_WORDS = {
    "success": TaskStatus.COMPLETED,
    "completed": TaskStatus.COMPLETED,
    "failed": TaskStatus.FAILED,
    "error": TaskStatus.FAILED,
    "generate_failed": TaskStatus.FAILED,
    "create_task_failed": TaskStatus.FAILED,
}


def _first_video_url(record: dict) -> Optional[str]:
    response = record.get("response") or {}
    urls = response.get("resultUrls") or record.get("resultUrls")
    if isinstance(urls, str):
        # Older records carry the list as a JSON-encoded string
        try:
            urls = json.loads(urls)
        except json.JSONDecodeError:
            urls = [urls]
    if isinstance(urls, list) and urls:
        return urls[0]
    return record.get("videoUrl") or record.get("video_url") or record.get("resultUrl")


class KieVideoClient:
    """AsyncTaskGenerator for Veo via Kie.ai."""

    def __init__(
        self,
        name: str,
        api_base: str,
        auth: AuthScheme,
        http_client: httpx.AsyncClient,
        model: str = "veo3_fast",
        timeout: float = 120.0,
    ):
        self.name = name
        self.api_base = api_base.rstrip("/")
        self.auth = auth
        self.http_client = http_client
        self.model = model
        self.timeout = timeout

    def _body(self, resp: httpx.Response, action: str) -> dict:
        body = json_body(resp, self.name)
        if not isinstance(body, dict):
            raise ProviderError(f"{self.name} {action} returned an unexpected body", provider=self.name)
        self._check_code(body, action)
        return body

    def _check_code(self, body: dict, action: str):
        # Kie wraps business errors in a 200 with its own code field
        code = body.get("code")
        if code is not None and code != 200:
            raise ProviderError(
                f"{self.name} {action} failed ({code}): {body.get('msg', 'unknown error')}",
                provider=self.name,
                status_code=code if isinstance(code, int) else None,
            )

    async def _ensure_reachable(self, source_image: str):
        """Kie only reports an unreachable image once the task fails; check first."""
        try:
            resp = await send(
                self.http_client, "source-image", "HEAD", source_image,
                timeout=self.timeout, follow_redirects=True,
            )
        except ProviderError as e:
            if e.status_code not in (405, 501):
                raise
            # Host refuses HEAD; read only the first chunk of a GET
            resp = await self._get_headers_only(source_image)
        content_type = resp.headers.get("content-type", "")
        if content_type and not content_type.startswith("image/"):
            raise ProviderError(
                f"Source image is not an image (content-type {content_type})",
                provider="source-image",
            )

    async def _get_headers_only(self, source_image: str) -> httpx.Response:
        try:
            async with self.http_client.stream(
                "GET", source_image, timeout=self.timeout, follow_redirects=True,
            ) as resp:
                if not resp.is_success:
                    raise ProviderError(
                        f"source-image returned {resp.status_code}",
                        provider="source-image",
                        status_code=resp.status_code,
                    )
                return resp
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"source-image timed out: {e.__class__.__name__}", provider="source-image")
        except httpx.HTTPError as e:
            raise ProviderError(f"source-image request failed: {e}", provider="source-image")

    async def submit(self, source_image: str, prompt: str, params: dict) -> str:
        await self._ensure_reachable(source_image)

        payload = {
            "prompt": prompt,
            "model": params.get("model") or self.model,
            "aspectRatio": params.get("aspect_ratio") or DEFAULT_ASPECT_RATIO,
            "imageUrls": [source_image],
        }
        if params.get("duration"):
            payload["duration"] = params["duration"]
        if params.get("callback_url"):
            payload["callBackUrl"] = params["callback_url"]

        headers = await self.auth.headers()
        logger.info(f"{self.name}: submitting model={payload['model']} aspect={payload['aspectRatio']}")
        resp = await send(
            self.http_client, self.name, "POST", f"{self.api_base}/veo/generate",
            timeout=self.timeout, headers=headers, json=payload,
        )
        body = self._body(resp, "submit")

        data = body.get("data")
        if not isinstance(data, dict):
            data = {}
        task_id = data.get("taskId") or data.get("task_id") or body.get("taskId")
        if not task_id:
            raise MissingArtifact(f"{self.name} submit returned no taskId", provider=self.name)

        logger.info(f"{self.name}: task submitted task_id={task_id}")
        return task_id

    async def poll(self, task_id: str) -> TaskPoll:
        headers = await self.auth.headers()
        resp = await send(
            self.http_client, self.name, "GET", f"{self.api_base}/veo/record-info",
            timeout=self.timeout, headers=headers, params={"taskId": task_id},
        )
        body = self._body(resp, "poll")

        record = body.get("data") or {}
        if not isinstance(record, dict):
            raise ProviderError(f"{self.name} poll returned an unexpected record", provider=self.name)
        flag = record.get("successFlag")
        if flag in _SUCCESS_FLAGS:
            status = _SUCCESS_FLAGS[flag]
        else:
            status = _STATUS_WORDS.get(str(record.get("status", "")).lower(), TaskStatus.PROCESSING)

        if status == TaskStatus.COMPLETED:
            video_url = _first_video_url(record)
            if not video_url:
                raise MissingArtifact(
                    f"{self.name} task {task_id} completed without a video URL",
                    provider=self.name,
                )
            return TaskPoll(task_id=task_id, status=status, output=video_url)

        if status == TaskStatus.FAILED:
            message = record.get("errorMessage") or record.get("message") or "unknown error"
            return TaskPoll(task_id=task_id, status=status, message=message)

        return TaskPoll(task_id=task_id, status=status)
