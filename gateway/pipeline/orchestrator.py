"""
JobOrchestrator: turns one generation request into a tracked job.

Submission (synchronous, nothing is created on a ValidationError):
  validate → get-or-create Project → resolve source image → create Job (pending)
  → spawn the job task → return the pending Job

Job task:
  running → credential (OAuth providers only) → provider call → done | failed

No retries. Each job runs in its own asyncio task; the only state two jobs
share is their project's derived asset (last write wins).
"""

import time
import asyncio
import logging
from typing import Any, Awaitable, Optional
from urllib.parse import urlparse
from uuid import uuid4

from pydantic import BaseModel

from .. import metrics
from ..errors import GatewayError, MissingArtifact, ProviderError, ProviderTimeout, ValidationError
from ..gemini import parse_json_text
from ..kie import ASPECT_RATIOS
from ..presets import (
    build_analysis_prompt,
    build_image_prompt,
    build_section_prompt,
    build_video_prompt,
    get_image_style,
    landing_section_names,
)
from ..providers import AsyncTaskGenerator, GenerationResult, SyncGenerator, TaskPoll
from .job_store import JobStore
from .models import Job, JobError, JobKind, JobStatus, Project
from .project_store import ProjectStore
from .storage import AssetStore, download_image, sniff_mime

logger = logging.getLogger(__name__)

# Kinds that cannot run without a source image
SOURCE_REQUIRED = {JobKind.ANALYZE, JobKind.GENERATE_VIDEO}
# Kinds that use a source image when the project has one
SOURCE_OPTIONAL = {JobKind.GENERATE_IMAGE}
# Kinds whose output becomes the project's derived asset
ASSET_PRODUCING = {JobKind.GENERATE_IMAGE}
# Kinds that hand the source URL to the provider instead of inline bytes
URL_FORWARDING = {JobKind.GENERATE_VIDEO}


def require_secure_url(url: str, field: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme != "https" or not parsed.netloc:
        raise ValidationError(f"{field} must be an https:// URL, got {url!r}")
    return url


class JobOrchestrator:
    """
    Usage:
        orchestrator = JobOrchestrator(ProviderFactory(settings), assets=AssetStore(url))

        job = orchestrator.submit(JobKind.GENERATE_IMAGE, GenerateImageRequest(prompt="..."))
        ...
        job = orchestrator.get_job(job.job_id)
    """

    def __init__(
        self,
        providers,
        assets: AssetStore,
        projects: Optional[ProjectStore] = None,
        jobs: Optional[JobStore] = None,
        timeout: float = 120.0,
    ):
        self.providers = providers
        self.assets = assets
        self.projects = projects or ProjectStore()
        self.jobs = jobs or JobStore()
        self.timeout = timeout
        self._tasks: dict[str, asyncio.Task] = {}

        self._handlers = {
            JobKind.ANALYZE: self._run_analyze,
            JobKind.GENERATE_IMAGE: self._run_generate_image,
            JobKind.GENERATE_LANDING_SECTION: self._run_landing_section,
            JobKind.GENERATE_VIDEO: self._run_generate_video,
        }

    # ── Queries ──────────────────────────────────────────────────────────

    def get_job(self, job_id: str) -> Job:
        return self.jobs.get(job_id)

    def get_project(self, project_id: str) -> Project:
        return self.projects.get(project_id)

    def jobs_for_project(self, project_id: str) -> list[Job]:
        self.projects.get(project_id)
        return self.jobs.list_for_project(project_id)

    async def poll_video(self, task_id: str) -> TaskPoll:
        """Pass-through to the video provider; task ids are not job ids."""
        video = self.providers.video_provider
        return await self._bounded(video.poll(task_id), video.name)

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> Job:
        """Wait for a job to finish. Giving up does not cancel the job."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return self.jobs.get(job_id)

    async def aclose(self):
        """Let in-flight jobs finish, then release provider connections."""
        pending = list(self._tasks.values())
        if pending:
            logger.info(f"Waiting for {len(pending)} in-flight job(s)")
            await asyncio.gather(*pending, return_exceptions=True)
        await self.providers.aclose()

    # ── Submission ───────────────────────────────────────────────────────

    def _normalize(self, kind: JobKind, request: BaseModel) -> dict[str, Any]:
        params = request.model_dump(by_alias=True, exclude_none=True)
        params.pop("projectId", None)

        prompt = (params.get("prompt") or "").strip()
        if kind != JobKind.ANALYZE and not prompt:
            raise ValidationError("prompt is required")
        if prompt:
            params["prompt"] = prompt

        if kind == JobKind.GENERATE_IMAGE:
            get_image_style(params.get("style"))
        elif kind == JobKind.GENERATE_LANDING_SECTION:
            section = (params.get("section") or "").strip().lower()
            if section not in landing_section_names():
                raise ValidationError(
                    f"Unknown landing section: {section!r}. Available: {landing_section_names()}"
                )
            params["section"] = section
        elif kind == JobKind.GENERATE_VIDEO:
            if params.get("aspectRatio") not in ASPECT_RATIOS:
                raise ValidationError(
                    f"aspectRatio must be one of {sorted(ASPECT_RATIOS)}, got {params.get('aspectRatio')!r}"
                )

        # Caller-supplied image URLs share one slot
        explicit = params.pop("imageUrl", None)
        explicit = params.pop("sourceImage", None) or explicit
        if explicit:
            params["sourceImage"] = require_secure_url(explicit, "image URL")
        return params

    def submit(self, kind: JobKind, request: BaseModel) -> Job:
        """Create a pending job and start it. Must be called inside a running event loop."""
        kind = JobKind(kind)
        metrics.inc_counter(f"requests.{kind.value}")
        params = self._normalize(kind, request)

        project_id = getattr(request, "project_id", None) or uuid4().hex
        explicit = params.get("sourceImage")
        project = self.projects.get_or_create(project_id, explicit)

        if kind in SOURCE_REQUIRED or kind in SOURCE_OPTIONAL:
            source = explicit or project.derived_asset_url or project.original_image_url
            if source:
                params["sourceImage"] = source
            elif kind in SOURCE_REQUIRED:
                raise ValidationError(
                    f"{kind.value} needs a source image and project {project_id} has none"
                )
            if kind in URL_FORWARDING:
                # Also covers derived asset URLs built from PUBLIC_BASE_URL
                require_secure_url(source, "source image")

        provider = self.providers.provider_for(kind)
        job = self.jobs.create(kind, project_id, params, provider)

        task = asyncio.get_running_loop().create_task(self._run(job))
        self._tasks[job.job_id] = task
        task.add_done_callback(lambda _t, job_id=job.job_id: self._tasks.pop(job_id, None))
        return job

    # ── Execution ────────────────────────────────────────────────────────

    async def _bounded(self, awaitable: Awaitable, provider: str):
        try:
            return await asyncio.wait_for(awaitable, self.timeout)
        except asyncio.TimeoutError:
            raise ProviderTimeout(f"{provider} did not answer within {self.timeout:.0f}s", provider=provider)

    async def _run(self, job: Job):
        metrics.add_gauge("active_jobs", 1)
        started = time.monotonic()
        ok = False
        try:
            self.jobs.transition(job.job_id, JobStatus.RUNNING)
            provider = self.providers.get_provider(job.provider)

            if provider.auth.requires_oauth:
                await self._bounded(provider.auth.authenticate(), provider.name)

            result = await self._handlers[job.kind](job, provider)
        except GatewayError as e:
            self._fail(job, e)
        except Exception as e:
            logger.error(f"[{job.job_id}] unexpected failure: {e}", exc_info=True)
            self._fail(job, ProviderError(f"Unexpected error: {e}", provider=job.provider))
        else:
            self.jobs.transition(job.job_id, JobStatus.DONE, result=result)
            metrics.inc_counter(f"jobs.done.{job.kind.value}")
            if job.kind in ASSET_PRODUCING:
                self.projects.set_derived_asset(job.project_id, result["assetUrl"])
            ok = True
        finally:
            metrics.add_gauge("active_jobs", -1)
            metrics.record_latency(job.provider, (time.monotonic() - started) * 1000, ok=ok)

    def _fail(self, job: Job, error: GatewayError):
        logger.warning(f"[{job.job_id}] {job.kind.value} failed: {error.code}: {error.message}")
        self.jobs.transition(
            job.job_id,
            JobStatus.FAILED,
            error=JobError(
                code=error.code,
                message=error.message,
                provider=error.provider,
                status_code=error.status_code,
            ),
        )
        metrics.inc_counter(f"jobs.failed.{job.kind.value}")
        metrics.inc_counter(f"errors.{error.code}")
        metrics.record_error(job.provider, error.code, error.message, job.job_id)

    def _require(self, provider, capability, kind: JobKind):
        if not isinstance(provider, capability):
            raise ProviderError(
                f"Provider {provider.name} cannot run {kind.value} jobs",
                provider=provider.name,
            )

    async def _reference(self, job: Job, provider_name: str):
        url = job.request.get("sourceImage")
        if not url:
            return None
        return await self._bounded(
            download_image(self.providers.http_client, url, self.assets, self.timeout),
            provider_name,
        )

    async def _generate(self, provider, prompt: str, **kwargs) -> GenerationResult:
        return await self._bounded(provider.generate(prompt, **kwargs), provider.name)

    async def _run_analyze(self, job: Job, provider):
        self._require(provider, SyncGenerator, job.kind)
        image = await self._reference(job, provider.name)
        generated = await self._generate(
            provider,
            build_analysis_prompt(job.request.get("prompt")),
            reference_image=image,
            expect="text",
            json_output=True,
        )
        return {"analysis": parse_json_text(generated.text, provider.name)}

    async def _run_generate_image(self, job: Job, provider):
        self._require(provider, SyncGenerator, job.kind)
        image = await self._reference(job, provider.name)
        generated = await self._generate(
            provider,
            build_image_prompt(job.request["prompt"], job.request.get("style"), has_reference=image is not None),
            reference_image=image,
            expect="image",
        )
        mime_type = sniff_mime(generated.image, generated.mime_type) or "image/png"
        asset_id = self.assets.put(generated.image, mime_type)
        asset_url = self.assets.url_for(asset_id)

        # Bytes live only in the AssetStore; the job keeps a reference
        result = {
            "image": asset_url,
            "assetId": asset_id,
            "mimeType": mime_type,
            "assetUrl": asset_url,
        }
        if generated.text:
            result["caption"] = generated.text
        return result

    async def _run_landing_section(self, job: Job, provider):
        self._require(provider, SyncGenerator, job.kind)
        req = job.request
        generated = await self._generate(
            provider,
            build_section_prompt(req["section"], req["prompt"], req.get("productName"), req.get("language", "en")),
            expect="text",
            json_output=True,
        )
        section = parse_json_text(generated.text, provider.name)
        if not isinstance(section, dict):
            raise MissingArtifact(f"{provider.name} returned no section object", provider=provider.name)
        section.setdefault("type", req["section"])
        return {"section": section}

    async def _run_generate_video(self, job: Job, provider):
        self._require(provider, AsyncTaskGenerator, job.kind)
        req = job.request
        task_id = await self._bounded(
            provider.submit(
                req["sourceImage"],
                build_video_prompt(req["prompt"]),
                {"duration": req.get("duration"), "aspect_ratio": req.get("aspectRatio")},
            ),
            provider.name,
        )
        return {"taskId": task_id, "provider": provider.name}
