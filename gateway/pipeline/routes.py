"""
FastAPI routes for jobs, projects, video tasks and generated assets.

Job Endpoints:
  POST /jobs/analyze                   - Describe a product from its image
  POST /jobs/generate-image            - Ad image (seeds later video jobs)
  POST /jobs/generate-landing-section  - Landing page copy block
  POST /jobs/generate-video            - Image-to-video task submission
  GET  /job/{id}  (alias /jobs/{id})   - Job status, result or error

Project / Asset Endpoints:
  GET  /projects/{id}                  - Project state and its job ids
  GET  /video/tasks/{task_id}          - Poll the video provider
  GET  /assets/{asset_id}              - Generated image bytes
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from .. import metrics
from ..errors import GatewayError
from .models import (
    AnalyzeRequest,
    GenerateImageRequest,
    GenerateVideoRequest,
    JobAccepted,
    JobKind,
    JobStatusResponse,
    LandingSectionRequest,
    ProjectResponse,
    VideoTaskResponse,
)
from .orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)


def get_orchestrator(request: Request) -> JobOrchestrator:
    return request.app.state.orchestrator


def _http_error(e: GatewayError) -> HTTPException:
    metrics.inc_counter(f"errors.http.{e.code}")
    return HTTPException(status_code=e.http_status, detail=e.to_dict())


def _accept(orchestrator: JobOrchestrator, kind: JobKind, request) -> JobAccepted:
    try:
        job = orchestrator.submit(kind, request)
    except GatewayError as e:
        logger.info(f"Rejected {kind.value} request: {e.code}: {e.message}")
        raise _http_error(e)
    return JobAccepted(job_id=job.job_id, project_id=job.project_id, kind=job.kind, status=job.status)


# ═════════════════════════════════════════════════════════════════════════════
# Job Router
# ═════════════════════════════════════════════════════════════════════════════

job_router = APIRouter(tags=["jobs"])


@job_router.post("/jobs/analyze", response_model=JobAccepted, status_code=202)
async def submit_analyze(request: AnalyzeRequest, orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    return _accept(orchestrator, JobKind.ANALYZE, request)


@job_router.post("/jobs/generate-image", response_model=JobAccepted, status_code=202)
async def submit_generate_image(
    request: GenerateImageRequest, orchestrator: JobOrchestrator = Depends(get_orchestrator)
):
    return _accept(orchestrator, JobKind.GENERATE_IMAGE, request)


@job_router.post("/jobs/generate-landing-section", response_model=JobAccepted, status_code=202)
async def submit_landing_section(
    request: LandingSectionRequest, orchestrator: JobOrchestrator = Depends(get_orchestrator)
):
    return _accept(orchestrator, JobKind.GENERATE_LANDING_SECTION, request)


@job_router.post("/jobs/generate-video", response_model=JobAccepted, status_code=202)
async def submit_generate_video(
    request: GenerateVideoRequest, orchestrator: JobOrchestrator = Depends(get_orchestrator)
):
    return _accept(orchestrator, JobKind.GENERATE_VIDEO, request)


@job_router.get("/job/{job_id}", response_model=JobStatusResponse, response_model_exclude_none=True)
@job_router.get("/jobs/{job_id}", response_model=JobStatusResponse, response_model_exclude_none=True)
async def get_job_status(job_id: str, orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    """Status of a job; `result` only when done, `error` only when failed."""
    try:
        job = orchestrator.get_job(job_id)
    except GatewayError as e:
        raise _http_error(e)
    return JobStatusResponse.from_job(job)


# ═════════════════════════════════════════════════════════════════════════════
# Project Router
# ═════════════════════════════════════════════════════════════════════════════

project_router = APIRouter(tags=["projects"])


@project_router.get("/projects/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: str, orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    try:
        project = orchestrator.get_project(project_id)
        jobs = orchestrator.jobs_for_project(project_id)
    except GatewayError as e:
        raise _http_error(e)
    return ProjectResponse(**project.model_dump(), job_ids=[j.job_id for j in jobs])


@project_router.get("/video/tasks/{task_id}", response_model=VideoTaskResponse, response_model_exclude_none=True)
async def poll_video_task(task_id: str, orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    """Pass-through poll of the video provider, driven by the caller."""
    try:
        poll = await orchestrator.poll_video(task_id)
    except GatewayError as e:
        logger.warning(f"Video poll for {task_id} failed: {e.code}: {e.message}")
        raise _http_error(e)
    return VideoTaskResponse(task_id=poll.task_id, status=poll.status.value, output=poll.output, message=poll.message)


@project_router.get("/assets/{asset_id}")
async def get_asset(asset_id: str, orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    try:
        data, mime_type = orchestrator.assets.get(asset_id)
    except GatewayError as e:
        raise _http_error(e)
    return Response(content=data, media_type=mime_type)
