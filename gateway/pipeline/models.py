"""
Pydantic models and enums for projects, jobs and the HTTP surface.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Job kinds & status ───────────────────────────────────────────────────────

class JobKind(str, Enum):
    ANALYZE = "analyze"
    GENERATE_IMAGE = "generate-image"
    GENERATE_LANDING_SECTION = "generate-landing-section"
    GENERATE_VIDEO = "generate-video"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED)


# Allowed moves of the job state machine
TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING},
    JobStatus.RUNNING: {JobStatus.DONE, JobStatus.FAILED},
    JobStatus.DONE: set(),
    JobStatus.FAILED: set(),
}


# ── Entities ─────────────────────────────────────────────────────────────────

class Project(CamelModel):
    project_id: str
    original_image_url: Optional[str] = None
    derived_asset_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class JobError(CamelModel):
    code: str
    message: str
    provider: Optional[str] = None
    status_code: Optional[int] = None


class Job(CamelModel):
    job_id: str
    project_id: str
    kind: JobKind
    provider: str
    status: JobStatus = JobStatus.PENDING
    request: dict[str, Any] = Field(default_factory=dict)
    result: Optional[dict[str, Any]] = None
    error: Optional[JobError] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


# ── API request models ───────────────────────────────────────────────────────

class AnalyzeRequest(CamelModel):
    """Describe a product from its reference image."""
    project_id: Optional[str] = None
    image_url: Optional[str] = None
    prompt: Optional[str] = Field(None, description="Extra direction for the analysis")


class GenerateImageRequest(CamelModel):
    """Ad image; the project's latest image is used as reference when present."""
    project_id: Optional[str] = None
    prompt: str
    image_url: Optional[str] = None
    style: Optional[str] = Field(None, description="Key into the image style presets")


class LandingSectionRequest(CamelModel):
    project_id: Optional[str] = None
    section: str = Field(..., description="hero, features, benefits, testimonials, faq, cta")
    prompt: str
    product_name: Optional[str] = None
    language: str = "en"


class GenerateVideoRequest(CamelModel):
    project_id: Optional[str] = None
    prompt: str
    source_image: Optional[str] = None
    duration: int = Field(8, ge=1, le=60)
    aspect_ratio: str = "9:16"


# ── API responses ────────────────────────────────────────────────────────────

class JobAccepted(CamelModel):
    job_id: str
    project_id: str
    kind: JobKind
    status: JobStatus


class JobStatusResponse(CamelModel):
    job_id: str
    project_id: str
    kind: JobKind
    status: JobStatus
    result: Optional[dict[str, Any]] = None
    error: Optional[JobError] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusResponse":
        return cls(
            job_id=job.job_id,
            project_id=job.project_id,
            kind=job.kind,
            status=job.status,
            result=job.result,
            error=job.error,
            created_at=job.created_at,
            started_at=job.started_at,
            finished_at=job.finished_at,
        )


class ProjectResponse(Project):
    job_ids: list[str] = Field(default_factory=list)


class VideoTaskResponse(CamelModel):
    task_id: str
    status: str
    output: Optional[str] = None
    message: Optional[str] = None
