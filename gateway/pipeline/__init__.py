"""
Job / Project orchestration

  Projects - one per product, get-or-create, carries the latest derived asset
  Jobs     - pending → running → done | failed, one asyncio task per job
  Routes   - submission per kind, status polling, video task pass-through
"""

from .orchestrator import JobOrchestrator
from .routes import job_router, project_router
from .models import JobKind, JobStatus

__all__ = [
    "JobOrchestrator",
    "job_router",
    "project_router",
    "JobKind",
    "JobStatus",
]
