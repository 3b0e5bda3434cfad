"""
In-memory Job registry with a monotonic state machine.

    pending → running → done | failed

Each job carries its own lock; unrelated jobs never contend. Readers get
deep copies, so a status poll never observes a half-applied transition.
"""

import logging
import secrets
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from ..errors import InvalidTransition, NotFound
from .models import TRANSITIONS, Job, JobError, JobKind, JobStatus, utcnow

logger = logging.getLogger(__name__)


def new_job_id() -> str:
    """128 random bits, hex encoded."""
    return secrets.token_hex(16)


@dataclass
class _Entry:
    job: Job
    lock: threading.Lock = field(default_factory=threading.Lock)


class JobStore:
    def __init__(self):
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def create(
        self,
        kind: JobKind,
        project_id: str,
        request: dict[str, Any],
        provider: str,
    ) -> Job:
        while True:
            job = Job(
                job_id=new_job_id(),
                project_id=project_id,
                kind=kind,
                provider=provider,
                request=dict(request),
            )
            entry = _Entry(job)
            if self._entries.setdefault(job.job_id, entry) is entry:
                break
        logger.info(f"[{job.job_id}] created {kind.value} job for project {project_id} via {provider}")
        return job.model_copy(deep=True)

    def get(self, job_id: str) -> Job:
        entry = self._entries.get(job_id)
        if entry is None:
            raise NotFound(f"Job {job_id} not found")
        with entry.lock:
            return entry.job.model_copy(deep=True)

    def list_for_project(self, project_id: str) -> list[Job]:
        jobs = []
        for entry in list(self._entries.values()):
            with entry.lock:
                if entry.job.project_id == project_id:
                    jobs.append(entry.job.model_copy(deep=True))
        return sorted(jobs, key=lambda j: j.created_at)

    def transition(
        self,
        job_id: str,
        new_status: JobStatus,
        result: Optional[dict[str, Any]] = None,
        error: Optional[JobError] = None,
    ) -> Job:
        entry = self._entries.get(job_id)
        if entry is None:
            raise NotFound(f"Job {job_id} not found")

        with entry.lock:
            current = entry.job.status
            if new_status not in TRANSITIONS[current]:
                raise InvalidTransition(
                    f"Job {job_id} cannot move from {current.value} to {new_status.value}"
                )
            if new_status == JobStatus.DONE and result is None:
                raise InvalidTransition(f"Job {job_id} cannot finish without a result")
            if new_status == JobStatus.FAILED and error is None:
                raise InvalidTransition(f"Job {job_id} cannot fail without an error")

            update: dict[str, Any] = {"status": new_status}
            now = utcnow()
            if new_status == JobStatus.RUNNING:
                update["started_at"] = now
            else:
                update["finished_at"] = now
                update["result"] = result if new_status == JobStatus.DONE else None
                update["error"] = error if new_status == JobStatus.FAILED else None

            entry.job = entry.job.model_copy(update=update)
            logger.info(f"[{job_id}] {current.value} → {new_status.value}")
            return entry.job.model_copy(deep=True)
