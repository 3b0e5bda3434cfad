"""
In-memory Project registry.

One entry per product. get_or_create is idempotent and the first write of
the original image wins. Entries are updated under their own lock; there is
no lock over the whole registry.

Known race: two jobs of the same project writing the derived asset at the
same time both succeed and the later write wins. Nothing orders a video job
after the specific image job that produced its source.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from ..errors import NotFound
from .models import Project, utcnow

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    project: Project
    lock: threading.Lock = field(default_factory=threading.Lock)


class ProjectStore:
    def __init__(self):
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, project_id: str) -> bool:
        return project_id in self._entries

    def get_or_create(self, project_id: str, initial_image_url: Optional[str] = None) -> Project:
        candidate = _Entry(Project(project_id=project_id, original_image_url=initial_image_url))
        # dict.setdefault is an atomic insert-if-absent
        entry = self._entries.setdefault(project_id, candidate)
        if entry is candidate:
            logger.info(f"Project {project_id} created (original image: {initial_image_url or 'none'})")
        with entry.lock:
            return entry.project.model_copy()

    def get(self, project_id: str) -> Project:
        entry = self._entries.get(project_id)
        if entry is None:
            raise NotFound(f"Project {project_id} not found")
        with entry.lock:
            return entry.project.model_copy()

    def set_derived_asset(self, project_id: str, url: str) -> Project:
        entry = self._entries.get(project_id)
        if entry is None:
            raise NotFound(f"Project {project_id} not found")
        with entry.lock:
            entry.project = entry.project.model_copy(
                update={"derived_asset_url": url, "updated_at": utcnow()}
            )
            logger.info(f"Project {project_id} derived asset → {url}")
            return entry.project.model_copy()
