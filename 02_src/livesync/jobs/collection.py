"""PathCollection: the owning collection of path entities."""

from dataclasses import replace
from typing import Protocol

from ..backend import IPathApi
from ..config import LEARNING_BUILD_JOB_TYPE
from ..logging_config import get_logger
from ..models import Path

logger = get_logger(__name__)

_JOB_FIELDS = ("job_type", "job_status", "job_stage", "job_progress", "job_message")


def strip_job_fields(path: Path) -> Path:
    """Canonical entities carry no job display state."""
    return replace(path, **{name: None for name in _JOB_FIELDS})


class IPathCollection(Protocol):
    """Ordered path list with upsert-by-id semantics."""

    @property
    def items(self) -> list[Path]:
        """Current entities, placeholders included."""
        ...

    def upsert(self, path: Path, replace_existing: bool = False) -> None:
        """Insert at the front or update in place."""
        ...

    async def reload(self) -> None:
        """Re-list from the backend."""
        ...


class PathCollection:
    """Paths of the current user, canonical entities and job placeholders."""

    def __init__(self, path_api: IPathApi, job_type: str = LEARNING_BUILD_JOB_TYPE):
        self._path_api = path_api
        self._job_type = job_type
        self._items: list[Path] = []
        self.loading = False
        self.error: Exception | None = None
        # canonical path id -> sequence number of the swap that added it
        self._swap_seq = 0
        self._swapped: dict[str, int] = {}

    @property
    def items(self) -> list[Path]:
        return list(self._items)

    def get(self, path_id: str) -> Path | None:
        return next((p for p in self._items if p.id == path_id), None)

    def find_by_job(self, job_id: str) -> Path | None:
        return next((p for p in self._items if p.job_id == job_id), None)

    def index_of(self, path_id: str) -> int:
        return next((i for i, p in enumerate(self._items) if p.id == path_id), -1)

    def upsert(self, path: Path, replace_existing: bool = False) -> None:
        """Insert at the front, or merge/replace the entity with the same id."""
        if not path.id:
            return
        idx = self.index_of(path.id)
        if idx == -1:
            self._items.insert(0, path)
            return
        if replace_existing:
            self._items[idx] = path
        else:
            current = self._items[idx]
            merged = {
                k: v for k, v in vars(path).items() if v is not None
            }
            self._items[idx] = replace(current, **merged)

    def remove(self, path_id: str) -> None:
        self._items = [p for p in self._items if p.id != path_id]

    def remove_job(self, job_id: str) -> None:
        """Drop every entry still bound to job_id."""
        self._items = [p for p in self._items if p.job_id != job_id]

    def replace_job(self, job_id: str, fresh: Path) -> None:
        """Swap the job's placeholder for the canonical entity in one step.

        The canonical entity keeps its own slot if it is already listed,
        otherwise it takes the placeholder's slot.
        """
        canonical = strip_job_fields(fresh)
        slot = next(
            (i for i, p in enumerate(self._items) if p.job_id == job_id), 0
        )
        existing = self.index_of(canonical.id)

        items: list[Path] = []
        inserted = False
        for i, p in enumerate(self._items):
            if p.id == canonical.id:
                items.append(canonical)
                inserted = True
            elif p.job_id == job_id:
                if existing == -1 and i == slot and not inserted:
                    items.append(canonical)
                    inserted = True
            else:
                items.append(p)
        if not inserted:
            items.insert(0, canonical)
        self._items = items
        self._swap_seq += 1
        self._swapped[canonical.id] = self._swap_seq

    async def fetch(self, path_id: str) -> Path | None:
        return await self._path_api.get_path(path_id)

    async def reload(self) -> None:
        """Re-list paths, keeping job placeholders ahead of them.

        The listing may predate a swap that happened while it was in flight;
        entities swapped in after the request went out are carried over.
        """
        self.loading = True
        self.error = None
        started = self._swap_seq
        try:
            loaded = await self._path_api.list_paths()
            listed_ids = {p.id for p in loaded}
            listed_jobs = {p.job_id for p in loaded if p.job_id}
            pending = [
                p
                for p in self._items
                if p.is_placeholder
                and p.id not in listed_ids
                and p.job_id not in listed_jobs
            ]
            swapped = [
                p
                for p in self._items
                if self._swapped_since(p, started) and p.id not in listed_ids
            ]
            self._items = (
                pending + swapped + [self._with_job_defaults(p) for p in loaded]
            )
        except Exception as e:
            logger.error("Failed to load paths: %s", e)
            self.error = e
            self._items = [
                p
                for p in self._items
                if p.is_placeholder or self._swapped_since(p, started)
            ]
        finally:
            self.loading = False

    def clear(self) -> None:
        self._items = []
        self._swapped.clear()
        self.error = None

    def _swapped_since(self, path: Path, seq: int) -> bool:
        return self._swapped.get(path.id, 0) > seq

    def _with_job_defaults(self, path: Path) -> Path:
        if not path.job_id:
            return path
        return replace(
            path,
            job_type=path.job_type or self._job_type,
            job_status=path.job_status or "queued",
            job_stage=path.job_stage or "queued",
            job_progress=path.job_progress if path.job_progress is not None else 0.0,
        )
