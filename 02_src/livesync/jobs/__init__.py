"""Job reconciliation: state merge, placeholder projection, path collection."""

from .activity import build_activity_items, feed_entry
from .collection import IPathCollection, PathCollection, strip_job_fields
from .engine import IJobEngine, JobReconciliationEngine
from .projection import attach_job_fields, make_placeholder
from .stages import clamp_progress, normalize_stage, progress_bucket, stage_label
from .state import JOB_EVENTS, JobEvent, merge, parse_job_event, update_from_job

__all__ = [
    "IJobEngine",
    "JobReconciliationEngine",
    "IPathCollection",
    "PathCollection",
    "strip_job_fields",
    "attach_job_fields",
    "make_placeholder",
    "build_activity_items",
    "feed_entry",
    "clamp_progress",
    "normalize_stage",
    "progress_bucket",
    "stage_label",
    "JOB_EVENTS",
    "JobEvent",
    "merge",
    "parse_job_event",
    "update_from_job",
]
