"""Learning-build stage vocabulary and progress helpers."""

import math
from typing import Any

STAGE_PREFIXES = ("waiting_child_", "stale_", "timeout_")

STAGE_ORDER = (
    "ingest_chunks",
    "embed_chunks",
    "material_set_summarize",
    "concept_graph_build",
    "concept_cluster_build",
    "chain_signature_build",
    "user_profile_refresh",
    "teaching_patterns_seed",
    "path_plan_build",
    "node_figures_plan_build",
    "node_figures_render",
    "node_videos_plan_build",
    "node_videos_render",
    "node_doc_build",
    "realize_activities",
    "coverage_coherence_audit",
    "progression_compact",
    "variant_stats_refresh",
    "priors_refresh",
    "completed_unit_refresh",
)

STAGE_LABELS = {
    "queued": "Queued",
    "ingest_chunks": "Ingesting",
    "embed_chunks": "Embedding",
    "material_set_summarize": "Summarizing materials",
    "concept_graph_build": "Building concept graph",
    "concept_cluster_build": "Clustering concepts",
    "chain_signature_build": "Building signatures",
    "user_profile_refresh": "Refreshing profile",
    "teaching_patterns_seed": "Seeding teaching patterns",
    "path_plan_build": "Planning path",
    "node_figures_plan_build": "Planning figures",
    "node_figures_render": "Rendering figures",
    "node_videos_plan_build": "Planning videos",
    "node_videos_render": "Rendering videos",
    "node_doc_build": "Writing unit docs",
    "realize_activities": "Writing node content",
    "coverage_coherence_audit": "Auditing plan",
    "progression_compact": "Finalizing progression",
    "variant_stats_refresh": "Refreshing stats",
    "priors_refresh": "Refreshing priors",
    "completed_unit_refresh": "Finalizing",
    "done": "Done",
}


def clamp_progress(value: Any) -> float:
    """Coerce to a number in [0, 100]; anything non-numeric becomes 0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return min(max(number, 0.0), 100.0)


def progress_bucket(value: Any, size: int = 5) -> int:
    """Progress rounded down to a multiple of size."""
    return int(clamp_progress(value) // size) * size


def normalize_stage(stage: str | None) -> str:
    """Strip waiting_child_/stale_/timeout_ prefixes (repeatedly)."""
    s = (stage or "").strip()
    changed = True
    while s and changed:
        changed = False
        for prefix in STAGE_PREFIXES:
            if s.lower().startswith(prefix):
                s = s[len(prefix) :]
                changed = True
    return s


def stage_label(stage: str | None) -> str | None:
    """Human label for a stage tag; unknown tags are returned as-is."""
    raw = (stage or "").strip()
    if not raw:
        return None
    lowered = raw.lower()
    if lowered.startswith("stale_"):
        base = raw[len("stale_") :]
        return f"Stalled - {stage_label(base) or base}"
    if lowered.startswith("timeout_"):
        base = raw[len("timeout_") :]
        return f"Timed out - {stage_label(base) or base}"
    return STAGE_LABELS.get(normalize_stage(raw).lower(), raw)
