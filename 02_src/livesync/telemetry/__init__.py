"""Telemetry module."""

from .product import (
    EventContext,
    track_block_read,
    track_cost_telemetry,
    track_engagement_funnel_step,
    track_experiment_exposure,
    track_experiment_guardrail_breach,
    track_scroll_depth,
    track_security_event,
)
from .queue import (
    DEDUPE_EVENT_TYPES,
    ITelemetryQueue,
    TelemetryQueue,
    compute_logical_id,
    normalize_event,
)

__all__ = [
    "DEDUPE_EVENT_TYPES",
    "EventContext",
    "ITelemetryQueue",
    "TelemetryQueue",
    "compute_logical_id",
    "normalize_event",
    "track_block_read",
    "track_cost_telemetry",
    "track_engagement_funnel_step",
    "track_experiment_exposure",
    "track_experiment_guardrail_breach",
    "track_scroll_depth",
    "track_security_event",
]
