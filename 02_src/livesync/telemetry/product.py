"""Product analytics helpers feeding the telemetry queue."""

import math
from dataclasses import dataclass, field
from typing import Any

from ..models import TelemetryEvent
from .queue import ITelemetryQueue


@dataclass
class EventContext:
    """Correlation ids and shared data attached to a product event."""

    path_id: str | None = None
    path_node_id: str | None = None
    activity_id: str | None = None
    activity_variant: str | None = None
    modality: str | None = None
    concept_ids: list[str] | None = None
    data: dict[str, Any] = field(default_factory=dict)


def normalize_string(value: Any, fallback: str = "") -> str:
    if value is None:
        return fallback
    text = str(value).strip()
    return text or fallback


def emit_event(
    queue: ITelemetryQueue,
    event_type: str,
    payload: dict[str, Any],
    ctx: EventContext | None = None,
) -> bool:
    if not event_type:
        return False
    ctx = ctx or EventContext()
    return queue.queue(
        TelemetryEvent(
            type=event_type,
            path_id=ctx.path_id,
            path_node_id=ctx.path_node_id,
            activity_id=ctx.activity_id,
            activity_variant=ctx.activity_variant,
            modality=ctx.modality,
            concept_ids=ctx.concept_ids,
            data={**ctx.data, **payload},
        )
    )


def track_experiment_exposure(
    queue: ITelemetryQueue,
    experiment: str,
    variant: str,
    source: str | None = None,
    ctx: EventContext | None = None,
) -> bool:
    exp = normalize_string(experiment)
    var = normalize_string(variant)
    if not exp or not var:
        return False
    return emit_event(
        queue,
        "experiment_exposure",
        {"experiment": exp, "variant": var, "source": normalize_string(source, "unknown")},
        ctx,
    )


def track_experiment_guardrail_breach(
    queue: ITelemetryQueue,
    experiment: str,
    guardrail: str,
    ctx: EventContext | None = None,
) -> bool:
    exp = normalize_string(experiment)
    rail = normalize_string(guardrail)
    if not exp or not rail:
        return False
    return emit_event(
        queue, "experiment_guardrail_breach", {"experiment": exp, "guardrail": rail}, ctx
    )


def track_engagement_funnel_step(
    queue: ITelemetryQueue,
    funnel: str,
    step: str,
    ctx: EventContext | None = None,
) -> bool:
    fn = normalize_string(funnel)
    st = normalize_string(step)
    if not fn or not st:
        return False
    return emit_event(queue, "engagement_funnel_step", {"funnel": fn, "step": st}, ctx)


def track_cost_telemetry(
    queue: ITelemetryQueue,
    category: str,
    amount_usd: float,
    source: str | None = None,
    ctx: EventContext | None = None,
) -> bool:
    cat = normalize_string(category)
    try:
        amount = float(amount_usd)
    except (TypeError, ValueError):
        amount = 0.0
    if not math.isfinite(amount):
        amount = 0.0
    if not cat or amount <= 0:
        return False
    return emit_event(
        queue,
        "cost_telemetry",
        {"category": cat, "amount_usd": amount, "source": normalize_string(source, "unknown")},
        ctx,
    )


def track_security_event(
    queue: ITelemetryQueue, event: str, ctx: EventContext | None = None
) -> bool:
    ev = normalize_string(event)
    if not ev:
        return False
    return emit_event(queue, "security_event", {"event": ev}, ctx)


def track_scroll_depth(
    queue: ITelemetryQueue, percent: float, ctx: EventContext | None = None
) -> bool:
    """Scroll sampling, bucketed to 10% so repeated samples dedupe."""
    try:
        value = float(percent)
    except (TypeError, ValueError):
        return False
    if not math.isfinite(value):
        return False
    value = min(max(value, 0.0), 100.0)
    return emit_event(
        queue,
        "scroll_depth",
        {"percent": round(value, 1), "depth_bucket": int(value // 10) * 10},
        ctx,
    )


def track_block_read(
    queue: ITelemetryQueue,
    block_id: str,
    block_index: int | None = None,
    ctx: EventContext | None = None,
) -> bool:
    bid = normalize_string(block_id)
    if not bid:
        return False
    payload: dict[str, Any] = {"block_id": bid}
    if block_index is not None:
        payload["block_index"] = block_index
    return emit_event(queue, "block_read", payload, ctx)
