"""Structured logging of synthesized directives, with a health check for odd ones."""

from __future__ import annotations

from typing import Any

from loguru import logger

from .intent import TraceIntent


def is_weird(intent: TraceIntent) -> bool:
    """True for a directive missing its mode or intent type, or longform that may truncate."""
    return (
        not intent.mode
        or not intent.intent_type
        or (intent.mode == "longform" and not intent.constraints.must_not_truncate)
    )


def summarize_trace_intent(
    intent: TraceIntent,
    *,
    request_id: str | None = None,
    user_id: str | None = None,
    model: str | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    return {
        "request_id": request_id,
        "user_id": user_id,
        "route": route,
        "model": model,
        "mode": intent.mode,
        "intent_type": intent.intent_type,
        "primary_mode": intent.primary_mode,
        "posture": intent.posture,
        "detected_state": intent.detected_state,
        "doorway_hint": intent.selected_context.doorway_hint,
        "constraints": intent.constraints.model_dump(),
        "signals": intent.signals.model_dump(),
    }


def log_trace_intent(
    intent: TraceIntent,
    *,
    enabled: bool = False,
    request_id: str | None = None,
    user_id: str | None = None,
    model: str | None = None,
    route: str | None = None,
) -> bool:
    """Log ``intent`` when ``enabled`` and report whether it looks weird.

    Never raises; a directive that cannot be summarized is logged at debug level.
    """

    weird = is_weird(intent)
    if not enabled:
        return weird

    try:
        summary = summarize_trace_intent(
            intent, request_id=request_id, user_id=user_id, model=model, route=route
        )
    except (AttributeError, TypeError, ValueError) as e:
        logger.debug(f"Could not summarize directive for {request_id}: {e}")
        return weird

    logger.bind(trace_intent=summary).info(
        f"Directive {request_id or '-'}: mode={intent.mode} intent={intent.intent_type} "
        f"primary={intent.primary_mode}"
    )
    if weird:
        logger.bind(trace_intent=summary).warning(
            f"Weird directive {request_id or '-'}: mode={intent.mode} "
            f"intent={intent.intent_type} "
            f"must_not_truncate={intent.constraints.must_not_truncate}"
        )
    return weird


__all__ = ["is_weird", "summarize_trace_intent", "log_trace_intent"]
