"""
REST API Routes for the Funnel Recovery Engine.

Endpoints:
- POST /webhook/amplitude - Analytics events (batch or single)
- POST /api/v1/trigger - Manually create (or dedup) an experiment
- GET  /api/v1/stats - Outcome report
- GET  /api/v1/experiments - Newest experiments
- POST /api/v1/experiments/{experiment_id}/opened - Open tracking
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from src.api.dependencies import get_engine
from src.api.schemas import (
    AmplitudeEvent,
    ExperimentResponse,
    StatsResponse,
    TriggerRequest,
    TriggerResponse,
    WebhookResponse,
)
from src.engine import RecoveryEngine
from src.lib.errors import NOT_FOUND, build_error_response

logger = logging.getLogger(__name__)

webhook_router = APIRouter()
router = APIRouter(prefix="/api/v1")


def _parse_events(payload: dict[str, Any]) -> list[AmplitudeEvent]:
    """Batch payloads carry an ``events`` list; anything else is one event."""
    raw_events = payload.get("events")
    if not isinstance(raw_events, list):
        raw_events = [payload]

    events: list[AmplitudeEvent] = []
    for raw in raw_events:
        if not isinstance(raw, dict):
            continue
        try:
            events.append(AmplitudeEvent.model_validate(raw))
        except ValidationError as e:
            logger.warning("Dropping malformed webhook event: %s", e.errors()[:1])
    return events


# =============================================================================
# Webhook
# =============================================================================


@webhook_router.post("/webhook/amplitude", response_model=WebhookResponse)
async def amplitude_webhook(
    payload: dict[str, Any] = Body(...),
    engine: RecoveryEngine = Depends(get_engine),
) -> WebhookResponse:
    """
    Feed analytics events to the journey tracker.

    Events without a user (user_id or device_id) or an event type are
    dropped. Every other event reaches the tracker (follow-ups and
    conversions included), but only events matching an event rule count
    as processed.

    Returns:
        Number of events that matched an event rule
    """
    processed = 0
    for event in _parse_events(payload):
        user_id = event.subject_id
        if not user_id or not event.event_type:
            continue
        logger.info("Event %s received for user %s", event.event_type, user_id)
        outcome = await engine.tracker.observe_event(
            user_id,
            event.event_type,
            event_time=event.occurred_at,
            attributes=event.event_properties,
        )
        if outcome.matched_rule:
            processed += 1
    return WebhookResponse(processed=processed)


# =============================================================================
# Experiments
# =============================================================================


@router.post("/trigger", response_model=TriggerResponse)
async def trigger_experiment(
    data: TriggerRequest,
    engine: RecoveryEngine = Depends(get_engine),
) -> TriggerResponse:
    """
    Create an experiment for a user and cohort.

    A repeat request inside the dedup window returns the existing experiment.
    """
    experiment = await engine.factory.create_experiment(data.user_id, data.cohort, data.attributes)
    return TriggerResponse(experiment=ExperimentResponse.model_validate(experiment))


@router.get("/experiments", response_model=list[ExperimentResponse])
async def list_experiments(
    limit: int = Query(default=50, ge=1, le=500),
    engine: RecoveryEngine = Depends(get_engine),
) -> list[ExperimentResponse]:
    """Newest experiments first."""
    experiments = await engine.reports.list_experiments(limit)
    return [ExperimentResponse.model_validate(e) for e in experiments]


@router.post("/experiments/{experiment_id}/opened", response_model=ExperimentResponse)
async def mark_experiment_opened(
    experiment_id: str,
    engine: RecoveryEngine = Depends(get_engine),
) -> Any:
    """
    Record that the experiment's deep link was opened.

    Only sent experiments move to opened; others are returned unchanged.
    """
    experiment = await engine.resolver.mark_opened(experiment_id)
    if experiment is None:
        return JSONResponse(
            status_code=404,
            content={"error": build_error_response(NOT_FOUND, f"Experiment '{experiment_id}' not found")},
        )
    return ExperimentResponse.model_validate(experiment)


# =============================================================================
# Reporting
# =============================================================================


@router.get("/stats", response_model=StatsResponse)
async def get_stats(engine: RecoveryEngine = Depends(get_engine)) -> dict[str, Any]:
    """Totals, conversion rate, backlog and best/worst combinations."""
    report = await engine.reports.build_report(min_samples=engine.settings.min_samples)
    return report.to_dict()


__all__ = ["router", "webhook_router"]
