"""
Pydantic Schemas for the Funnel Recovery Engine REST API.

Defines request/response schemas for the webhook, trigger, reporting and
open-tracking endpoints.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Common Schemas
# =============================================================================


class HealthCheckResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime


# =============================================================================
# Webhook Schemas
# =============================================================================


class AmplitudeEvent(BaseModel):
    """One analytics event as Amplitude forwards it. Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    event_type: str | None = Field(default=None, max_length=100)
    user_id: str | None = Field(default=None, max_length=255)
    device_id: str | None = Field(default=None, max_length=255)
    event_properties: dict[str, Any] = Field(default_factory=dict)
    time: int | None = None  # epoch milliseconds

    @property
    def subject_id(self) -> str | None:
        """user_id, falling back to device_id."""
        return self.user_id or self.device_id

    @property
    def occurred_at(self) -> datetime | None:
        if self.time is None:
            return None
        return datetime.fromtimestamp(self.time / 1000, tz=UTC)


class WebhookResponse(BaseModel):
    """Number of events that matched an event rule."""

    processed: int


# =============================================================================
# Experiment Schemas
# =============================================================================


class TriggerRequest(BaseModel):
    """Manual experiment trigger."""

    user_id: str = Field(..., min_length=1, max_length=255)
    cohort: str = Field(..., min_length=1, max_length=100)
    attributes: dict[str, Any] = Field(default_factory=dict)


class ExperimentResponse(BaseModel):
    """Response schema for an experiment."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    cohort: str
    timing: str
    channel: str
    lever: str
    offer: str
    tone: str
    message: str
    status: str
    created_at: datetime
    sent_at: datetime | None = None
    opened_at: datetime | None = None
    converted_at: datetime | None = None


class TriggerResponse(BaseModel):
    """Response schema for a manual trigger."""

    success: bool = True
    experiment: ExperimentResponse


# =============================================================================
# Reporting Schemas
# =============================================================================


class ComboStatResponse(BaseModel):
    """Outcome counts for one combination."""

    combo_key: str
    timing: str
    channel: str
    lever: str
    offer: str
    sent_count: int
    converted_count: int
    conversion_rate: float
    last_updated: datetime


class StatsTotals(BaseModel):
    experiments: int
    sent: int
    opened: int
    converted: int


class StatsResponse(BaseModel):
    """Engine report."""

    totals: StatsTotals
    conversion_rate: float
    pending_journey_checks: int
    dead_lettered_sends: int
    top_combos: list[ComboStatResponse]
    worst_combos: list[ComboStatResponse]


__all__ = [
    "AmplitudeEvent",
    "ComboStatResponse",
    "ExperimentResponse",
    "HealthCheckResponse",
    "StatsResponse",
    "StatsTotals",
    "TriggerRequest",
    "TriggerResponse",
    "WebhookResponse",
]
