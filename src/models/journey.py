"""
Journey models for the Funnel Recovery Engine.

- ObservedEvent: an inbound event kept so the deadline sweep can look for
  the follow-up a journey is waiting on.
- JourneyRecord: a user reaching a funnel step that needs a follow-up
  before a deadline. Resolved exactly once, either when the follow-up is
  observed or when the deadline sweep decides the user abandoned.
"""

from __future__ import annotations

from enum import StrEnum

from sqlalchemy import JSON, Boolean, Column, Index, String

from src.models.base import Base, UTCDateTime, new_id, utcnow


class JourneyResolution(StrEnum):
    """How a journey was resolved."""

    FOLLOWED_UP = "followed_up"
    ABANDONED = "abandoned"


class ObservedEvent(Base):
    """
    Normalized inbound event.

    Only event types that some wait rule expects as a follow-up are stored.

    Attributes:
        id: UUID primary key
        user_id: User identifier from the analytics source
        event_type: Event name (e.g. "trial_initiated")
        event_time: When the event happened (source clock)
        attributes: Event properties (string -> scalar)
        received_at: When the engine received it
    """

    __tablename__ = "observed_events"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(255), nullable=False)
    event_type = Column(String(100), nullable=False)
    event_time = Column(UTCDateTime, nullable=False)
    attributes = Column(JSON, nullable=False, default=dict)
    received_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_observed_user_type_time", "user_id", "event_type", "event_time"),
    )

    def __repr__(self) -> str:
        return (
            f"<ObservedEvent(id={self.id}, user_id={self.user_id}, "
            f"event_type={self.event_type}, event_time={self.event_time})>"
        )


class JourneyRecord(Base):
    """
    One journey waiting for a follow-up event.

    The rule's follow-up event and abandonment cohort are copied onto the
    record so the sweep decides with the rule that was active when the
    journey started.

    Attributes:
        id: UUID primary key
        user_id: User identifier
        event_type: Triggering event (e.g. "trial_paywall_view")
        event_time: When the triggering event happened
        attributes: Triggering event properties, reused for the message
        expected_event: Follow-up event that satisfies this journey
        cohort_if_missing: Cohort for the experiment on abandonment
        deadline: event_time + rule timeout
        resolved: Flips False -> True exactly once
        resolved_at: When the record was resolved
        resolution: followed_up | abandoned
    """

    __tablename__ = "journey_records"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(255), nullable=False)
    event_type = Column(String(100), nullable=False)
    event_time = Column(UTCDateTime, nullable=False)
    attributes = Column(JSON, nullable=False, default=dict)
    expected_event = Column(String(100), nullable=False)
    cohort_if_missing = Column(String(100), nullable=False)
    deadline = Column(UTCDateTime, nullable=False)

    resolved = Column(Boolean, nullable=False, default=False)
    resolved_at = Column(UTCDateTime, nullable=True)
    resolution = Column(String(20), nullable=True)

    __table_args__ = (
        Index("idx_journey_due", "resolved", "deadline"),
        Index("idx_journey_user_expected", "user_id", "expected_event", "resolved"),
    )

    def __repr__(self) -> str:
        return (
            f"<JourneyRecord(id={self.id}, user_id={self.user_id}, "
            f"event_type={self.event_type}, deadline={self.deadline}, "
            f"resolved={self.resolved})>"
        )
