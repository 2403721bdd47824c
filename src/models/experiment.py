"""
Experiment models for the Funnel Recovery Engine.

- Experiment: one treatment offered to a user after abandonment.
- ScheduledSend: the deferred delivery of one experiment's message.
- ComboStat: running sent/converted counts per combination key.

Status flows:
    Experiment:     pending -> sent -> opened -> converted
                                  \\-----------> converted
    ScheduledSend:  pending -> sent
                    pending -> failed   (retry cap reached / orphaned)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from sqlalchemy import Column, Index, Integer, String, Text

from src.models.base import Base, UTCDateTime, new_id, utcnow


class ExperimentStatus(StrEnum):
    """Experiment lifecycle. Ordered: a status never moves backwards."""

    PENDING = "pending"
    SENT = "sent"
    OPENED = "opened"
    CONVERTED = "converted"


class SendStatus(StrEnum):
    """ScheduledSend lifecycle."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# Experiments a conversion can be attributed to
CONVERTIBLE_STATUSES: tuple[ExperimentStatus, ...] = (
    ExperimentStatus.SENT,
    ExperimentStatus.OPENED,
)

# Experiments that reached the user
DELIVERED_STATUSES: tuple[ExperimentStatus, ...] = (
    ExperimentStatus.SENT,
    ExperimentStatus.OPENED,
    ExperimentStatus.CONVERTED,
)


@dataclass(frozen=True)
class Combination:
    """A treatment: (timing, channel, lever, offer, tone)."""

    timing: str
    channel: str
    lever: str
    offer: str
    tone: str

    @property
    def key(self) -> str:
        return combo_key(self.timing, self.channel, self.lever, self.offer)


def combo_key(timing: str, channel: str, lever: str, offer: str) -> str:
    """Statistics key for a combination. Tone is not part of it."""
    return f"{timing}|{channel}|{lever}|{offer}"


class Experiment(Base):
    """
    A treatment offered to one user.

    Attributes:
        id: UUID primary key
        user_id: User identifier
        cohort: Cohort the user was placed in
        timing/channel/lever/offer/tone: The selected combination
        message: Composed message text
        created_at: Creation timestamp (dedup window and recency ordering)
        sent_at: Set by the dispatcher after a successful delivery
        opened_at: Set when the deep link is opened (best effort)
        converted_at: Set by the conversion resolver
        status: pending | sent | opened | converted
    """

    __tablename__ = "experiments"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(255), nullable=False)
    cohort = Column(String(100), nullable=False)

    timing = Column(String(50), nullable=False)
    channel = Column(String(20), nullable=False)
    lever = Column(String(50), nullable=False)
    offer = Column(String(50), nullable=False)
    tone = Column(String(50), nullable=False)
    message = Column(Text, nullable=False)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    sent_at = Column(UTCDateTime, nullable=True)
    opened_at = Column(UTCDateTime, nullable=True)
    converted_at = Column(UTCDateTime, nullable=True)
    status = Column(String(20), nullable=False, default=ExperimentStatus.PENDING.value)

    __table_args__ = (
        Index("idx_experiment_user_cohort_created", "user_id", "cohort", "created_at"),
        Index("idx_experiment_user_status", "user_id", "status"),
    )

    @property
    def combo_key(self) -> str:
        return combo_key(self.timing, self.channel, self.lever, self.offer)

    def __repr__(self) -> str:
        return (
            f"<Experiment(id={self.id}, user_id={self.user_id}, "
            f"cohort={self.cohort}, status={self.status})>"
        )


class ScheduledSend(Base):
    """
    Deferred delivery of one experiment.

    Attributes:
        id: UUID primary key
        experiment_id: The experiment to deliver
        user_id: Recipient
        send_at: Earliest delivery time (pushed out on retry backoff)
        status: pending | sent | failed
        attempts: Failed delivery attempts so far
        last_error: Last adapter error
        last_attempt_at: When the last attempt happened
        sent_at: When delivery succeeded
    """

    __tablename__ = "scheduled_sends"

    id = Column(String(36), primary_key=True, default=new_id)
    # Not enforced as a foreign key: an orphaned send must stay readable
    # so the dispatcher can report and dead-letter it.
    experiment_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(255), nullable=False)
    send_at = Column(UTCDateTime, nullable=False)
    status = Column(String(20), nullable=False, default=SendStatus.PENDING.value)

    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    last_attempt_at = Column(UTCDateTime, nullable=True)
    sent_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("idx_send_due", "status", "send_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ScheduledSend(id={self.id}, experiment_id={self.experiment_id}, "
            f"send_at={self.send_at}, status={self.status}, attempts={self.attempts})>"
        )


class ComboStat(Base):
    """
    Running outcome counts for one combination key.

    Invariant: converted_count <= sent_count. sent_count grows on delivery,
    converted_count on attributed conversion.
    """

    __tablename__ = "combo_stats"

    combo_key = Column(String(255), primary_key=True)
    timing = Column(String(50), nullable=False)
    channel = Column(String(20), nullable=False)
    lever = Column(String(50), nullable=False)
    offer = Column(String(50), nullable=False)

    sent_count = Column(Integer, nullable=False, default=0)
    converted_count = Column(Integer, nullable=False, default=0)
    last_updated = Column(UTCDateTime, nullable=False, default=utcnow)

    @property
    def conversion_rate(self) -> float:
        if not self.sent_count:
            return 0.0
        return self.converted_count / self.sent_count

    def to_dict(self) -> dict:
        return {
            "combo_key": self.combo_key,
            "timing": self.timing,
            "channel": self.channel,
            "lever": self.lever,
            "offer": self.offer,
            "sent_count": self.sent_count,
            "converted_count": self.converted_count,
            "conversion_rate": self.conversion_rate,
            "last_updated": self.last_updated,
        }

    def __repr__(self) -> str:
        return (
            f"<ComboStat(combo_key={self.combo_key}, sent={self.sent_count}, "
            f"converted={self.converted_count})>"
        )
