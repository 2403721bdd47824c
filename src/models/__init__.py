"""
Models package for the Funnel Recovery Engine.

This package exports all SQLAlchemy models.

Usage:
    from src.models import Experiment, ScheduledSend, ComboStat
    from src.models import JourneyRecord, ObservedEvent
"""

from src.models.base import Base, UTCDateTime
from src.models.experiment import (
    CONVERTIBLE_STATUSES,
    DELIVERED_STATUSES,
    Combination,
    ComboStat,
    Experiment,
    ExperimentStatus,
    ScheduledSend,
    SendStatus,
    combo_key,
)
from src.models.journey import JourneyRecord, JourneyResolution, ObservedEvent

__all__ = [
    # Base
    "Base",
    "UTCDateTime",
    # Journey
    "JourneyRecord",
    "JourneyResolution",
    "ObservedEvent",
    # Experiments
    "CONVERTIBLE_STATUSES",
    "DELIVERED_STATUSES",
    "Combination",
    "ComboStat",
    "Experiment",
    "ExperimentStatus",
    "ScheduledSend",
    "SendStatus",
    "combo_key",
]
