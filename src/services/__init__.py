"""
Services for the Funnel Recovery Engine.

Services:
    - RecordStore: Transactions over journeys, experiments, sends and stats
    - JourneyTracker: Event state machine and deadline sweep
    - ComboSelector: Epsilon-greedy treatment selection
    - MessageComposer: Message text for a combination
    - ExperimentFactory: Deduplicated experiment + scheduled send creation
    - DeliveryDispatcher: At-least-once delivery with retry and dead-lettering
    - ConversionResolver: Last-touch conversion attribution and open tracking
    - ReportService: Stats and experiment listings
"""

from .composer import MessageComposer
from .conversion import ConversionResolver
from .delivery_adapters import (
    CleverTapAdapter,
    DeliveryAdapter,
    DeliveryResult,
    LoggingDeliveryAdapter,
    build_delivery_adapter,
)
from .dispatcher import DeliveryDispatcher, DispatchReport
from .experiment_factory import ExperimentFactory, compute_send_at
from .journey_tracker import EventOutcome, JourneyTracker, SweepReport
from .record_store import RecordSession, RecordStore
from .reporting import EngineReport, ReportService
from .selector import ComboSelector

__all__ = [
    # Store
    "RecordSession",
    "RecordStore",
    # Journeys
    "EventOutcome",
    "JourneyTracker",
    "SweepReport",
    # Experiments
    "ComboSelector",
    "ExperimentFactory",
    "MessageComposer",
    "compute_send_at",
    # Delivery
    "CleverTapAdapter",
    "DeliveryAdapter",
    "DeliveryDispatcher",
    "DeliveryResult",
    "DispatchReport",
    "LoggingDeliveryAdapter",
    "build_delivery_adapter",
    # Conversions / reporting
    "ConversionResolver",
    "EngineReport",
    "ReportService",
]
