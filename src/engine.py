"""
Component wiring for the Funnel Recovery Engine.

build_engine() assembles the record store, selector, composer, factory,
resolver, tracker, dispatcher, reporting and scheduler from one
EngineSettings. The API keeps the result on ``app.state.engine``; tests
build their own with a seeded generator, a fixed clock and a fake adapter.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from src.config.settings import EngineSettings
from src.lib.circuit_breaker import BreakerBoard
from src.models.base import utcnow
from src.services.composer import MessageComposer
from src.services.conversion import ConversionResolver
from src.services.delivery_adapters import DeliveryAdapter, build_delivery_adapter
from src.services.dispatcher import DeliveryDispatcher
from src.services.experiment_factory import ExperimentFactory
from src.services.journey_tracker import JourneyTracker
from src.services.record_store import RecordStore
from src.services.reporting import ReportService
from src.services.selector import ComboSelector
from src.workflows.scheduler import EngineScheduler


@dataclass
class RecoveryEngine:
    """All engine components sharing one store."""

    settings: EngineSettings
    store: RecordStore
    selector: ComboSelector
    composer: MessageComposer
    factory: ExperimentFactory
    resolver: ConversionResolver
    tracker: JourneyTracker
    dispatcher: DeliveryDispatcher
    reports: ReportService
    scheduler: EngineScheduler

    async def start(self) -> None:
        """Create missing tables and start the periodic loops if enabled."""
        await self.store.create_schema()
        if self.settings.scheduler_enabled:
            self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.store.dispose()


def build_engine(
    settings: EngineSettings | None = None,
    *,
    store: RecordStore | None = None,
    adapter: DeliveryAdapter | None = None,
    rng: random.Random | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> RecoveryEngine:
    """
    Wire up an engine.

    Args:
        settings: Engine settings (read from the environment if None)
        store: Record store (built from settings.database_url if None)
        adapter: Delivery adapter (CleverTap or logging, per settings, if None)
        rng: Random generator shared by selector and composer
        clock: Returns the current UTC time
    """
    settings = settings or EngineSettings.from_env()
    store = store or RecordStore.from_url(settings.database_url)
    adapter = adapter or build_delivery_adapter(settings)
    rng = rng or random.Random()

    selector = ComboSelector(
        epsilon=settings.epsilon,
        min_samples=settings.min_samples,
        top_k=settings.top_k,
        rng=rng,
    )
    composer = MessageComposer(rng=rng)
    factory = ExperimentFactory(store, selector, composer, settings, clock=clock)
    resolver = ConversionResolver(store, clock=clock)
    tracker = JourneyTracker(store, factory, resolver, settings=settings, clock=clock)
    breakers = BreakerBoard(
        failure_threshold=settings.breaker_failure_threshold,
        recovery_timeout=settings.breaker_recovery_seconds,
    )
    dispatcher = DeliveryDispatcher(store, adapter, settings, breakers, clock=clock)

    return RecoveryEngine(
        settings=settings,
        store=store,
        selector=selector,
        composer=composer,
        factory=factory,
        resolver=resolver,
        tracker=tracker,
        dispatcher=dispatcher,
        reports=ReportService(store),
        scheduler=EngineScheduler(tracker, dispatcher, settings),
    )


__all__ = ["RecoveryEngine", "build_engine"]
