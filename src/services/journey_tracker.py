"""
Journey Tracker for the Funnel Recovery Engine.

Inbound events drive a small per-user state machine:

    trigger event (wait rule)      -> JourneyRecord, open until deadline
    follow-up event                -> open journeys resolved as followed_up
    deadline passes, no follow-up  -> resolved as abandoned + experiment
    trigger event (immediate rule) -> experiment right away
    conversion event               -> Conversion Resolver

Follow-ups are kept as ObservedEvents, so a follow-up that arrives before
its trigger (out-of-order delivery) is still found by the deadline sweep.
A journey is only satisfied by a follow-up that happened strictly after
the trigger.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from src.config.rules import CONVERSION_EVENTS, EVENT_RULES, EventRule, ImmediateRule, WaitRule, follow_up_targets
from src.config.settings import EngineSettings
from src.lib.exceptions import StoreError, ValidationError
from src.models.base import new_id, utcnow
from src.models.journey import JourneyRecord, JourneyResolution, ObservedEvent
from src.services.conversion import ConversionResolver
from src.services.experiment_factory import ExperimentFactory
from src.services.record_store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class EventOutcome:
    """What observing one event changed."""

    user_id: str
    event_type: str
    matched_rule: bool = False
    journeys_resolved: int = 0
    converted_experiment_id: str | None = None
    journey_id: str | None = None
    experiment_id: str | None = None


@dataclass
class SweepReport:
    """What one deadline sweep did."""

    examined: int = 0
    followed_up: int = 0
    abandoned: int = 0
    skipped: int = 0
    aborted: bool = False


class JourneyTracker:
    """
    Tracks funnel journeys and detects abandonment.

    Args:
        store: Record store
        factory: Experiment factory for abandonments and immediate rules
        resolver: Conversion resolver for conversion events
        rules: Event rules keyed by triggering event type
        conversion_events: Event types that count as a conversion
        settings: Engine settings (sweep batch size)
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        store: RecordStore,
        factory: ExperimentFactory,
        resolver: ConversionResolver,
        rules: Mapping[str, EventRule] = EVENT_RULES,
        conversion_events: Collection[str] = CONVERSION_EVENTS,
        settings: EngineSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.factory = factory
        self.resolver = resolver
        self.rules = rules
        self.conversion_events = frozenset(conversion_events)
        self.settings = settings or EngineSettings()
        self._clock = clock
        self._follow_up_targets = follow_up_targets(rules)

    async def observe_event(
        self,
        user_id: str,
        event_type: str,
        event_time: datetime | None = None,
        attributes: Mapping[str, Any] | None = None,
    ) -> EventOutcome:
        """
        Apply one inbound event.

        Args:
            user_id: User identifier
            event_type: Event name
            event_time: When the event happened (defaults to now)
            attributes: Event properties

        Returns:
            EventOutcome describing the changes

        Raises:
            ValidationError: If user_id or event_type is empty
            StoreError: If the record store fails
        """
        if not user_id or not event_type:
            raise ValidationError("Events need a user id and an event type")

        event_time = event_time or self._clock()
        attributes = dict(attributes or {})
        outcome = EventOutcome(user_id=user_id, event_type=event_type)
        logger.debug("Event %s for user %s at %s", event_type, user_id, event_time.isoformat())

        if event_type in self._follow_up_targets:
            outcome.journeys_resolved = await self._record_follow_up(
                user_id, event_type, event_time, attributes
            )

        if event_type in self.conversion_events:
            experiment = await self.resolver.resolve_conversion(user_id)
            if experiment is not None:
                outcome.converted_experiment_id = experiment.id

        rule = self.rules.get(event_type)
        outcome.matched_rule = rule is not None
        if isinstance(rule, WaitRule):
            journey = JourneyRecord(
                id=new_id(),
                user_id=user_id,
                event_type=event_type,
                event_time=event_time,
                attributes=attributes,
                expected_event=rule.follow_up_event,
                cohort_if_missing=rule.cohort_if_missing,
                deadline=event_time + rule.timeout,
                resolved=False,
            )
            async with self.store.transaction() as records:
                records.add(journey)
            outcome.journey_id = journey.id
            logger.info(
                "Journey %s scheduled: user %s %s, waiting for %s until %s",
                journey.id, user_id, event_type, rule.follow_up_event,
                journey.deadline.isoformat(),
            )
        elif isinstance(rule, ImmediateRule):
            experiment = await self.factory.create_experiment(user_id, rule.cohort, attributes)
            outcome.experiment_id = experiment.id

        return outcome

    async def _record_follow_up(
        self,
        user_id: str,
        event_type: str,
        event_time: datetime,
        attributes: dict[str, Any],
    ) -> int:
        now = self._clock()
        resolved = 0
        async with self.store.transaction() as records:
            records.add(
                ObservedEvent(
                    id=new_id(),
                    user_id=user_id,
                    event_type=event_type,
                    event_time=event_time,
                    attributes=attributes,
                    received_at=now,
                )
            )
            waiting = await records.open_journeys_awaiting(user_id, event_type, before=event_time)
            for journey in waiting:
                if await records.claim_journey(journey.id, JourneyResolution.FOLLOWED_UP, now):
                    resolved += 1
        if resolved:
            logger.info("Follow-up %s for user %s resolved %d journey(s)", event_type, user_id, resolved)
        return resolved

    async def sweep_deadlines(self, now: datetime | None = None) -> SweepReport:
        """
        Resolve journeys whose deadline has passed.

        Each journey is claimed and (when abandoned) turned into an
        experiment in one transaction. A store failure stops the sweep and
        leaves the remaining journeys for the next run.
        """
        now = now or self._clock()
        report = SweepReport()

        try:
            async with self.store.transaction() as records:
                due = await records.due_journeys(now, self.settings.sweep_batch_size)
        except StoreError:
            logger.exception("Could not load due journeys; skipping this sweep")
            report.aborted = True
            return report

        for journey in due:
            report.examined += 1
            try:
                resolution = await self._resolve_due(journey, now)
            except StoreError:
                logger.exception("Record store failed while resolving journey %s; stopping sweep", journey.id)
                report.aborted = True
                break
            if resolution is None:
                report.skipped += 1
            elif resolution == JourneyResolution.FOLLOWED_UP:
                report.followed_up += 1
            else:
                report.abandoned += 1

        if report.examined:
            logger.info(
                "Deadline sweep: examined=%d followed_up=%d abandoned=%d skipped=%d",
                report.examined, report.followed_up, report.abandoned, report.skipped,
            )
        return report

    async def _resolve_due(self, journey: JourneyRecord, now: datetime) -> JourneyResolution | None:
        async with self.factory.lock:
            async with self.store.transaction() as records:
                follow_up = await records.find_follow_up(
                    journey.user_id, journey.expected_event, after=journey.event_time
                )
                resolution = (
                    JourneyResolution.FOLLOWED_UP if follow_up is not None else JourneyResolution.ABANDONED
                )
                if not await records.claim_journey(journey.id, resolution, now):
                    return None
                if follow_up is not None:
                    return resolution

                experiment = await self.factory.create_in(
                    records, journey.user_id, journey.cohort_if_missing, journey.attributes
                )

        logger.info(
            "Journey %s abandoned: user %s never sent %s; experiment %s (%s)",
            journey.id, journey.user_id, journey.expected_event, experiment.id,
            journey.cohort_if_missing,
        )
        return resolution


__all__ = ["EventOutcome", "JourneyTracker", "SweepReport"]
