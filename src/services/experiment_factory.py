"""
Experiment Factory for the Funnel Recovery Engine.

Turns an abandonment (or a manual trigger) into an Experiment plus the
ScheduledSend that will deliver it:

1. dedup: a (user, cohort) pair gets at most one experiment per recency
   window; a repeat request returns the existing experiment unchanged
2. select a combination (epsilon-greedy over current statistics)
3. compose the message
4. compute send_at from the combination's timing
5. write experiment and send in the same transaction

The dedup check and the insert run under one asyncio.Lock so two
concurrent requests for the same pair cannot both insert.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Any

from src.config.catalog import DAY_PART_TIMES, FALLBACK_SEND_DELAY, TIMING_OFFSETS, Timing
from src.config.settings import EngineSettings
from src.lib.exceptions import ValidationError
from src.models.base import new_id, utcnow
from src.models.experiment import Experiment, ExperimentStatus, ScheduledSend, SendStatus
from src.services.composer import MessageComposer
from src.services.record_store import RecordSession, RecordStore
from src.services.selector import ComboSelector

logger = logging.getLogger(__name__)


def compute_send_at(timing: str, now: datetime, tz: tzinfo = UTC) -> datetime:
    """
    Compute when a message with ``timing`` should go out.

    Fixed offsets are added to ``now``. Day-part timings resolve to the next
    occurrence of that local time in ``tz``; if it is already that time or
    later today, the following day is used. Anything else falls back to a
    short delay.

    Returns:
        Send time in UTC
    """
    try:
        value = Timing(timing)
    except ValueError:
        return now + FALLBACK_SEND_DELAY

    if value in TIMING_OFFSETS:
        return now + TIMING_OFFSETS[value]

    if value in DAY_PART_TIMES:
        at = DAY_PART_TIMES[value]
        local_now = now.astimezone(tz)
        target = datetime.combine(local_now.date(), at, tzinfo=tz)
        if target <= local_now:
            target = datetime.combine(local_now.date() + timedelta(days=1), at, tzinfo=tz)
        return target.astimezone(UTC)

    return now + FALLBACK_SEND_DELAY


class ExperimentFactory:
    """
    Creates deduplicated experiments with their scheduled sends.

    Args:
        store: Record store
        selector: Combination selector
        composer: Message composer
        settings: Engine settings (dedup window, timezone)
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        store: RecordStore,
        selector: ComboSelector,
        composer: MessageComposer,
        settings: EngineSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.selector = selector
        self.composer = composer
        self.settings = settings or EngineSettings()
        self._clock = clock
        # Callers joining their own transaction must hold this while it is open
        self.lock = asyncio.Lock()

    async def create_experiment(
        self,
        user_id: str,
        cohort: str,
        user_attributes: Mapping[str, Any] | None = None,
    ) -> Experiment:
        """
        Create (or return the recent) experiment for a user and cohort.

        Args:
            user_id: User identifier
            cohort: Target cohort
            user_attributes: Attributes for message personalization

        Returns:
            The new experiment, or the existing one inside the recency window

        Raises:
            ValidationError: If user_id or cohort is empty
            StoreError: If the store fails; nothing is written in that case
        """
        if not user_id or not cohort:
            raise ValidationError("An experiment needs a user id and a cohort")

        async with self.lock:
            async with self.store.transaction() as records:
                return await self.create_in(records, user_id, cohort, user_attributes)

    async def create_in(
        self,
        records: RecordSession,
        user_id: str,
        cohort: str,
        user_attributes: Mapping[str, Any] | None = None,
    ) -> Experiment:
        """
        Same as create_experiment, inside the caller's transaction.

        The caller must hold ``self.lock`` until that transaction commits.
        """
        now = self._clock()
        attributes = dict(user_attributes or {})

        existing = await records.recent_experiment(
            user_id, cohort, since=now - self.settings.dedup_window
        )
        if existing is not None:
            logger.info(
                "Recent experiment %s exists for user %s (%s); not creating another",
                existing.id, user_id, cohort,
            )
            return existing

        stats = await records.eligible_combo_stats(self.selector.min_samples)
        combination = self.selector.select(cohort, stats, attributes)
        message = self.composer.compose(combination, attributes)
        send_at = compute_send_at(combination.timing, now, self.settings.tz)

        experiment = Experiment(
            id=new_id(),
            user_id=user_id,
            cohort=cohort,
            timing=combination.timing,
            channel=combination.channel,
            lever=combination.lever,
            offer=combination.offer,
            tone=combination.tone,
            message=message,
            created_at=now,
            status=ExperimentStatus.PENDING.value,
        )
        send = ScheduledSend(
            id=new_id(),
            experiment_id=experiment.id,
            user_id=user_id,
            send_at=send_at,
            status=SendStatus.PENDING.value,
            attempts=0,
        )
        records.add_all([experiment, send])
        await records.flush()

        logger.info(
            "Created experiment %s for user %s (%s) combo=%s tone=%s sending at %s",
            experiment.id, user_id, cohort, combination.key, combination.tone,
            send_at.isoformat(),
        )
        return experiment


__all__ = ["ExperimentFactory", "compute_send_at"]
