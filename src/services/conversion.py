"""
Conversion Resolver and open tracking for the Funnel Recovery Engine.

Attribution is last-touch: a conversion goes to the user's most recently
created experiment that was delivered (sent) or opened. Ties on
created_at are broken by id, descending, so the choice is deterministic.

Both status changes are conditional updates, so a conversion or an open
is counted once even when two events race.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from src.models.base import utcnow
from src.models.experiment import CONVERTIBLE_STATUSES, Experiment, ExperimentStatus
from src.services.record_store import RecordSession, RecordStore

logger = logging.getLogger(__name__)


class ConversionResolver:
    """
    Attributes conversions and opens to experiments.

    Args:
        store: Record store
        clock: Returns the current UTC time
    """

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self._clock = clock

    async def resolve_conversion(
        self,
        user_id: str,
        records: RecordSession | None = None,
    ) -> Experiment | None:
        """
        Mark the user's latest delivered experiment as converted.

        Args:
            user_id: User that converted
            records: Open transaction to join; a new one is used if None

        Returns:
            The converted experiment, or None when there is nothing to attribute
        """
        if records is not None:
            return await self._resolve_in(records, user_id)
        async with self.store.transaction() as records:
            return await self._resolve_in(records, user_id)

    async def _resolve_in(self, records: RecordSession, user_id: str) -> Experiment | None:
        now = self._clock()
        experiment = await records.latest_convertible_experiment(user_id)
        if experiment is None:
            logger.debug("No delivered experiment to attribute conversion of user %s", user_id)
            return None

        converted = await records.transition_experiment(
            experiment.id,
            CONVERTIBLE_STATUSES,
            ExperimentStatus.CONVERTED,
            converted_at=now,
        )
        if not converted:
            logger.info("Experiment %s was converted concurrently; not counting again", experiment.id)
            return None

        if not await records.record_combo_conversion(experiment.combo_key, now):
            logger.warning(
                "Conversion of experiment %s not counted for %s: no deliveries left to match",
                experiment.id, experiment.combo_key,
            )

        logger.info(
            "Conversion attributed to experiment %s (user %s, combo %s)",
            experiment.id, user_id, experiment.combo_key,
        )
        return experiment

    async def mark_opened(self, experiment_id: str) -> Experiment | None:
        """
        Record that a sent experiment's deep link was opened.

        Experiments in any status other than sent are returned unchanged.

        Returns:
            The experiment, or None if it does not exist
        """
        now = self._clock()
        async with self.store.transaction() as records:
            experiment = await records.get_experiment(experiment_id)
            if experiment is None:
                return None
            opened = await records.transition_experiment(
                experiment_id,
                [ExperimentStatus.SENT],
                ExperimentStatus.OPENED,
                opened_at=now,
            )
            if opened:
                logger.info("Experiment %s opened by user %s", experiment_id, experiment.user_id)
        return experiment


__all__ = ["ConversionResolver"]
