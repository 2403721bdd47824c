"""
Delivery Dispatcher for the Funnel Recovery Engine.

Runs on a fixed interval. Each run takes a bounded batch of pending
ScheduledSends whose send_at has passed and, for each one:

- missing experiment: logged and dead-lettered, never marked sent
- channel breaker open: left untouched for a later run. Sends on channels
  already short-circuited when the run starts are not selected at all and
  do not count against the batch size
- delivery success: send -> sent, experiment -> sent, ComboStat sent += 1,
  all in one transaction
- delivery failure: attempts += 1 and send_at pushed out by exponential
  backoff; at max_delivery_attempts the send is dead-lettered (failed).
  The experiment is not touched.

Delivery is at-least-once: if the adapter succeeds but recording the
success fails, the send stays pending and goes out again next run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from src.config.settings import EngineSettings
from src.lib.circuit_breaker import BreakerBoard
from src.lib.exceptions import StoreError
from src.models.base import utcnow
from src.models.experiment import Experiment, ExperimentStatus, ScheduledSend
from src.services.delivery_adapters import DeliveryAdapter, DeliveryResult
from src.services.record_store import RecordStore

logger = logging.getLogger(__name__)

ORPHANED_SEND_ERROR = "experiment missing"


@dataclass
class DispatchReport:
    """What one dispatch run did."""

    examined: int = 0
    sent: int = 0
    retried: int = 0
    dead_lettered: int = 0
    orphaned: int = 0
    skipped: int = 0
    aborted: bool = False


class DeliveryDispatcher:
    """
    Delivers due scheduled sends.

    Args:
        store: Record store
        adapter: Delivery adapter
        settings: Batch size, timeout, retry policy
        breakers: Per-channel circuit breakers (one is built from settings if None)
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        store: RecordStore,
        adapter: DeliveryAdapter,
        settings: EngineSettings | None = None,
        breakers: BreakerBoard | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.adapter = adapter
        self.settings = settings or EngineSettings()
        self.breakers = breakers or BreakerBoard(
            failure_threshold=self.settings.breaker_failure_threshold,
            recovery_timeout=self.settings.breaker_recovery_seconds,
        )
        self._clock = clock

    def retry_delay(self, attempts: int) -> timedelta:
        """Backoff after the ``attempts``-th failure."""
        seconds = self.settings.retry_backoff_seconds * (2 ** max(attempts - 1, 0))
        return timedelta(seconds=min(seconds, self.settings.max_retry_backoff_seconds))

    async def dispatch_due(self, now: datetime | None = None) -> DispatchReport:
        """
        Deliver one batch of due sends.

        A store failure stops the batch; sends not reached stay pending for
        the next run.
        """
        now = now or self._clock()
        report = DispatchReport()

        try:
            async with self.store.transaction() as records:
                due = await records.due_sends(
                    now,
                    self.settings.dispatch_batch_size,
                    skip_channels=self.breakers.short_circuited(),
                )
        except StoreError:
            logger.exception("Could not load due sends; skipping this dispatch run")
            report.aborted = True
            return report

        for send in due:
            report.examined += 1
            try:
                await self._dispatch_one(send, now, report)
            except StoreError:
                logger.exception("Record store failed while dispatching send %s; stopping run", send.id)
                report.aborted = True
                break

        if report.examined:
            logger.info(
                "Dispatch run: examined=%d sent=%d retried=%d dead_lettered=%d orphaned=%d skipped=%d",
                report.examined, report.sent, report.retried, report.dead_lettered,
                report.orphaned, report.skipped,
            )
        return report

    async def _dispatch_one(self, send: ScheduledSend, now: datetime, report: DispatchReport) -> None:
        async with self.store.transaction() as records:
            experiment = await records.get_experiment(send.experiment_id)
            if experiment is None:
                logger.error(
                    "Scheduled send %s references missing experiment %s; dead-lettering",
                    send.id, send.experiment_id,
                )
                await records.record_send_failure(
                    send.id, send.attempts, ORPHANED_SEND_ERROR, now, retry_at=None
                )
                report.orphaned += 1
                return

        breaker = self.breakers.for_channel(experiment.channel)
        if not await breaker.allow_request():
            logger.info("Channel %s is short-circuited; send %s stays pending", experiment.channel, send.id)
            report.skipped += 1
            return

        result = await self._deliver(send, experiment)

        if result.success:
            await breaker.record_success()
            async with self.store.transaction() as records:
                if not await records.complete_send(send.id, now):
                    logger.warning("Send %s was no longer pending after delivery", send.id)
                    report.skipped += 1
                    return
                await records.transition_experiment(
                    experiment.id,
                    [ExperimentStatus.PENDING],
                    ExperimentStatus.SENT,
                    sent_at=now,
                )
                await records.record_combo_sent(experiment, now)
            report.sent += 1
            logger.info(
                "Sent experiment %s to user %s via %s%s",
                experiment.id, send.user_id, experiment.channel, " (mock)" if result.mock else "",
            )
            return

        await breaker.record_failure()
        attempts = send.attempts + 1
        error = result.error or "delivery failed"
        if attempts >= self.settings.max_delivery_attempts:
            retry_at = None
            report.dead_lettered += 1
            logger.error(
                "Send %s for experiment %s failed %d times; dead-lettering: %s",
                send.id, experiment.id, attempts, error,
            )
        else:
            retry_at = now + self.retry_delay(attempts)
            report.retried += 1
            logger.warning(
                "Send %s for experiment %s failed (attempt %d/%d), retrying at %s: %s",
                send.id, experiment.id, attempts, self.settings.max_delivery_attempts,
                retry_at.isoformat(), error,
            )

        async with self.store.transaction() as records:
            await records.record_send_failure(send.id, attempts, error, now, retry_at)

    async def _deliver(self, send: ScheduledSend, experiment: Experiment) -> DeliveryResult:
        timeout = self.settings.delivery_timeout_seconds
        try:
            return await asyncio.wait_for(
                self.adapter.send(send.user_id, experiment.message, experiment.channel, experiment.id),
                timeout=timeout,
            )
        except TimeoutError:
            return DeliveryResult.failed(f"delivery timed out after {timeout}s")
        except Exception as e:
            # Adapter bugs count as failed attempts, not as a crashed run
            logger.exception("Delivery adapter raised for send %s", send.id)
            return DeliveryResult.failed(f"{type(e).__name__}: {e}")


__all__ = ["DeliveryDispatcher", "DispatchReport", "ORPHANED_SEND_ERROR"]
