"""
Record store for the Funnel Recovery Engine.

Single source of truth for observed events, journeys, experiments,
scheduled sends and combination statistics, on SQLAlchemy's async engine.

Every mutation that must happen at most once is a conditional UPDATE
("claim") whose rowcount tells the caller whether it won:

- claim_journey:        resolved = false  -> true
- complete_send:        status = pending  -> sent
- transition_experiment: status in (...)  -> new status

ComboStat increments are single SQL statements per key, so concurrent
dispatch and conversion runs cannot lose updates.

Usage:
    store = RecordStore.from_url("sqlite+aiosqlite:///./recovery.db")
    await store.create_schema()

    async with store.transaction() as records:
        records.add(journey)
    # committed here, rolled back (StoreError) on database failure
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Collection, Iterable
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.lib.exceptions import StoreError
from src.models.base import Base
from src.models.experiment import (
    CONVERTIBLE_STATUSES,
    ComboStat,
    Experiment,
    ExperimentStatus,
    ScheduledSend,
    SendStatus,
)
from src.models.journey import JourneyRecord, ObservedEvent

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {"sqlite": sqlite_insert, "postgresql": pg_insert}


class RecordSession:
    """Record operations bound to one open transaction."""

    def __init__(self, session: AsyncSession, dialect_name: str) -> None:
        self.session = session
        self._dialect_name = dialect_name

    # ------------------------------------------------------------------
    # Generic
    # ------------------------------------------------------------------

    def add(self, record: Base) -> None:
        self.session.add(record)

    def add_all(self, records: Iterable[Base]) -> None:
        self.session.add_all(list(records))

    async def flush(self) -> None:
        await self.session.flush()

    # ------------------------------------------------------------------
    # Observed events / journeys
    # ------------------------------------------------------------------

    async def find_follow_up(
        self,
        user_id: str,
        event_type: str,
        after: datetime,
    ) -> ObservedEvent | None:
        """Earliest event of ``event_type`` for the user strictly after ``after``."""
        stmt = (
            select(ObservedEvent)
            .where(
                and_(
                    ObservedEvent.user_id == user_id,
                    ObservedEvent.event_type == event_type,
                    ObservedEvent.event_time > after,
                )
            )
            .order_by(ObservedEvent.event_time.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def open_journeys_awaiting(
        self,
        user_id: str,
        expected_event: str,
        before: datetime,
    ) -> list[JourneyRecord]:
        """Unresolved journeys of the user waiting for ``expected_event``, started before ``before``."""
        stmt = select(JourneyRecord).where(
            and_(
                JourneyRecord.user_id == user_id,
                JourneyRecord.expected_event == expected_event,
                JourneyRecord.resolved.is_(False),
                JourneyRecord.event_time < before,
            )
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def due_journeys(self, now: datetime, limit: int) -> list[JourneyRecord]:
        """Unresolved journeys past their deadline, oldest deadline first."""
        stmt = (
            select(JourneyRecord)
            .where(
                and_(
                    JourneyRecord.resolved.is_(False),
                    JourneyRecord.deadline <= now,
                )
            )
            .order_by(JourneyRecord.deadline.asc(), JourneyRecord.id.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def claim_journey(self, journey_id: str, resolution: str, now: datetime) -> bool:
        """
        Resolve a journey if nobody else has.

        Returns:
            True if this call flipped resolved to True, False if it was
            already resolved.
        """
        stmt = (
            update(JourneyRecord)
            .where(
                and_(
                    JourneyRecord.id == journey_id,
                    JourneyRecord.resolved.is_(False),
                )
            )
            .values(resolved=True, resolved_at=now, resolution=resolution)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def count_open_journeys(self) -> int:
        stmt = select(func.count(JourneyRecord.id)).where(JourneyRecord.resolved.is_(False))
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    # ------------------------------------------------------------------
    # Experiments
    # ------------------------------------------------------------------

    async def get_experiment(self, experiment_id: str) -> Experiment | None:
        return await self.session.get(Experiment, experiment_id)

    async def recent_experiment(
        self,
        user_id: str,
        cohort: str,
        since: datetime,
    ) -> Experiment | None:
        """Newest experiment for (user, cohort) created after ``since``."""
        stmt = (
            select(Experiment)
            .where(
                and_(
                    Experiment.user_id == user_id,
                    Experiment.cohort == cohort,
                    Experiment.created_at > since,
                )
            )
            .order_by(Experiment.created_at.desc(), Experiment.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def latest_convertible_experiment(self, user_id: str) -> Experiment | None:
        """Most recently created sent/opened experiment; ties broken by id."""
        stmt = (
            select(Experiment)
            .where(
                and_(
                    Experiment.user_id == user_id,
                    Experiment.status.in_([s.value for s in CONVERTIBLE_STATUSES]),
                )
            )
            .order_by(Experiment.created_at.desc(), Experiment.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def transition_experiment(
        self,
        experiment_id: str,
        from_statuses: Iterable[str],
        to_status: ExperimentStatus,
        **timestamps: datetime,
    ) -> bool:
        """
        Move an experiment to ``to_status`` if it is currently in ``from_statuses``.

        Args:
            experiment_id: Experiment to update
            from_statuses: Statuses the transition is allowed from
            to_status: Target status
            **timestamps: Columns to set alongside (sent_at, opened_at, converted_at)

        Returns:
            True if the row was updated.
        """
        stmt = (
            update(Experiment)
            .where(
                and_(
                    Experiment.id == experiment_id,
                    Experiment.status.in_([str(s) for s in from_statuses]),
                )
            )
            .values(status=to_status.value, **timestamps)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        # Reload so an Experiment already held by this session shows the new status
        await self.session.execute(
            select(Experiment)
            .where(Experiment.id == experiment_id)
            .execution_options(populate_existing=True)
        )
        return True

    async def list_experiments(self, limit: int = 50) -> list[Experiment]:
        stmt = (
            select(Experiment)
            .order_by(Experiment.created_at.desc(), Experiment.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_experiments_by_status(self) -> dict[str, int]:
        stmt = select(Experiment.status, func.count(Experiment.id)).group_by(Experiment.status)
        result = await self.session.execute(stmt)
        return {status: count for status, count in result.all()}

    # ------------------------------------------------------------------
    # Scheduled sends
    # ------------------------------------------------------------------

    async def sends_for_experiment(self, experiment_id: str) -> list[ScheduledSend]:
        stmt = select(ScheduledSend).where(ScheduledSend.experiment_id == experiment_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def due_sends(
        self,
        now: datetime,
        limit: int,
        skip_channels: Collection[str] = (),
    ) -> list[ScheduledSend]:
        """
        Pending sends whose send_at has passed, earliest first.

        Sends whose experiment goes out on one of ``skip_channels`` are left
        out, so they do not take up the batch. Sends without an experiment
        are always included.
        """
        stmt = select(ScheduledSend).where(
            and_(
                ScheduledSend.status == SendStatus.PENDING.value,
                ScheduledSend.send_at <= now,
            )
        )
        if skip_channels:
            stmt = stmt.outerjoin(Experiment, Experiment.id == ScheduledSend.experiment_id).where(
                or_(Experiment.id.is_(None), Experiment.channel.not_in(list(skip_channels)))
            )
        stmt = stmt.order_by(ScheduledSend.send_at.asc(), ScheduledSend.id.asc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def complete_send(self, send_id: str, now: datetime) -> bool:
        """Flip a pending send to sent. Returns False if it was not pending."""
        stmt = (
            update(ScheduledSend)
            .where(
                and_(
                    ScheduledSend.id == send_id,
                    ScheduledSend.status == SendStatus.PENDING.value,
                )
            )
            .values(status=SendStatus.SENT.value, sent_at=now, last_attempt_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def record_send_failure(
        self,
        send_id: str,
        attempts: int,
        error: str,
        now: datetime,
        retry_at: datetime | None,
    ) -> bool:
        """
        Store a failed attempt on a pending send.

        Args:
            send_id: The send
            attempts: Total failed attempts including this one
            error: Error description
            now: Attempt time
            retry_at: Next send_at, or None to dead-letter the send

        Returns:
            True if the send was still pending and got updated.
        """
        values: dict = {
            "attempts": attempts,
            "last_error": error[:2000],
            "last_attempt_at": now,
        }
        if retry_at is None:
            values["status"] = SendStatus.FAILED.value
        else:
            values["send_at"] = retry_at

        stmt = (
            update(ScheduledSend)
            .where(
                and_(
                    ScheduledSend.id == send_id,
                    ScheduledSend.status == SendStatus.PENDING.value,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def count_failed_sends(self) -> int:
        stmt = select(func.count(ScheduledSend.id)).where(
            ScheduledSend.status == SendStatus.FAILED.value
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    # ------------------------------------------------------------------
    # Combination statistics
    # ------------------------------------------------------------------

    async def record_combo_sent(self, experiment: Experiment, now: datetime) -> None:
        """Add one delivery to the experiment's combination, creating the row on first use."""
        values = {
            "combo_key": experiment.combo_key,
            "timing": experiment.timing,
            "channel": experiment.channel,
            "lever": experiment.lever,
            "offer": experiment.offer,
            "sent_count": 1,
            "converted_count": 0,
            "last_updated": now,
        }
        insert_fn = _UPSERT_DIALECTS.get(self._dialect_name)

        if insert_fn is not None:
            stmt = insert_fn(ComboStat).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[ComboStat.combo_key],
                set_={
                    "sent_count": ComboStat.sent_count + 1,
                    "last_updated": stmt.excluded.last_updated,
                },
            )
            await self.session.execute(stmt)
            return

        stmt = (
            update(ComboStat)
            .where(ComboStat.combo_key == experiment.combo_key)
            .values(sent_count=ComboStat.sent_count + 1, last_updated=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            self.session.add(ComboStat(**values))
            await self.session.flush()

    async def record_combo_conversion(self, key: str, now: datetime) -> bool:
        """
        Add one conversion to a combination.

        Never lets converted_count exceed sent_count.

        Returns:
            True if the counter was incremented.
        """
        stmt = (
            update(ComboStat)
            .where(
                and_(
                    ComboStat.combo_key == key,
                    ComboStat.converted_count < ComboStat.sent_count,
                )
            )
            .values(converted_count=ComboStat.converted_count + 1, last_updated=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def get_combo_stat(self, key: str) -> ComboStat | None:
        return await self.session.get(ComboStat, key)

    async def eligible_combo_stats(self, min_samples: int) -> list[ComboStat]:
        """Stats with at least ``min_samples`` deliveries."""
        stmt = select(ComboStat).where(ComboStat.sent_count >= min_samples)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class RecordStore:
    """
    Session factory wrapper handing out one RecordSession per transaction.

    Args:
        engine: Async SQLAlchemy engine
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str) -> RecordStore:
        return cls(create_async_engine(database_url))

    async def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[RecordSession]:
        """
        Open a transaction.

        Commits when the block exits cleanly. Database errors roll back
        every change made in the block and surface as StoreError; other
        exceptions roll back and propagate unchanged.
        """
        async with self._session_factory() as session:
            try:
                yield RecordSession(session, self.engine.dialect.name)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("Record store transaction rolled back: %s", e)
                raise StoreError(str(e)) from e
            except BaseException:
                await session.rollback()
                raise


__all__ = ["RecordSession", "RecordStore"]
