"""
Tests for ExperimentFactory and compute_send_at (src/services/experiment_factory.py).

Tests cover:
- send_at for fixed offsets, day-parts (including roll-over) and fallbacks
- Experiment and ScheduledSend written together
- Dedup inside the recency window (same id, one send), new experiment after it
- Concurrent creates for one (user, cohort) insert exactly once
- Nothing written when the store fails
"""

from __future__ import annotations

import asyncio
import random
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import func, select

from src.config.catalog import COHORT_PROFILES, Cohort
from src.lib.exceptions import StoreError, ValidationError
from src.models.experiment import Experiment, ExperimentStatus, ScheduledSend, SendStatus
from src.services.composer import MessageComposer
from src.services.experiment_factory import ExperimentFactory, compute_send_at
from src.services.selector import ComboSelector

NOW = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)


# =============================================================================
# compute_send_at
# =============================================================================


class TestComputeSendAt:
    """Tests for send-time computation."""

    @pytest.mark.parametrize(
        ("timing", "delta"),
        [
            ("2min", timedelta(minutes=2)),
            ("5min", timedelta(minutes=5)),
            ("30min", timedelta(minutes=30)),
            ("1hr", timedelta(hours=1)),
            ("2hr", timedelta(hours=2)),
            ("4hr", timedelta(hours=4)),
        ],
    )
    def test_fixed_offsets(self, timing: str, delta: timedelta) -> None:
        assert compute_send_at(timing, NOW) == NOW + delta

    def test_next_morning_rolls_to_tomorrow_after_eight(self) -> None:
        """Test 10:00 -> next day 08:00."""
        assert compute_send_at("next_morning", NOW) == datetime(2026, 3, 3, 8, 0, tzinfo=UTC)

    def test_next_morning_same_day_before_eight(self) -> None:
        early = datetime(2026, 3, 2, 6, 30, tzinfo=UTC)
        assert compute_send_at("next_morning", early) == datetime(2026, 3, 2, 8, 0, tzinfo=UTC)

    def test_next_evening_same_day(self) -> None:
        """Test 10:00 -> same day 19:00."""
        assert compute_send_at("next_evening", NOW) == datetime(2026, 3, 2, 19, 0, tzinfo=UTC)

    def test_next_evening_exactly_now_rolls_over(self) -> None:
        """Test a day-part equal to now is treated as passed."""
        at_seven = datetime(2026, 3, 2, 19, 0, tzinfo=UTC)
        assert compute_send_at("next_evening", at_seven) == datetime(2026, 3, 3, 19, 0, tzinfo=UTC)

    def test_day_part_uses_local_timezone(self) -> None:
        """Test 08:00 in Asia/Kolkata is 02:30 UTC."""
        kolkata = ZoneInfo("Asia/Kolkata")
        # 10:00 UTC is 15:30 in Kolkata, so the next 08:00 is tomorrow
        assert compute_send_at("next_morning", NOW, kolkata) == datetime(2026, 3, 3, 2, 30, tzinfo=UTC)

    @pytest.mark.parametrize("timing", ["payday", "whenever", ""])
    def test_fallback_is_one_minute(self, timing: str) -> None:
        assert compute_send_at(timing, NOW) == NOW + timedelta(minutes=1)


# =============================================================================
# ExperimentFactory
# =============================================================================


@pytest.fixture()
def factory(store, settings, rng, clock) -> ExperimentFactory:
    return ExperimentFactory(
        store,
        ComboSelector(epsilon=1.0, rng=rng),
        MessageComposer(rng=rng),
        settings,
        clock=clock,
    )


async def _count(store, model) -> int:
    async with store.transaction() as records:
        result = await records.session.execute(select(func.count()).select_from(model))
        return result.scalar()


@pytest.mark.asyncio
async def test_creates_experiment_and_pending_send(factory, store, clock) -> None:
    """Test an experiment and its send are written together."""
    experiment = await factory.create_experiment("u1", Cohort.PAYMENT_FAILED, {"name": "Asha"})

    assert experiment.status == ExperimentStatus.PENDING
    assert experiment.created_at == clock.now
    assert experiment.cohort == "payment_failed"
    assert experiment.message

    profile = COHORT_PROFILES[Cohort.PAYMENT_FAILED]
    assert experiment.timing in profile.timing
    assert experiment.channel in profile.channel

    async with store.transaction() as records:
        sends = await records.sends_for_experiment(experiment.id)
    assert len(sends) == 1
    send = sends[0]
    assert send.status == SendStatus.PENDING
    assert send.attempts == 0
    assert send.user_id == "u1"
    assert send.send_at == compute_send_at(experiment.timing, clock.now)


@pytest.mark.asyncio
async def test_dedup_within_window_returns_same_experiment(factory, store, clock) -> None:
    """Test a repeat inside the recency window returns the same id and adds no send."""
    first = await factory.create_experiment("u1", Cohort.CHECKOUT_ABANDONERS)
    clock.advance(minutes=59)
    second = await factory.create_experiment("u1", Cohort.CHECKOUT_ABANDONERS)

    assert second.id == first.id
    assert await _count(store, Experiment) == 1
    assert await _count(store, ScheduledSend) == 1


@pytest.mark.asyncio
async def test_dedup_is_per_cohort_and_user(factory, store) -> None:
    """Test other cohorts and other users are not deduplicated."""
    a = await factory.create_experiment("u1", Cohort.CHECKOUT_ABANDONERS)
    b = await factory.create_experiment("u1", Cohort.PAYWALL_BOUNCERS)
    c = await factory.create_experiment("u2", Cohort.CHECKOUT_ABANDONERS)

    assert len({a.id, b.id, c.id}) == 3
    assert await _count(store, ScheduledSend) == 3


@pytest.mark.asyncio
async def test_new_experiment_after_window(factory, store, clock) -> None:
    """Test the window is exclusive: exactly one hour later a new experiment is made."""
    first = await factory.create_experiment("u1", Cohort.CHECKOUT_ABANDONERS)
    clock.advance(hours=1)
    second = await factory.create_experiment("u1", Cohort.CHECKOUT_ABANDONERS)

    assert second.id != first.id
    assert await _count(store, ScheduledSend) == 2


@pytest.mark.asyncio
async def test_concurrent_creates_insert_once(factory, store) -> None:
    """Test racing creates for one (user, cohort) produce a single experiment."""
    results = await asyncio.gather(
        *(factory.create_experiment("u1", Cohort.PAYMENT_FAILED) for _ in range(5))
    )

    assert len({e.id for e in results}) == 1
    assert await _count(store, Experiment) == 1
    assert await _count(store, ScheduledSend) == 1


@pytest.mark.asyncio
async def test_unknown_cohort_uses_default_value_sets(factory) -> None:
    """Test a cohort outside the catalog is still served, from the default profile."""
    experiment = await factory.create_experiment("u1", "lapsed_vips")

    profile = COHORT_PROFILES[Cohort.CHECKOUT_ABANDONERS]
    assert experiment.cohort == "lapsed_vips"
    assert experiment.lever in profile.lever


@pytest.mark.asyncio
async def test_store_failure_writes_nothing(store, settings, clock) -> None:
    """Test a failing transaction surfaces StoreError and leaves no partial rows."""
    composer = MessageComposer(rng=random.Random(1))
    selector = ComboSelector(epsilon=1.0, rng=random.Random(1))
    factory = ExperimentFactory(store, selector, composer, settings, clock=clock)

    # Without the sends table the second insert fails; the experiment must roll back too
    async with store.engine.begin() as conn:
        await conn.exec_driver_sql("DROP TABLE scheduled_sends")

    with pytest.raises(StoreError):
        await factory.create_experiment("u1", Cohort.PAYMENT_FAILED)

    assert await _count(store, Experiment) == 0


@pytest.mark.asyncio
async def test_empty_cohort_is_rejected(engine) -> None:
    with pytest.raises(ValidationError):
        await engine.factory.create_experiment("u1", "")
