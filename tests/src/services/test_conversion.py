"""
Tests for ConversionResolver (src/services/conversion.py).

Tests cover last-touch attribution, the id tie-break, statuses that cannot
convert, the converted <= sent invariant and open tracking.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.config.catalog import Cohort
from src.models.base import new_id
from src.models.experiment import ComboStat, Experiment, ExperimentStatus


def _experiment(user_id: str, created_at, status: ExperimentStatus, experiment_id: str | None = None) -> Experiment:
    return Experiment(
        id=experiment_id or new_id(),
        user_id=user_id,
        cohort=Cohort.CHECKOUT_ABANDONERS.value,
        timing="2min",
        channel="push",
        lever="scarcity",
        offer="discount_50",
        tone="urgent",
        message="Limited time only",
        created_at=created_at,
        status=status.value,
    )


async def _delivered(engine, clock, user_id: str = "u1") -> Experiment:
    experiment = await engine.factory.create_experiment(user_id, Cohort.PAYMENT_FAILED)
    clock.advance(hours=1)
    await engine.dispatcher.dispatch_due()
    async with engine.store.transaction() as records:
        return await records.get_experiment(experiment.id)


@pytest.mark.asyncio
async def test_converts_latest_delivered_experiment(engine, store, clock) -> None:
    """Test conversion marks the experiment and increments converted_count."""
    experiment = await _delivered(engine, clock)

    converted = await engine.resolver.resolve_conversion("u1")

    assert converted.id == experiment.id
    async with store.transaction() as records:
        reloaded = await records.get_experiment(experiment.id)
        stat = await records.get_combo_stat(experiment.combo_key)
    assert reloaded.status == ExperimentStatus.CONVERTED
    assert reloaded.converted_at == clock.now
    assert stat.sent_count == 1
    assert stat.converted_count == 1


@pytest.mark.asyncio
async def test_no_experiment_is_a_no_op(engine) -> None:
    """Test a conversion for a user without experiments changes nothing."""
    assert await engine.resolver.resolve_conversion("nobody") is None


@pytest.mark.asyncio
async def test_pending_experiment_is_not_converted(engine, store) -> None:
    """Test an undelivered experiment cannot be converted."""
    experiment = await engine.factory.create_experiment("u1", Cohort.PAYMENT_FAILED)

    assert await engine.resolver.resolve_conversion("u1") is None
    async with store.transaction() as records:
        assert (await records.get_experiment(experiment.id)).status == ExperimentStatus.PENDING


@pytest.mark.asyncio
async def test_conversion_counted_once(engine, store, clock) -> None:
    """Test a second conversion event does not convert or count again."""
    experiment = await _delivered(engine, clock)

    await engine.resolver.resolve_conversion("u1")
    again = await engine.resolver.resolve_conversion("u1")

    assert again is None
    async with store.transaction() as records:
        stat = await records.get_combo_stat(experiment.combo_key)
    assert stat.converted_count == 1


@pytest.mark.asyncio
async def test_most_recent_wins_and_ties_break_by_id(engine, store, clock) -> None:
    """Test newest created_at wins; identical timestamps go to the larger id."""
    older = _experiment("u1", clock.now - timedelta(hours=3), ExperimentStatus.SENT, "aaaa")
    tie_low = _experiment("u1", clock.now - timedelta(hours=1), ExperimentStatus.OPENED, "bbbb")
    tie_high = _experiment("u1", clock.now - timedelta(hours=1), ExperimentStatus.SENT, "cccc")
    async with store.transaction() as records:
        records.add_all([older, tie_low, tie_high])

    converted = await engine.resolver.resolve_conversion("u1")

    assert converted.id == "cccc"


@pytest.mark.asyncio
async def test_converted_never_exceeds_sent(engine, store, clock) -> None:
    """Test a conversion without a matching delivery count is not counted."""
    orphan = _experiment("u1", clock.now, ExperimentStatus.SENT)
    async with store.transaction() as records:
        records.add(orphan)
        records.add(
            ComboStat(
                combo_key=orphan.combo_key,
                timing=orphan.timing,
                channel=orphan.channel,
                lever=orphan.lever,
                offer=orphan.offer,
                sent_count=0,
                converted_count=0,
                last_updated=clock.now,
            )
        )

    converted = await engine.resolver.resolve_conversion("u1")

    assert converted.id == orphan.id
    async with store.transaction() as records:
        stat = await records.get_combo_stat(orphan.combo_key)
    assert stat.converted_count == 0
    assert stat.converted_count <= stat.sent_count


# =============================================================================
# Open tracking
# =============================================================================


@pytest.mark.asyncio
async def test_mark_opened_moves_sent_to_opened(engine, store, clock) -> None:
    experiment = await _delivered(engine, clock)

    opened = await engine.resolver.mark_opened(experiment.id)

    assert opened.status == ExperimentStatus.OPENED
    assert opened.opened_at == clock.now


@pytest.mark.asyncio
async def test_opened_experiment_can_still_convert(engine, store, clock) -> None:
    experiment = await _delivered(engine, clock)
    await engine.resolver.mark_opened(experiment.id)

    converted = await engine.resolver.resolve_conversion("u1")

    assert converted.id == experiment.id
    assert converted.status == ExperimentStatus.CONVERTED


@pytest.mark.asyncio
async def test_mark_opened_leaves_other_statuses(engine, store, clock) -> None:
    """Test pending and converted experiments are not moved by an open."""
    pending = await engine.factory.create_experiment("u2", Cohort.PAYMENT_FAILED)
    assert (await engine.resolver.mark_opened(pending.id)).status == ExperimentStatus.PENDING

    delivered = await _delivered(engine, clock)
    await engine.resolver.resolve_conversion("u1")
    assert (await engine.resolver.mark_opened(delivered.id)).status == ExperimentStatus.CONVERTED


@pytest.mark.asyncio
async def test_mark_opened_unknown_experiment(engine) -> None:
    assert await engine.resolver.mark_opened("no-such-id") is None
