import asyncio
import datetime

import pytest

from booking_engine.errors import PersistenceError, StatsError
from booking_engine.models import RelationshipStat
from booking_engine.stats import StatisticsAggregator, allocate_fees
from booking_engine.store import new_id


def _booking(**overrides):
    booking = {
        "id": new_id(),
        "fee": 1000.0,
        "booker_id": "booker-1",
        "event_date": datetime.date(2025, 5, 1),
    }
    booking.update(overrides)
    return booking


def _stat(query, performer_id, booker_id="booker-1"):
    [stat] = query(RelationshipStat, performer_id=performer_id, booker_id=booker_id)
    return stat


def test_even_split_rounds_per_performer():
    assert allocate_fees(1000, ["a", "b", "c"], {}) == {"a": 333.33, "b": 333.33, "c": 333.33}


def test_override_wins_over_the_split():
    assert allocate_fees(1000, ["a", "b"], {"a": 700}) == {"a": 700.0, "b": 500.0}


def test_zero_fee_allocates_nothing():
    assert allocate_fees(0, ["a"], {}) == {"a": 0.0}


@pytest.mark.asyncio
async def test_first_booking_creates_the_relationship(store, query):
    await StatisticsAggregator(store).aggregate(_booking(), ["a", "b"])

    for performer_id in ("a", "b"):
        stat = _stat(query, performer_id)
        assert stat.total_events == 1
        assert stat.total_revenue == 500.0
        assert stat.last_booking_date == datetime.date(2025, 5, 1)
        assert stat.is_active is True


@pytest.mark.asyncio
async def test_later_bookings_accumulate(store, query):
    stats = StatisticsAggregator(store)
    await stats.aggregate(_booking(event_date=datetime.date(2025, 5, 1)), ["a"])
    await stats.aggregate(_booking(fee=250.0, event_date=datetime.date(2025, 3, 1)), ["a"])

    stat = _stat(query, "a")
    assert stat.total_events == 2
    assert stat.total_revenue == 1250.0
    # An older booking never moves the last booking date backwards
    assert stat.last_booking_date == datetime.date(2025, 5, 1)


@pytest.mark.asyncio
async def test_nothing_happens_without_a_booker(store, query):
    await StatisticsAggregator(store).aggregate(_booking(booker_id=None), ["a"])

    assert query(RelationshipStat) == []


@pytest.mark.asyncio
async def test_booker_falls_back_to_the_written_record(store, query):
    await StatisticsAggregator(store).aggregate(_booking(booker_id=None), ["a"], fallback={"booker_id": "booker-2"})

    assert _stat(query, "a", "booker-2").total_events == 1


@pytest.mark.asyncio
async def test_failure_reports_the_performers_not_yet_counted(store, query, mocker):
    stats = StatisticsAggregator(store)
    real_insert = store.insert

    async def insert(table_name, values):
        if values.get("performer_id") == "b":
            raise PersistenceError("database is locked")
        return await real_insert(table_name, values)

    mocker.patch.object(store, "insert", side_effect=insert)

    with pytest.raises(StatsError) as exc:
        await stats.aggregate(_booking(), ["a", "b", "c"])

    assert exc.value.pending_performer_ids == ["b", "c"]
    assert _stat(query, "a").total_events == 1
    assert query(RelationshipStat, performer_id="c") == []


@pytest.mark.asyncio
async def test_resumed_run_keeps_the_full_split(store, query):
    """Retrying only the pending performers still splits the fee across all of them."""
    await StatisticsAggregator(store).aggregate(_booking(), ["b"], all_performer_ids=["a", "b"])

    assert _stat(query, "b").total_revenue == 500.0


@pytest.mark.asyncio
async def test_overlapping_saves_share_one_relationship_row(store, query):
    stats = StatisticsAggregator(store)

    await asyncio.gather(
        stats.aggregate(_booking(), ["a"]),
        stats.aggregate(_booking(), ["a"]),
    )

    stat = _stat(query, "a")
    assert stat.total_events == 2
    assert stat.total_revenue == 2000.0
