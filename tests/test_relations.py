import pytest
from unittest.mock import AsyncMock

from booking_engine.errors import PersistenceError, RelationSyncError
from booking_engine.models import PerformerAssignment
from booking_engine.relations import RelationSynchronizer, plan_assignment_changes
from booking_engine.store import new_id


def _performers(query, booking_id):
    return sorted(a.performer_id for a in query(PerformerAssignment, booking_id=booking_id))


def test_plan_flags_duplicates_and_unwanted_rows():
    existing = [
        {"id": "r1", "performer_id": "a", "fee": None},
        {"id": "r2", "performer_id": "a", "fee": None},
        {"id": "r3", "performer_id": "b", "fee": 100.0},
    ]

    plan = plan_assignment_changes("bk", existing, ["a", "c"], {"a": 50})

    assert plan.stale_row_ids == ["r2", "r3"]
    assert plan.fee_updates == [("r1", 50.0)]
    assert plan.new_rows == [{"booking_id": "bk", "performer_id": "c", "fee": None}]


def test_plan_is_empty_when_nothing_changed():
    existing = [{"id": "r1", "performer_id": "a", "fee": 50.0}]
    assert plan_assignment_changes("bk", existing, ["a"], {"a": "50"}).is_empty


@pytest.mark.asyncio
async def test_sync_is_idempotent(store, query):
    booking_id = new_id()
    relations = RelationSynchronizer(store)

    await relations.sync(booking_id, ["a", "b"])
    second = await relations.sync(booking_id, ["a", "b"])

    assert second.is_empty
    assert _performers(query, booking_id) == ["a", "b"]


@pytest.mark.asyncio
async def test_sync_removes_and_adds_only_the_difference(store, query):
    booking_id = new_id()
    relations = RelationSynchronizer(store)
    await relations.sync(booking_id, ["a", "b"])
    kept_row_id = query(PerformerAssignment, booking_id=booking_id, performer_id="a")[0].id

    await relations.sync(booking_id, ["a", "c"])

    assert _performers(query, booking_id) == ["a", "c"]
    # "a" was never deleted and re-inserted
    assert query(PerformerAssignment, booking_id=booking_id, performer_id="a")[0].id == kept_row_id


@pytest.mark.asyncio
async def test_sync_updates_fee_overrides(store, query):
    booking_id = new_id()
    relations = RelationSynchronizer(store)
    await relations.sync(booking_id, ["a"], {"a": 300})

    await relations.sync(booking_id, ["a"], {"a": 450.5})

    [assignment] = query(PerformerAssignment, booking_id=booking_id)
    assert assignment.fee == 450.5


@pytest.mark.asyncio
async def test_sync_to_empty_set_clears_assignments(store, query):
    booking_id = new_id()
    relations = RelationSynchronizer(store)
    await relations.sync(booking_id, ["a", "b"])

    await relations.sync(booking_id, [])

    assert _performers(query, booking_id) == []


@pytest.mark.asyncio
async def test_failed_removal_aborts_before_inserting(store, query, mocker):
    booking_id = new_id()
    relations = RelationSynchronizer(store)
    await relations.sync(booking_id, ["a", "b"])
    mocker.patch.object(store, "delete_where", new=AsyncMock(side_effect=PersistenceError("permission denied")))
    bulk_insert = mocker.spy(store, "bulk_insert")

    with pytest.raises(RelationSyncError):
        await relations.sync(booking_id, ["a", "c"])

    bulk_insert.assert_not_called()
    assert _performers(query, booking_id) == ["a", "b"]


@pytest.mark.asyncio
async def test_failed_insert_is_reported(store, mocker):
    relations = RelationSynchronizer(store)
    mocker.patch.object(store, "bulk_insert", new=AsyncMock(side_effect=PersistenceError("disk I/O error")))

    with pytest.raises(RelationSyncError) as exc:
        await relations.sync(new_id(), ["a"])

    assert exc.value.step == "assignments"
    assert isinstance(exc.value.cause, PersistenceError)
