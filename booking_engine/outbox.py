"""
Outbox table helpers shared by the engine, the reconciler and the Kafka relay.
"""
import datetime
import json

OUTBOX_TABLE = "outbox_events"

PENDING = "PENDING"
FAILED = "FAILED"
# Handled, but the row could not be deleted. Never picked up again.
RESOLVED = "RESOLVED"

# Topics for engine steps that failed after the booking row was persisted
ASSIGNMENTS_TOPIC = "reconcile.assignments"
LEDGER_TOPIC = "reconcile.ledger"
STATS_TOPIC = "reconcile.stats"
RECONCILE_TOPICS = (ASSIGNMENTS_TOPIC, LEDGER_TOPIC, STATS_TOPIC)


def _json_default(value):
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    return str(value)


def dump_payload(payload: dict) -> str:
    return json.dumps(payload, default=_json_default)


async def enqueue(store, topic: str, payload: dict, aggregate_id: str | None = None) -> dict:
    """
    Creates a PENDING event. Unlike the booking write itself this is a
    single-row insert, so it either lands completely or not at all.
    """
    return await store.insert(OUTBOX_TABLE, {
        "topic": topic,
        "aggregate_id": aggregate_id,
        "payload": dump_payload(payload),
        "status": PENDING,
        "attempts": 0,
    })


async def pending_events(store, topics, limit: int = 100) -> list[dict]:
    return await store.select(
        OUTBOX_TABLE,
        {"status": PENDING, "topic": list(topics)},
        order_by="created_at",
        limit=limit,
    )


async def discard_pending(store, topic: str, aggregate_id: str) -> int:
    """Drops PENDING events of one topic for one booking. They are superseded."""
    return await store.delete_where(OUTBOX_TABLE, {"status": PENDING, "topic": topic, "aggregate_id": aggregate_id})


async def remove(store, event_id: str) -> int:
    return await store.delete_where(OUTBOX_TABLE, {"id": event_id})


async def mark_resolved(store, event_id: str):
    return await store.update_by_id(OUTBOX_TABLE, event_id, {"status": RESOLVED})
