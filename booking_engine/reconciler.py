import asyncio
import json
import logging

from . import outbox
from .config import settings
from .errors import BookingEngineError, StatsError

# Get the logger
logger = logging.getLogger("booking_engine")


class Reconciler:
    """
    Replays engine steps that failed after their booking was saved.

    Every replay is idempotent against the current booking row: assignment
    sync converges to the recorded set, the ledger step re-derives its entry,
    and the stats step only counts the performers that were not counted yet.
    """

    def __init__(self, engine, max_attempts: int | None = None, batch_size: int | None = None):
        self.engine = engine
        self.store = engine.store
        self.max_attempts = max_attempts or settings.RECONCILE_MAX_ATTEMPTS
        self.batch_size = batch_size or settings.RECONCILE_BATCH_SIZE

    async def run_once(self, limit: int | None = None) -> int:
        """Handles one batch of pending retries. Returns how many were resolved."""
        events = await outbox.pending_events(self.store, outbox.RECONCILE_TOPICS, limit=limit or self.batch_size)
        if not events:
            logger.info("No pending reconciliation events.")
            return 0

        logger.info(f"Found {len(events)} pending reconciliation events.")
        resolved = 0

        for event in events:
            payload = json.loads(event["payload"])
            try:
                await self.replay(event["topic"], payload)
            except Exception as e:
                await self._record_failure(event, payload, e)
                continue  # Go to the next event

            await self._settle(event)
            resolved += 1

        logger.info(f"Resolved {resolved} of {len(events)} reconciliation events.")
        return resolved

    async def replay(self, topic: str, payload: dict):
        booking_id = payload["booking_id"]
        # 1. The booking may have been deleted since the step failed
        booking = await self.store.maybe_single("bookings", {"id": booking_id})
        if booking is None:
            logger.info(f"Booking {booking_id} no longer exists, dropping {topic} retry.")
            return

        # 2. Re-run the step against the current row
        fallback = payload.get("fallback") or {}
        if topic == outbox.ASSIGNMENTS_TOPIC:
            await self.engine.relations.sync(booking_id, payload.get("performer_ids", []), payload.get("fee_map"))
        elif topic == outbox.LEDGER_TOPIC:
            await self.engine.ledger.ensure(booking, fallback)
        elif topic == outbox.STATS_TOPIC:
            await self.engine.stats.aggregate(
                booking,
                payload.get("pending_performer_ids", []),
                payload.get("fee_map"),
                fallback,
                all_performer_ids=payload.get("performer_ids"),
            )
        else:
            raise ValueError(f"Unknown reconciliation topic '{topic}'")
        logger.info(f"Replayed {topic} for booking {booking_id}.")

    async def _settle(self, event: dict):
        """
        Deletes a replayed event. If the delete fails the event is marked
        RESOLVED instead, so the step is never replayed a second time.
        """
        try:
            await outbox.remove(self.store, event["id"])
            return
        except BookingEngineError as e:
            logger.warning(f"Failed to delete replayed event {event['id']}, marking it resolved: {e}")

        try:
            await outbox.mark_resolved(self.store, event["id"])
        except BookingEngineError as e:
            logger.error(f"Failed to mark replayed event {event['id']} as resolved: {e}")

    async def _record_failure(self, event: dict, payload: dict, error: Exception):
        attempts = int(event.get("attempts") or 0) + 1
        status = outbox.FAILED if attempts >= self.max_attempts else outbox.PENDING
        updates = {"attempts": attempts, "status": status, "last_error": str(error)}

        if isinstance(error, StatsError):
            # Performers counted before the failure must not be counted again
            payload["pending_performer_ids"] = error.pending_performer_ids
            updates["payload"] = outbox.dump_payload(payload)

        log = logger.error if status == outbox.FAILED else logger.warning
        log(f"Retry {attempts}/{self.max_attempts} of {event['topic']} for event {event['id']} failed: {error}")
        try:
            await self.store.update_by_id(outbox.OUTBOX_TABLE, event["id"], updates)
        except Exception as e:
            logger.error(f"Failed to record retry failure for event {event['id']}: {e}")


async def run_reconciler(engine, poll_interval: int | None = None):
    """
    Main background loop for the reconciler.
    """
    reconciler = Reconciler(engine)
    poll_interval = poll_interval or settings.RECONCILE_POLL_INTERVAL_SECONDS
    try:
        while True:
            logger.info("Reconciler waking up to retry failed booking steps...")
            try:
                await reconciler.run_once()
            except Exception as e:
                logger.error(f"Error in reconciler loop: {e}")

            # Wait for the next poll interval
            await asyncio.sleep(poll_interval)
    except asyncio.CancelledError:
        logger.info("Reconciler task cancelled.")
        raise
