"""
Booking Reconciliation Engine.

Saving a booking is one adaptive write of the booking row followed by three
independent steps: performer assignments, the ledger entry and the
(performer, booker) statistics. The booking write decides the result. A
failed step is logged, returned as a warning and recorded in the outbox for
the reconciler, but it never undoes the booking write.
"""
import logging

from . import outbox
from .column_oracle import ColumnOracle
from .config import settings
from .errors import BookingEngineError, BookingNotFoundError, BookingValidationError, NetworkError, StatsError
from .ledger import LedgerEnsurer
from .record_builder import build_booking
from .relations import ASSIGNMENTS_TABLE, RelationSynchronizer
from .schemas import OperationResult
from .stats import StatisticsAggregator
from .store import new_id
from .writer import AdaptiveWriter

logger = logging.getLogger("booking_engine")

BOOKINGS_TABLE = "bookings"

# Fields the ledger and stats steps fall back to when the stored row lacks them
FALLBACK_FIELDS = ("id", "fee", "fee_exempt", "due_date", "event_date", "booker_id")


def _sort_by_date(bookings: list[dict]) -> list[dict]:
    """Most recent first, undated bookings last."""
    return sorted(
        bookings,
        key=lambda b: (b.get("event_date") is not None, str(b.get("event_date") or "")),
        reverse=True,
    )


class BookingEngine:

    def __init__(
            self,
            store,
            oracle: ColumnOracle | None = None,
            max_write_attempts: int | None = None,
            lookup_fallback_on_network_error: bool | None = None,
            change_topic: str | None = settings.KAFKA_BOOKING_TOPIC,
    ):
        self.store = store
        self.oracle = oracle or ColumnOracle(store, BOOKINGS_TABLE)
        self.writer = AdaptiveWriter(
            store,
            self.oracle,
            BOOKINGS_TABLE,
            max_attempts=max_write_attempts or settings.WRITE_MAX_ATTEMPTS,
        )
        self.relations = RelationSynchronizer(store)
        self.ledger = LedgerEnsurer(store)
        self.stats = StatisticsAggregator(store)
        if lookup_fallback_on_network_error is None:
            lookup_fallback_on_network_error = settings.COLUMN_LOOKUP_FALLBACK_ON_NETWORK_ERROR
        self.lookup_fallback_on_network_error = lookup_fallback_on_network_error
        self.change_topic = change_topic

    # --- public operations ---

    async def create(self, payload) -> OperationResult:
        return await self._save(payload)

    async def update(self, booking_id: str, payload) -> OperationResult:
        if not booking_id:
            return OperationResult(error="Booking id is required.", error_kind=BookingValidationError.kind)
        return await self._save(payload, booking_id)

    async def delete(self, booking_id: str) -> OperationResult:
        """
        Removes the assignments, then the booking row. Ledger entries and
        statistics are kept.
        """
        if not booking_id:
            return OperationResult(error="Booking id is required.", error_kind=BookingValidationError.kind)
        try:
            await self.relations.clear(booking_id)
            removed = await self.store.delete_where(BOOKINGS_TABLE, {"id": booking_id})
            if not removed:
                raise BookingNotFoundError(f"Booking {booking_id} not found.")
        except BookingEngineError as e:
            logger.error(f"Error deleting booking {booking_id}: {e}")
            return OperationResult(error=e.message or str(e), error_kind=e.kind)

        logger.info(f"Deleted booking {booking_id}.")
        await self._publish_change(booking_id, "deleted")
        return OperationResult()

    async def get_all(self) -> OperationResult:
        try:
            bookings = await self.store.select(BOOKINGS_TABLE, order_by="event_date", descending=True)
            return OperationResult(data=await self._attach_performers(bookings))
        except BookingEngineError as e:
            logger.error(f"Error fetching bookings: {e}")
            return OperationResult(data=[], error=e.message or str(e), error_kind=e.kind)

    async def get_by_id(self, booking_id: str) -> OperationResult:
        try:
            booking = await self.store.maybe_single(BOOKINGS_TABLE, {"id": booking_id})
            if booking is None:
                raise BookingNotFoundError(f"Booking {booking_id} not found.")
            return OperationResult(data=(await self._attach_performers([booking]))[0])
        except BookingEngineError as e:
            logger.error(f"Error fetching booking {booking_id}: {e}")
            return OperationResult(error=e.message or str(e), error_kind=e.kind)

    async def get_by_performer(self, performer_id: str) -> OperationResult:
        """Bookings where the performer is the legacy primary or holds an assignment."""
        try:
            bookings = {
                b["id"]: b for b in await self.store.select(BOOKINGS_TABLE, {"performer_id": performer_id})
            }
            assignments = await self.store.select(ASSIGNMENTS_TABLE, {"performer_id": performer_id})
            missing = list({a["booking_id"] for a in assignments} - set(bookings))
            if missing:
                for booking in await self.store.select(BOOKINGS_TABLE, {"id": missing}):
                    bookings[booking["id"]] = booking
            data = await self._attach_performers(_sort_by_date(list(bookings.values())))
            return OperationResult(data=data)
        except BookingEngineError as e:
            logger.error(f"Error fetching bookings of performer {performer_id}: {e}")
            return OperationResult(data=[], error=e.message or str(e), error_kind=e.kind)

    # --- save pipeline ---

    async def _save(self, payload, booking_id: str | None = None) -> OperationResult:
        action = "create" if booking_id is None else "update"
        try:
            # Draft -> Validated: no I/O happens before this succeeds
            draft = build_booking(payload)
            record = dict(draft.record)
            if booking_id is None:
                record["id"] = new_id()

            # Validated -> Persisted
            columns = await self._columns()
            row = await self.writer.write(record, columns, booking_id=booking_id)
        except BookingEngineError as e:
            logger.error(f"Error trying to {action} booking: {e}")
            return OperationResult(error=e.message or str(e), error_kind=e.kind)
        except Exception as e:
            logger.exception(f"Unexpected error trying to {action} booking")
            return OperationResult(error=f"An error occurred while trying to {action} the booking: {e}",
                                   error_kind="persistence")

        fallback = {name: record.get(name) for name in FALLBACK_FIELDS}
        fallback["id"] = row.get("id") or booking_id or record.get("id")
        warnings = await self._run_downstream(fallback["id"], row, draft, fallback)

        logger.info(f"Booking {fallback['id']} {action}d with {len(warnings)} downstream warning(s).")
        await self._publish_change(fallback["id"], "saved")
        return OperationResult(data=row, warnings=warnings)

    async def _columns(self) -> set[str]:
        try:
            return await self.oracle.get()
        except NetworkError:
            if not self.lookup_fallback_on_network_error:
                raise
            logger.warning("Column lookup hit a network error, writing with the baseline columns.")
            return self.oracle.baseline()

    async def _run_downstream(self, booking_id: str, row: dict, draft, fallback: dict) -> list[str]:
        """
        Persisted -> {AssignmentsSynced, LedgerEnsured, StatsAggregated}.
        Each step is isolated; a failure is recorded and the others still run.
        """
        warnings = []

        try:
            await self.relations.sync(booking_id, draft.performer_ids, draft.fee_map)
            await self._discard_superseded(booking_id)
        except Exception as e:
            warnings.append(self._step_failed("assignments", booking_id, e))
            await self._enqueue_retry(outbox.ASSIGNMENTS_TOPIC, booking_id, {
                "booking_id": booking_id,
                "performer_ids": draft.performer_ids,
                "fee_map": draft.fee_map,
            }, supersede=True)

        try:
            await self.ledger.ensure(row, fallback)
        except Exception as e:
            warnings.append(self._step_failed("ledger", booking_id, e))
            await self._enqueue_retry(outbox.LEDGER_TOPIC, booking_id, {
                "booking_id": booking_id,
                "fallback": fallback,
            })

        try:
            await self.stats.aggregate(row, draft.performer_ids, draft.fee_map, fallback)
        except Exception as e:
            warnings.append(self._step_failed("stats", booking_id, e))
            pending = e.pending_performer_ids if isinstance(e, StatsError) else draft.performer_ids
            await self._enqueue_retry(outbox.STATS_TOPIC, booking_id, {
                "booking_id": booking_id,
                "performer_ids": draft.performer_ids,
                "pending_performer_ids": pending,
                "fee_map": draft.fee_map,
                "fallback": fallback,
            })

        return warnings

    @staticmethod
    def _step_failed(step: str, booking_id: str, error: Exception) -> str:
        if isinstance(error, BookingEngineError):
            logger.error(f"Failed to sync {step} of booking {booking_id} (non-fatal): {error}")
        else:
            logger.exception(f"Unexpected error syncing {step} of booking {booking_id} (non-fatal)")
        return f"{step}: {error}"

    async def _enqueue_retry(self, topic: str, booking_id: str, payload: dict, supersede: bool = False):
        try:
            if supersede:
                # Only the latest intended assignment set is worth replaying
                await outbox.discard_pending(self.store, topic, booking_id)
            await outbox.enqueue(self.store, topic, payload, aggregate_id=booking_id)
        except BookingEngineError as e:
            logger.error(f"Failed to record {topic} retry for booking {booking_id}: {e}")

    async def _discard_superseded(self, booking_id: str):
        try:
            await outbox.discard_pending(self.store, outbox.ASSIGNMENTS_TOPIC, booking_id)
        except BookingEngineError as e:
            logger.warning(f"Could not clear stale assignment retries for booking {booking_id}: {e}")

    async def _publish_change(self, booking_id: str, action: str):
        if not self.change_topic:
            return
        try:
            await outbox.enqueue(
                self.store, self.change_topic, {"booking_id": booking_id, "action": action}, aggregate_id=booking_id
            )
        except BookingEngineError as e:
            logger.warning(f"Failed to enqueue '{action}' change event for booking {booking_id}: {e}")

    async def _attach_performers(self, bookings: list[dict]) -> list[dict]:
        ids = [b["id"] for b in bookings if b.get("id")]
        assignments = await self.store.select(ASSIGNMENTS_TABLE, {"booking_id": ids}) if ids else []
        by_booking: dict[str, list] = {}
        for assignment in assignments:
            by_booking.setdefault(assignment["booking_id"], []).append(assignment)
        return [{**b, "performers": by_booking.get(b.get("id"), [])} for b in bookings]
