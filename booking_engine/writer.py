import logging

from sqlalchemy import func

from .errors import BookingNotFoundError, PersistenceError, SchemaMismatchError

logger = logging.getLogger("booking_engine")


def prune_record(record: dict, columns) -> dict:
    """Keeps only the fields the store is known to accept."""
    return {key: value for key, value in record.items() if key in columns}


class AdaptiveWriter:
    """
    Inserts or updates the booking row against a schema that may be missing
    some of the fields the record carries.

    A write rejected for an unknown column drops that column (here and in the
    oracle) and is tried again, up to ``max_attempts`` writes in total. Any
    other failure propagates on the first attempt.
    """

    def __init__(self, store, oracle, table_name: str = "bookings", max_attempts: int = 3, detector=None):
        self.store = store
        self.oracle = oracle
        self.table_name = table_name
        self.max_attempts = max_attempts
        self.detector = detector or store.column_detector

    async def write(self, record: dict, columns=None, booking_id=None) -> dict:
        columns = set(columns) if columns is not None else await self.oracle.get()
        if booking_id is not None:
            # Statements bypass the mapped table, so its onupdate never fires
            record = {**record, "updated_at": func.now()}
        missing = None
        last_error = None

        for attempt in range(1, self.max_attempts + 1):
            pruned = prune_record(record, columns)
            try:
                if booking_id is None:
                    return await self.store.insert(self.table_name, pruned)

                row = await self.store.update_by_id(self.table_name, booking_id, pruned)
                if row is None:
                    raise BookingNotFoundError(f"Booking {booking_id} not found.")
                return row
            except BookingNotFoundError:
                raise
            except PersistenceError as e:
                missing = self.detector.missing_column(e)
                if not missing or missing not in columns:
                    raise
                last_error = e
                columns.discard(missing)
                self.oracle.invalidate(missing)
                logger.warning(
                    f"Write to {self.table_name} rejected column '{missing}' "
                    f"(attempt {attempt}/{self.max_attempts}), retrying without it."
                )

        raise SchemaMismatchError(
            f"Unable to write {self.table_name}: schema still rejects columns after {self.max_attempts} attempts "
            f"(last: '{missing}').",
            column=missing,
            cause=last_error,
        )
