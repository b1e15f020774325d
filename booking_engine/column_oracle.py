import logging

from .errors import NetworkError, PersistenceError

logger = logging.getLogger("booking_engine")

# Columns every deployed bookings table is known to have. The lookup can only add to this.
BASE_BOOKING_COLUMNS = frozenset({
    "id",
    "event_name",
    "event_date",
    "performer_id",
    "booker_id",
    "status",
    "description",
    "venue",
    "location",
    "city",
    "state",
    "address",
    "fee",
    "fee_exempt",
    "commission_rate",
    "commission_amount",
    "due_date",
    "expected_attendees",
    "start_time",
    "end_time",
    "special_requirements",
    "payment_status",
    "payment_proof",
    "shared_with_manager",
    "equipment_provided",
})


class ColumnOracle:
    """
    Cache of the writable fields of one table.

    Populated lazily by probing the store once; after that it only changes
    when a write reveals a missing column (``invalidate``), when new fields
    are learned (``merge``) or on an explicit ``refresh``. There is no expiry.
    Callers always get a copy, so a stale snapshot can cost an extra retry
    but never an incorrect write.
    """

    def __init__(self, store=None, table_name: str = "bookings", baseline=BASE_BOOKING_COLUMNS, lookup: bool = True):
        self.store = store
        self.table_name = table_name
        self._baseline = frozenset(baseline)
        self._lookup = lookup and store is not None
        self._columns: set[str] | None = None

    @classmethod
    def fixed(cls, columns) -> "ColumnOracle":
        """An oracle that never queries the store. Used to pin a schema in tests."""
        return cls(store=None, baseline=columns, lookup=False)

    def baseline(self) -> set[str]:
        return set(self._baseline)

    async def get(self) -> set[str]:
        if self._columns is None:
            self._columns = await self._discover()
        return set(self._columns)

    async def _discover(self) -> set[str]:
        columns = self.baseline()
        if not self._lookup:
            return columns

        try:
            discovered = await self.store.read_columns(self.table_name)
        except NetworkError:
            # Let the caller decide between the baseline and aborting
            raise
        except PersistenceError as e:
            logger.warning(f"Unable to inspect {self.table_name} columns, using baseline: {e}")
            return columns

        columns.update(discovered)
        logger.info(f"Discovered {len(columns)} writable columns for {self.table_name}.")
        return columns

    def invalidate(self, field: str):
        """Forgets a column the live schema turned out not to have."""
        if self._columns is not None and field in self._columns:
            self._columns.discard(field)
            logger.warning(f"Column '{field}' is missing from {self.table_name}, it will no longer be written.")

    def merge(self, columns):
        if self._columns is None:
            self._columns = self.baseline()
        self._columns.update(columns)

    def refresh(self):
        """Drops the cache. The next ``get()`` reads the store again."""
        self._columns = None
