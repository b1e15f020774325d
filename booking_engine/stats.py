import logging

from .errors import BookingEngineError, PersistenceError, StatsError
from .values import coerce_date, normalize_ids, parse_money, pick_first_string, later_date, round_currency

logger = logging.getLogger("booking_engine")

STATS_TABLE = "performer_booker_stats"


def allocate_fees(total_fee, performer_ids, fee_map) -> dict[str, float]:
    """
    Revenue credited to each performer for one booking.

    An explicit override wins; otherwise the total is split evenly and
    rounded per performer. Residual cents from an uneven split stay
    unallocated.
    """
    total = parse_money(total_fee) or 0.0
    allocations = {}
    for performer_id in performer_ids:
        override = fee_map.get(performer_id)
        amount = parse_money(override) if override is not None else None
        if amount is None and total > 0:
            amount = round_currency(total / len(performer_ids))
        allocations[performer_id] = amount or 0.0
    return allocations


class StatisticsAggregator:
    """
    Running (performer, booker) aggregates: event count, revenue and the
    latest booking date.

    Performers are handled one after another, never concurrently, since every
    iteration of one save targets the same booker. Counts only ever go up.
    """

    def __init__(self, store, table_name: str = STATS_TABLE):
        self.store = store
        self.table_name = table_name

    async def aggregate(self, booking: dict, performer_ids, fee_map=None, fallback: dict | None = None,
                        all_performer_ids=None):
        """
        Counts this booking once for each of ``performer_ids``.

        ``all_performer_ids`` is the full assigned set used for the even
        split; it defaults to ``performer_ids`` and only differs when a
        partially failed run is being resumed.
        """
        fallback = fallback or {}
        fee_map = fee_map or {}
        performer_ids = normalize_ids(performer_ids)
        if not performer_ids:
            return

        booker_id = pick_first_string(booking.get("booker_id"), fallback.get("booker_id"))
        if not booker_id:
            return

        booking_date = coerce_date(booking.get("event_date")) or coerce_date(fallback.get("event_date"))
        total_fee = booking.get("fee") if booking.get("fee") is not None else fallback.get("fee")
        allocations = allocate_fees(total_fee, normalize_ids(all_performer_ids) or performer_ids, fee_map)

        for index, performer_id in enumerate(performer_ids):
            try:
                await self._upsert(performer_id, booker_id, allocations.get(performer_id, 0.0), booking_date)
            except BookingEngineError as e:
                raise StatsError(
                    f"Failed to update stats for performer {performer_id} and booker {booker_id}: {e}",
                    pending_performer_ids=performer_ids[index:],
                    cause=e,
                ) from e

    async def _upsert(self, performer_id: str, booker_id: str, allocation: float, booking_date):
        pair = {"performer_id": performer_id, "booker_id": booker_id}
        existing = await self.store.maybe_single(self.table_name, pair)

        if existing is None:
            try:
                await self.store.insert(self.table_name, {
                    **pair,
                    "total_events": 1,
                    "total_revenue": round_currency(allocation),
                    "last_booking_date": booking_date,
                    "is_active": True,
                })
                return
            except PersistenceError:
                # Lost the race to create the pair; count on top of the winner
                existing = await self.store.maybe_single(self.table_name, pair)
                if existing is None:
                    raise

        total_events = existing.get("total_events") or 0
        revenue = parse_money(existing.get("total_revenue")) or 0.0
        await self.store.update_by_id(self.table_name, existing["id"], {
            "total_events": int(total_events) + 1,
            "total_revenue": round_currency(revenue + allocation),
            "last_booking_date": later_date(existing.get("last_booking_date"), booking_date),
            "is_active": True,
        })
