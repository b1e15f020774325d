import logging
from dataclasses import dataclass, field

from .errors import BookingEngineError, RelationSyncError
from .values import normalize_ids, parse_money

logger = logging.getLogger("booking_engine")

ASSIGNMENTS_TABLE = "booking_performers"


@dataclass
class AssignmentPlan:
    stale_row_ids: list = field(default_factory=list)
    fee_updates: list = field(default_factory=list)
    new_rows: list = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.stale_row_ids or self.fee_updates or self.new_rows)


def plan_assignment_changes(booking_id, existing_rows, performer_ids, fee_map) -> AssignmentPlan:
    """
    Diffs the stored assignment rows against the intended performer set.

    Rows for performers no longer wanted, and duplicate rows for the same
    performer, are stale. Kept rows whose fee override changed are updated.
    Performers without a row are inserted.
    """
    plan = AssignmentPlan()
    wanted = set(performer_ids)
    kept = {}

    for row in existing_rows:
        performer_id = str(row.get("performer_id"))
        if performer_id not in wanted or performer_id in kept:
            plan.stale_row_ids.append(row["id"])
            continue
        kept[performer_id] = row

    for performer_id in performer_ids:
        fee = fee_map.get(performer_id)
        fee = parse_money(fee) if fee is not None else None
        row = kept.get(performer_id)
        if row is None:
            plan.new_rows.append({"booking_id": booking_id, "performer_id": performer_id, "fee": fee})
        elif parse_money(row.get("fee")) != fee:
            plan.fee_updates.append((row["id"], fee))

    return plan


class RelationSynchronizer:
    """
    Makes the stored performer assignments of a booking equal the intended set.

    Only the difference is applied, so readers never see the booking with an
    empty assignment set while a save is in flight. Removals run first, and
    a failed removal aborts before anything is inserted. Any failure is raised
    as RelationSyncError for the caller to report.
    """

    def __init__(self, store, table_name: str = ASSIGNMENTS_TABLE):
        self.store = store
        self.table_name = table_name

    async def sync(self, booking_id: str, performer_ids, fee_map=None) -> AssignmentPlan:
        performer_ids = normalize_ids(performer_ids)
        fee_map = fee_map or {}

        try:
            existing = await self.store.select(self.table_name, {"booking_id": booking_id})
        except BookingEngineError as e:
            raise RelationSyncError(f"Failed to read assignments of booking {booking_id}: {e}", cause=e) from e

        plan = plan_assignment_changes(booking_id, existing, performer_ids, fee_map)
        if plan.is_empty:
            return plan

        # 1. Removals. If this fails nothing else is attempted.
        if plan.stale_row_ids:
            try:
                await self.store.delete_where(self.table_name, {"id": plan.stale_row_ids})
            except BookingEngineError as e:
                raise RelationSyncError(f"Failed to remove assignments of booking {booking_id}: {e}", cause=e) from e

        # 2. Fee override changes on kept performers
        try:
            for row_id, fee in plan.fee_updates:
                await self.store.update_by_id(self.table_name, row_id, {"fee": fee})

            # 3. New performers
            if plan.new_rows:
                await self.store.bulk_insert(self.table_name, plan.new_rows)
        except BookingEngineError as e:
            # The booking keeps whatever subset was applied until the step is retried
            raise RelationSyncError(f"Failed to assign performers to booking {booking_id}: {e}", cause=e) from e

        logger.info(
            f"Synced performers of booking {booking_id}: +{len(plan.new_rows)} "
            f"-{len(plan.stale_row_ids)} ~{len(plan.fee_updates)}."
        )
        return plan

    async def clear(self, booking_id: str) -> int:
        """Removes every assignment of a booking. Used by the delete cascade."""
        return await self.store.delete_where(self.table_name, {"booking_id": booking_id})
