import enum
import logging

from .errors import BookingEngineError, LedgerError, NetworkError, PersistenceError
from .values import coerce_date, parse_flag, parse_money, pick_first_string

logger = logging.getLogger("booking_engine")

LEDGER_TABLE = "ledger_entries"


class LedgerStatus(str, enum.Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    PAID = "paid"
    CANCELLED = "cancelled"


def _field(name, booking: dict, fallback: dict):
    value = booking.get(name)
    return value if value is not None else fallback.get(name)


def ledger_amount(booking: dict, fallback: dict | None = None) -> float:
    fallback = fallback or {}
    return parse_money(_field("fee", booking, fallback)) or 0.0


def is_exempt(booking: dict, fallback: dict | None = None) -> bool:
    fallback = fallback or {}
    return parse_flag(booking.get("fee_exempt")) or parse_flag(fallback.get("fee_exempt"))


def ledger_due_date(booking: dict, fallback: dict | None = None):
    """Explicit due date first, else the booking date."""
    fallback = fallback or {}
    return coerce_date(_field("due_date", booking, fallback)) or coerce_date(_field("event_date", booking, fallback))


class LedgerEnsurer:
    """
    Keeps at most one ledger entry per booking.

    Zero and exempt amounts never get an entry. An existing entry follows the
    booking's amount, booker and due date, but a status that has moved past
    pending (submitted, paid, ...) is never reset.
    """

    def __init__(self, store, table_name: str = LEDGER_TABLE):
        self.store = store
        self.table_name = table_name

    async def ensure(self, booking: dict, fallback: dict | None = None) -> dict | None:
        """
        ``booking`` is the stored row; ``fallback`` is the record that was
        written, for fields the stored schema does not carry.
        """
        fallback = fallback or {}
        booking_id = booking.get("id") or fallback.get("id")
        if not booking_id:
            return None

        amount = ledger_amount(booking, fallback)
        if amount <= 0 or is_exempt(booking, fallback):
            return None

        booker_id = pick_first_string(_field("booker_id", booking, fallback))
        due_date = ledger_due_date(booking, fallback)

        updates = {"amount": amount, "booker_id": booker_id, "due_date": due_date}

        try:
            existing = await self.store.maybe_single(self.table_name, {"booking_id": booking_id})
            if existing:
                return await self._update(existing, updates)

            try:
                entry = await self.store.insert(self.table_name, {
                    **updates,
                    "booking_id": booking_id,
                    "status": LedgerStatus.PENDING.value,
                })
            except PersistenceError:
                # A concurrent save inserted first; booking_id is unique
                existing = await self.store.maybe_single(self.table_name, {"booking_id": booking_id})
                if not existing:
                    raise
                return await self._update(existing, updates)
            logger.info(f"Created pending ledger entry for booking {booking_id}: {amount:.2f}")
            return entry
        except NetworkError:
            raise
        except BookingEngineError as e:
            raise LedgerError(f"Failed to update the ledger of booking {booking_id}: {e}", cause=e) from e

    async def _update(self, existing: dict, updates: dict) -> dict | None:
        updates = dict(updates)
        # Never downgrade a settled entry back to pending
        if not existing.get("status") or existing.get("status") == LedgerStatus.PENDING.value:
            updates["status"] = LedgerStatus.PENDING.value
        return await self.store.update_by_id(self.table_name, existing["id"], updates)
