"""
Normalizes booking payloads into one canonical record.

Payloads come from several generations of forms, so most fields can arrive
under more than one name. Each canonical field has a fixed alias precedence
and the first non-blank value wins.
"""
from collections.abc import Mapping
from dataclasses import dataclass, field

from .errors import BookingValidationError
from .values import coerce_date, normalize_ids, parse_flag, parse_money, parse_number, pick_first_string

NAME_ALIASES = ("event_name", "title", "name")
DATE_ALIASES = ("event_date", "date")
FEE_ALIASES = ("fee", "cache_value", "cache")
BOOKER_ALIASES = ("booker_id", "bookerId", "producer_id", "producerId")
DUE_DATE_ALIASES = ("due_date", "payment_due_date")
EXEMPT_ALIASES = ("fee_exempt", "cache_exempt")
PERFORMER_LIST_ALIASES = ("performer_ids", "performerIds", "dj_ids", "djIds")
PRIMARY_PERFORMER_ALIASES = ("performer_id", "dj_id")
FEE_MAP_ALIASES = ("performer_fees", "performer_fee_map", "dj_fee_map")

# canonical field -> aliases, for plain text fields copied when present
TEXT_FIELDS = {
    "description": ("description",),
    "special_requirements": ("special_requirements", "requirements"),
    "venue": ("venue", "location"),
    "location": ("location",),
    "city": ("city",),
    "state": ("state",),
    "address": ("address",),
    "start_time": ("start_time",),
    "end_time": ("end_time",),
    "equipment_provided": ("equipment_provided",),
}

# copied as given whenever the key is present, even when falsy
PASSTHROUGH_FIELDS = ("status", "payment_status", "payment_proof")


@dataclass
class BookingDraft:
    """A validated booking record plus the data the downstream steps need."""
    record: dict
    performer_ids: list[str] = field(default_factory=list)
    fee_map: dict[str, float] = field(default_factory=dict)

    @property
    def primary_performer_id(self) -> str | None:
        return self.performer_ids[0] if self.performer_ids else None


def _first(payload: Mapping, aliases):
    for alias in aliases:
        value = payload.get(alias)
        if value is not None and not (isinstance(value, str) and not value.strip()):
            return value
    return None


def resolve_performer_ids(payload: Mapping) -> list[str]:
    """Primary performer (explicit, else the first listed) followed by the rest, deduplicated."""
    listed = []
    for alias in PERFORMER_LIST_ALIASES:
        value = payload.get(alias)
        if isinstance(value, (list, tuple)):
            listed = normalize_ids(value)
            break
    explicit = pick_first_string(*(payload.get(alias) for alias in PRIMARY_PERFORMER_ALIASES))
    if explicit:
        return normalize_ids([explicit, *listed])
    return listed


def resolve_fee_map(payload: Mapping) -> dict[str, float]:
    raw = _first(payload, FEE_MAP_ALIASES)
    if not isinstance(raw, Mapping):
        return {}
    fee_map = {}
    for performer_id, value in raw.items():
        key = pick_first_string(performer_id)
        # parse_number first so negative overrides are dropped instead of clamped to zero
        number = parse_number(value)
        if key and number is not None and number >= 0:
            fee_map[key] = parse_money(number)
    return fee_map


def build_booking(payload: Mapping | None) -> BookingDraft:
    """
    Builds the canonical booking record.

    Raises BookingValidationError, before any I/O, when the name or the date
    is missing or the date cannot be read.
    """
    payload = payload or {}

    event_name = pick_first_string(*(payload.get(alias) for alias in NAME_ALIASES))
    if not event_name:
        raise BookingValidationError("Booking name is required.")

    raw_date = _first(payload, DATE_ALIASES)
    if raw_date is None:
        raise BookingValidationError("Booking date is required.")
    event_date = coerce_date(raw_date)
    if event_date is None:
        raise BookingValidationError(f"Booking date '{raw_date}' is not a valid date.")

    performer_ids = resolve_performer_ids(payload)

    record = {
        "event_name": event_name,
        "event_date": event_date,
        "fee": parse_money(_first(payload, FEE_ALIASES)) or 0.0,
    }

    # 1. Legacy single-performer field, for readers that predate assignments.
    # Every save replaces the performer set, so an empty set clears it.
    record["performer_id"] = performer_ids[0] if performer_ids else None

    # 2. Identity and money
    booker_id = pick_first_string(*(payload.get(alias) for alias in BOOKER_ALIASES))
    if booker_id:
        record["booker_id"] = booker_id

    commission_rate = parse_money(_first(payload, ("commission_rate", "commission_percentage")))
    if commission_rate is not None:
        record["commission_rate"] = commission_rate
    commission_amount = parse_money(payload.get("commission_amount"))
    if commission_amount is not None:
        record["commission_amount"] = commission_amount

    exempt = _first(payload, EXEMPT_ALIASES)
    if exempt is not None:
        record["fee_exempt"] = parse_flag(exempt)

    due_date = coerce_date(_first(payload, DUE_DATE_ALIASES))
    if due_date is not None:
        record["due_date"] = due_date

    # 3. Descriptive fields
    for name, aliases in TEXT_FIELDS.items():
        value = pick_first_string(*(payload.get(alias) for alias in aliases))
        if value:
            record[name] = value

    attendees = parse_number(_first(payload, ("expected_attendees", "expectedAttendance", "expected_attendance")))
    if attendees is not None:
        record["expected_attendees"] = int(attendees)

    for name in PASSTHROUGH_FIELDS:
        if name in payload:
            record[name] = payload[name]
    if payload.get("shared_with_manager") is not None:
        record["shared_with_manager"] = parse_flag(payload["shared_with_manager"])

    return BookingDraft(record=record, performer_ids=performer_ids, fee_map=resolve_fee_map(payload))
