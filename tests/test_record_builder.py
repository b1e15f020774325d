import datetime

import pytest

from booking_engine.errors import BookingValidationError
from booking_engine.record_builder import build_booking
from booking_engine.values import coerce_date, later_date, parse_money, round_currency


# --- Required fields ---

@pytest.mark.parametrize("payload", [
    {"date": "2025-05-01"},
    {"name": "   ", "date": "2025-05-01"},
    {"name": "Launch Party"},
    {"name": "Launch Party", "date": ""},
    None,
])
def test_missing_name_or_date_is_rejected(payload):
    with pytest.raises(BookingValidationError):
        build_booking(payload)


def test_unreadable_date_is_rejected():
    with pytest.raises(BookingValidationError) as exc:
        build_booking({"name": "Launch Party", "date": "next friday"})
    assert "not a valid date" in str(exc.value)


# --- Alias precedence ---

def test_event_name_wins_over_title_and_name():
    draft = build_booking({"event_name": "Canonical", "title": "Title", "name": "Name", "date": "2025-05-01"})
    assert draft.record["event_name"] == "Canonical"


def test_title_is_used_when_event_name_is_blank():
    draft = build_booking({"event_name": "", "title": "From Title", "name": "Name", "date": "2025-05-01"})
    assert draft.record["event_name"] == "From Title"


def test_event_date_wins_over_date():
    draft = build_booking({"name": "Gig", "event_date": "2025-06-01", "date": "2025-01-01"})
    assert draft.record["event_date"] == datetime.date(2025, 6, 1)


def test_legacy_field_names_are_resolved():
    draft = build_booking({
        "title": "Gig",
        "date": "2025-05-01T21:00:00Z",
        "cache_value": "1.500,00",
        "producer_id": "booker-7",
        "dj_ids": ["a", "b"],
        "dj_fee_map": {"a": "900"},
        "cache_exempt": "false",
        "location": "Main Hall",
        "requirements": "Two CDJs",
    })

    assert draft.record["event_date"] == datetime.date(2025, 5, 1)
    assert draft.record["fee"] == 1500.0
    assert draft.record["booker_id"] == "booker-7"
    assert draft.record["fee_exempt"] is False
    # "location" also feeds the venue when no venue is given
    assert draft.record["venue"] == "Main Hall"
    assert draft.record["location"] == "Main Hall"
    assert draft.record["special_requirements"] == "Two CDJs"
    assert draft.performer_ids == ["a", "b"]
    assert draft.fee_map == {"a": 900.0}


# --- Money ---

@pytest.mark.parametrize("raw, expected", [
    (99.995, 100.0),
    ("99.995", 100.0),
    ("1.234,56", 1234.56),
    ("1,234.56", 1234.56),
    ("R$ 1.000,00", 1000.0),
    ("1,000", 1000.0),
    ("10,5", 10.5),
    (-50, 0.0),
    ("abc", None),
    (None, None),
])
def test_parse_money(raw, expected):
    assert parse_money(raw) == expected


def test_round_currency_is_half_up():
    assert round_currency(0.125) == 0.13
    assert round_currency(2.675) == 2.68
    assert round_currency(1000 / 3) == 333.33


def test_fee_defaults_to_zero_and_is_clamped():
    assert build_booking({"name": "Gig", "date": "2025-05-01"}).record["fee"] == 0.0
    assert build_booking({"name": "Gig", "date": "2025-05-01", "fee": "-10"}).record["fee"] == 0.0


def test_commission_fields_are_rounded():
    draft = build_booking({"name": "Gig", "date": "2025-05-01", "commission_percentage": "12,345", "commission_amount": 99.995})
    # "12,345" has three digits after the comma, so it reads as twelve thousand
    assert draft.record["commission_rate"] == 12345.0
    assert draft.record["commission_amount"] == 100.0


# --- Performers ---

def test_performer_ids_are_deduplicated_with_primary_first():
    draft = build_booking({
        "name": "Gig",
        "date": "2025-05-01",
        "performer_ids": ["b", " a ", "b", "", None, "c"],
        "performer_id": "a",
    })
    assert draft.performer_ids == ["a", "b", "c"]
    assert draft.primary_performer_id == "a"
    assert draft.record["performer_id"] == "a"


def test_first_listed_performer_is_mirrored_without_explicit_primary():
    draft = build_booking({"name": "Gig", "date": "2025-05-01", "performerIds": ["x", "y"]})
    assert draft.record["performer_id"] == "x"


def test_no_performers_clears_legacy_field():
    draft = build_booking({"name": "Gig", "date": "2025-05-01", "performer_ids": []})
    assert draft.performer_ids == []
    assert draft.record["performer_id"] is None


def test_invalid_fee_overrides_are_ignored():
    draft = build_booking({
        "name": "Gig",
        "date": "2025-05-01",
        "performer_ids": ["a", "b", "c"],
        "performer_fees": {"a": "250,50", "b": -10, "c": "n/a"},
    })
    assert draft.fee_map == {"a": 250.5}


# --- Dates ---

def test_coerce_date_treats_garbage_as_absent():
    assert coerce_date("2025-05-01") == datetime.date(2025, 5, 1)
    assert coerce_date(datetime.datetime(2025, 5, 1, 22, 30)) == datetime.date(2025, 5, 1)
    assert coerce_date("31/12/2025") is None
    assert coerce_date("") is None


def test_later_date_ignores_unparseable_values():
    new = datetime.date(2025, 1, 1)
    assert later_date("not-a-date", new) == new
    assert later_date(datetime.date(2025, 6, 1), new) == datetime.date(2025, 6, 1)
    assert later_date("2024-01-01", new) == new
    assert later_date(datetime.date(2025, 6, 1), "garbage") == datetime.date(2025, 6, 1)
