import datetime
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")

_NON_NUMERIC = re.compile(r"[^\d,.\-]")


def round_currency(value) -> float:
    """
    Rounds to two decimals, half-up (99.995 -> 100.00).
    Goes through str() so float representation noise does not leak in.
    """
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


def _normalize_separators(text: str) -> str:
    """
    Turns "1.234,56", "1,234.56", "1234,5" and "1,000" into plain
    dot-decimal strings.
    """
    if "," in text and "." in text:
        # Whichever separator comes last is the decimal point
        if text.rfind(",") > text.rfind("."):
            return text.replace(".", "").replace(",", ".")
        return text.replace(",", "")

    if "," in text:
        parts = text.split(",")
        if len(parts) > 2 or len(parts[1]) == 3:
            return text.replace(",", "")
        return text.replace(",", ".")

    if text.count(".") > 1:
        return text.replace(".", "")
    return text


def parse_number(value) -> float | None:
    """Parses a loosely formatted number. Returns None when there is none."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = Decimal(str(value))
    else:
        text = _NON_NUMERIC.sub("", str(value))
        if not text or text in {"-", ".", ","}:
            return None
        try:
            number = Decimal(_normalize_separators(text))
        except InvalidOperation:
            return None
    if not number.is_finite():
        return None
    return float(number)


def parse_money(value) -> float | None:
    """Parses a monetary value, clamped to >= 0 and rounded to cents."""
    number = parse_number(value)
    if number is None:
        return None
    return round_currency(max(number, 0.0))


def pick_first_string(*values) -> str | None:
    """Returns the first value that is a non-blank string (or a number) once stripped."""
    for value in values:
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def coerce_date(value) -> datetime.date | None:
    """
    Turns a date, datetime or ISO string into a date.
    Anything unparseable is treated as absent.
    """
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return datetime.date.fromisoformat(text[:10])
    except ValueError:
        pass
    try:
        return datetime.datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def later_date(existing, candidate) -> datetime.date | None:
    """The later of two dates, ignoring values that are not dates at all."""
    existing_date = coerce_date(existing)
    candidate_date = coerce_date(candidate)
    if existing_date is None:
        return candidate_date
    if candidate_date is None:
        return existing_date
    return max(existing_date, candidate_date)


def normalize_ids(values) -> list[str]:
    """Stripped string ids, blanks dropped, first occurrence wins."""
    if values is None:
        return []
    if isinstance(values, (str, int)):
        values = [values]
    ids: list[str] = []
    for value in values:
        text = pick_first_string(value)
        if text and text not in ids:
            ids.append(text)
    return ids


FALSE_STRINGS = {"", "0", "false", "no", "off", "n", "f"}


def parse_flag(value) -> bool:
    """bool() that also understands "false"/"0"/"no" coming from forms."""
    if isinstance(value, str):
        return value.strip().lower() not in FALSE_STRINGS
    return bool(value)
