"""
Detection of "unknown column" failures reported by the store.

Drivers that expose structured error codes are checked by code first; the
message patterns are the fallback for everything else. The store's dialect
picks the detector (see ``detector_for_dialect``).
"""
import re

# SQLSTATE 42703 is undefined_column, PGRST204 is PostgREST's schema cache miss
UNDEFINED_COLUMN_CODES = {"42703", "PGRST204"}
DRIVER_CODE = re.compile(r"^(?:[0-9A-Z]{5}|PGRST\d+)$")

MISSING_COLUMN_PATTERNS = [
    re.compile(r"column\s+\"?(\w+)\"?\s+of\s+relation", re.IGNORECASE),
    re.compile(r"relation\s+\"?\w+\"?\.\s*column\s+\"?(\w+)\"", re.IGNORECASE),
    re.compile(r"could not find the '(\w+)' column", re.IGNORECASE),
    re.compile(r"could not find column \"?(\w+)\"?", re.IGNORECASE),
    re.compile(r"has no column named \"?(\w+)\"?", re.IGNORECASE),
    re.compile(r"no such column:\s*\"?(?:\w+\.)?(\w+)\"?", re.IGNORECASE),
    re.compile(r"column \"?(?:\w+\.)?(\w+)\"? does not exist", re.IGNORECASE),
    re.compile(r"unknown column '(?:\w+\.)?(\w+)'", re.IGNORECASE),
]


def _error_chain(error: BaseException):
    """The error itself, its DBAPI ``orig`` and its causes, without repeats."""
    seen = set()
    pending = [error]
    while pending:
        current = pending.pop(0)
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        pending.extend([getattr(current, "orig", None), getattr(current, "cause", None), current.__cause__])


class MissingColumnDetector:
    """Finds the offending column name in an error message."""

    patterns = MISSING_COLUMN_PATTERNS

    def missing_column(self, error: BaseException) -> str | None:
        for current in _error_chain(error):
            column = self.from_message(str(current))
            if column:
                return column
            column = getattr(current, "column", None)
            if isinstance(column, str) and column:
                return column
        return None

    def from_message(self, message: str) -> str | None:
        for pattern in self.patterns:
            match = pattern.search(message)
            if match:
                return match.group(1)
        return None


class SqlStateColumnDetector(MissingColumnDetector):
    """
    Trusts the driver's error code. A message is only parsed for the column
    name once the code says the column is undefined, and the pattern
    fallback is used only when no code is present at all.
    """

    def missing_column(self, error: BaseException) -> str | None:
        codes_seen = False
        for current in _error_chain(error):
            code = getattr(current, "sqlstate", None) or getattr(current, "pgcode", None) or getattr(current, "code", None)
            # SQLAlchemy's own exceptions carry short doc codes, not driver codes
            if not isinstance(code, str) or not DRIVER_CODE.match(code):
                continue
            codes_seen = True
            if code in UNDEFINED_COLUMN_CODES:
                return self.from_message(str(current)) or super().missing_column(error)
        if codes_seen:
            return None
        return super().missing_column(error)


def detector_for_dialect(dialect_name: str) -> MissingColumnDetector:
    if dialect_name.startswith("postgres"):
        return SqlStateColumnDetector()
    return MissingColumnDetector()
