"""
Error taxonomy for the booking engine.

Public engine operations never raise these; they are converted into an
``OperationResult`` at the boundary. Inside the engine they decide what is
retried, what aborts a save and what only becomes a warning.
"""


class BookingEngineError(Exception):
    """Base exception for booking engine errors"""
    kind = "persistence"

    def __init__(self, message: str = "", *, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class BookingValidationError(BookingEngineError):
    """Raised when a payload is missing a required field. No I/O has happened."""
    kind = "validation"


class NetworkError(BookingEngineError):
    """Raised when the store could not be reached. Never retried internally."""
    kind = "network"


class PersistenceError(BookingEngineError):
    """Raised for any store failure that is not a transport failure"""
    kind = "persistence"


class BookingNotFoundError(PersistenceError):
    """Raised when a booking id matches no row"""
    kind = "not_found"


class SchemaMismatchError(PersistenceError):
    """Raised when the store keeps rejecting columns after the retry bound"""
    kind = "schema_mismatch"

    def __init__(self, message: str = "", *, column: str | None = None, cause: Exception | None = None):
        super().__init__(message, cause=cause)
        self.column = column


class DownstreamError(BookingEngineError):
    """
    Failure of a step that runs after the booking row is persisted.
    These never unwind the primary write.
    """
    kind = "downstream"
    step = "downstream"


class RelationSyncError(DownstreamError):
    step = "assignments"


class LedgerError(DownstreamError):
    step = "ledger"


class StatsError(DownstreamError):
    step = "stats"

    def __init__(self, message: str = "", *, pending_performer_ids=None, cause: Exception | None = None):
        super().__init__(message, cause=cause)
        # Performers not yet counted, in iteration order
        self.pending_performer_ids = list(pending_performer_ids or [])
