from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class BookingPayload(BaseModel):
    """
    Booking form input. Older clients send the same fields under other
    names (title, date, producer_id, dj_ids, ...), so unknown keys are
    kept and resolved by the record builder.
    """
    model_config = ConfigDict(extra="allow")

    event_name: Optional[str] = None
    event_date: Optional[str] = None
    fee: Optional[Any] = None
    booker_id: Optional[str] = None
    performer_ids: Optional[list[str]] = None
    performer_fees: Optional[dict[str, Any]] = None


class OperationResult(BaseModel):
    """The (data, error) pair every public engine operation returns."""
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    # Downstream steps that failed after the booking itself was saved
    warnings: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None
