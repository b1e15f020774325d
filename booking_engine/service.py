from .database import engine
from .engine import BookingEngine
from .store import SqlStore

# One store and one engine per process, so the column cache is shared by all requests
store = SqlStore(engine)
booking_engine = BookingEngine(store)


def get_booking_engine() -> BookingEngine:
    return booking_engine
