from sqlalchemy import (
    Boolean, Column, Date, Index, Integer, Numeric, String, Text, TIMESTAMP, UniqueConstraint, func, true,
)
from .database import Base

# Money is stored with currency precision but handled as float in Python
Money = Numeric(12, 2, asdecimal=False)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True)

    event_name = Column(String(255), nullable=False)
    event_date = Column(Date, nullable=False, index=True)

    # These are just IDs owned by other services.
    # No direct DB relationship is enforced.
    booker_id = Column(String(64), index=True, nullable=True)
    # Legacy single-performer field, mirrors the primary assignment
    performer_id = Column(String(64), index=True, nullable=True)

    status = Column(String(32), nullable=True)
    description = Column(Text, nullable=True)
    venue = Column(String(255), nullable=True)
    location = Column(String(255), nullable=True)
    city = Column(String(120), nullable=True)
    state = Column(String(120), nullable=True)
    address = Column(String(255), nullable=True)
    start_time = Column(String(16), nullable=True)
    end_time = Column(String(16), nullable=True)
    expected_attendees = Column(Integer, nullable=True)
    special_requirements = Column(Text, nullable=True)

    fee = Column(Money, nullable=False, server_default="0")
    fee_exempt = Column(Boolean, nullable=True)
    commission_rate = Column(Money, nullable=True)
    commission_amount = Column(Money, nullable=True)
    due_date = Column(Date, nullable=True)

    payment_status = Column(String(32), nullable=True)
    payment_proof = Column(Text, nullable=True)
    shared_with_manager = Column(Boolean, nullable=True)
    equipment_provided = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())


class PerformerAssignment(Base):
    __tablename__ = "booking_performers"

    id = Column(String(36), primary_key=True)
    booking_id = Column(String(36), index=True, nullable=False)
    performer_id = Column(String(64), index=True, nullable=False)
    # NULL means "no override, split the booking fee"
    fee = Column(Money, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("booking_id", "performer_id", name="uq_booking_performers_pair"),
    )


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id = Column(String(36), primary_key=True)
    # At most one entry per booking
    booking_id = Column(String(36), unique=True, nullable=False)
    booker_id = Column(String(64), index=True, nullable=True)
    amount = Column(Money, nullable=False)
    status = Column(String(32), nullable=True)
    due_date = Column(Date, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())


class RelationshipStat(Base):
    __tablename__ = "performer_booker_stats"

    id = Column(String(36), primary_key=True)
    performer_id = Column(String(64), nullable=False)
    booker_id = Column(String(64), nullable=False)
    total_events = Column(Integer, nullable=False, server_default="0")
    total_revenue = Column(Money, nullable=False, server_default="0")
    last_booking_date = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, server_default=true())

    __table_args__ = (
        UniqueConstraint("performer_id", "booker_id", name="uq_performer_booker_stats_pair"),
    )


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id = Column(String(36), primary_key=True)

    # PENDING until handled, FAILED once retries are exhausted
    status = Column(String(20), nullable=False)

    # Kafka topic for change events, "reconcile.*" for failed engine steps
    topic = Column(String(255), nullable=False)

    # Booking the event is about, so superseded events can be found without parsing payloads
    aggregate_id = Column(String(36), index=True, nullable=True)

    # The full JSON payload
    payload = Column(Text, nullable=False)

    attempts = Column(Integer, nullable=False, server_default="0")
    last_error = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())

    # The pollers only ever look at one status/topic slice at a time
    __table_args__ = (
        Index("ix_outbox_events_status", "status", "topic"),
    )
