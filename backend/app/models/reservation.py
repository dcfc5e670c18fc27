"""
Reservation model: one traveller's booking of seats on a vehicle for a date.

Key design decisions:
- seat_numbers / passenger_names are stored as JSON lists on the row; seat
  exclusivity is NOT enforced here but by one SeatAllocation ledger row per
  claimed seat (see seat_allocation.py)
- vehicle_id, travel_date and seat_numbers never change after insert
- fare_per_seat and the amounts are captured at creation and never recomputed
- status and payment_status are independent columns, both CHECK-constrained
- slug (URLs) and booking_reference (humans) are unique public identifiers
"""

import hashlib
import secrets
import string
import time

from sqlalchemy import (
    Column, Integer, String, Text, Date, DateTime, Numeric, JSON,
    ForeignKey, Index, CheckConstraint,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_CANCELLED = "cancelled"
STATUS_COMPLETED = "completed"
STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_CANCELLED, STATUS_COMPLETED)
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED)
TERMINAL_STATUSES = (STATUS_CANCELLED, STATUS_COMPLETED)

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_REFUNDED)

PAYMENT_METHODS = ("cash", "card", "upi", "wallet")

_SLUG_ALPHABET = string.ascii_letters + string.digits + "_-"
_BASE36 = string.digits + string.ascii_uppercase


def _base36(value: int) -> str:
    digits = ""
    while value:
        value, rem = divmod(value, 36)
        digits = _BASE36[rem] + digits
    return digits or "0"


def generate_slug() -> str:
    token = "".join(secrets.choice(_SLUG_ALPHABET) for _ in range(10))
    return f"BK-{token}-{_base36(int(time.time() * 1000))}"


def generate_reference() -> str:
    return secrets.token_hex(8).upper()


def integrity_hash(slug: str, user_id: int, vehicle_id: int) -> str:
    return hashlib.sha256(f"{slug}-{user_id}-{vehicle_id}".encode()).hexdigest()


class Reservation(Base, TimestampMixin):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(50), unique=True, nullable=False, default=generate_slug)
    booking_reference = Column(String(20), unique=True, nullable=False, default=generate_reference)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    travel_date = Column(Date, nullable=False, index=True)

    seat_numbers = Column(JSON, nullable=False)
    passenger_names = Column(JSON, nullable=False)
    contact_phone = Column(String(15), nullable=False)
    contact_email = Column(String(255), nullable=False)
    boarding_point = Column(String(200), nullable=True)
    dropping_point = Column(String(200), nullable=True)
    special_requests = Column(Text, nullable=True)

    fare_per_seat = Column(Numeric(10, 2), nullable=False)
    base_amount = Column(Numeric(10, 2), nullable=False)
    tax_amount = Column(Numeric(10, 2), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)

    status = Column(String(20), nullable=False, default=STATUS_PENDING, index=True)
    payment_status = Column(String(20), nullable=False, default=PAYMENT_PENDING)
    payment_method = Column(String(20), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)

    # Audit trail for fraud review, recorded only
    booking_ip = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    integrity_hash = Column(String(64), nullable=True)

    # Relationships
    user = relationship("User", back_populates="reservations", lazy="raise")
    vehicle = relationship("Vehicle", lazy="selectin")
    allocations = relationship(
        "SeatAllocation",
        back_populates="reservation",
        lazy="raise",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed')",
            name="check_reservation_status",
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'paid', 'failed', 'refunded')",
            name="check_reservation_payment_status",
        ),
        CheckConstraint(
            "payment_method IS NULL OR payment_method IN ('cash', 'card', 'upi', 'wallet')",
            name="check_reservation_payment_method",
        ),
        CheckConstraint("total_amount >= 0", name="check_reservation_total_non_negative"),
        # Inventory reads filter on exactly these columns
        Index("ix_reservations_vehicle_date_status", "vehicle_id", "travel_date", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Reservation(id={self.id}, slug={self.slug}, vehicle={self.vehicle_id}, "
            f"date={self.travel_date}, seats={self.seat_numbers}, status={self.status})>"
        )
