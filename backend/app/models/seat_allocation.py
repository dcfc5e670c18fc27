"""
Seat-allocation ledger: one row per seat held by an active reservation.

The unique constraint on (vehicle_id, travel_date, seat_number) is what makes
double booking impossible. Two transactions that both read a seat as free
will both try to insert its ledger row; the database lets exactly one commit
and the other fails with an IntegrityError, which the booking service reports
as SeatsUnavailable.

Rows are inserted together with their reservation and deleted in the same
transaction that moves the reservation to cancelled or completed.
"""

from sqlalchemy import Column, Integer, Date, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin


class SeatAllocation(Base, TimestampMixin):
    __tablename__ = "seat_allocations"

    id = Column(Integer, primary_key=True)
    reservation_id = Column(
        Integer, ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    travel_date = Column(Date, nullable=False)
    seat_number = Column(Integer, nullable=False)

    reservation = relationship("Reservation", back_populates="allocations")

    __table_args__ = (
        UniqueConstraint("vehicle_id", "travel_date", "seat_number", name="uq_seat_allocation"),
        CheckConstraint("seat_number > 0", name="check_seat_allocation_seat_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"<SeatAllocation(vehicle={self.vehicle_id}, date={self.travel_date}, "
            f"seat={self.seat_number}, reservation={self.reservation_id})>"
        )
