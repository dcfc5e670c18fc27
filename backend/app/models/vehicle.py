"""
Vehicle model with seat capacity and operating status.

Key design decisions:
- Seats are numbered 1..capacity; there is no per-seat row, the ledger in
  seat_allocation.py only records claimed seats
- A vehicle is sellable only while active AND in the 'available' status
- The route is loaded eagerly because every booking needs its fare
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin

VEHICLE_TYPES = ("standard", "luxury", "semi-luxury", "sleeper")
VEHICLE_STATUSES = ("available", "in-transit", "maintenance", "out-of-service")
SELLABLE_STATUS = "available"


class Vehicle(Base, TimestampMixin):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True)
    vehicle_number = Column(String(50), unique=True, nullable=False)
    vehicle_type = Column(String(20), nullable=False, default="standard")
    capacity = Column(Integer, nullable=False)
    route_id = Column(Integer, ForeignKey("routes.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=SELLABLE_STATUS, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    route = relationship("Route", back_populates="vehicles", lazy="selectin")

    __table_args__ = (
        CheckConstraint("capacity > 0", name="check_vehicle_capacity_positive"),
        CheckConstraint(
            "vehicle_type IN ('standard', 'luxury', 'semi-luxury', 'sleeper')",
            name="check_vehicle_type",
        ),
        CheckConstraint(
            "status IN ('available', 'in-transit', 'maintenance', 'out-of-service')",
            name="check_vehicle_status",
        ),
    )

    @property
    def is_sellable(self) -> bool:
        return bool(self.is_active) and self.status == SELLABLE_STATUS

    def __repr__(self) -> str:
        return f"<Vehicle(id={self.id}, number={self.vehicle_number}, capacity={self.capacity})>"
