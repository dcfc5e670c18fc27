"""
Route model. Carries the flat fare charged per seat on every vehicle assigned
to it. Managed by the fleet administration service; read-only here.
"""

from sqlalchemy import Column, Integer, String, Boolean, Numeric, Index, CheckConstraint
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin


class Route(Base, TimestampMixin):
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, index=True)
    route_code = Column(String(50), unique=True, nullable=False)
    route_name = Column(String(255), nullable=False)
    origin = Column(String(255), nullable=False)
    destination = Column(String(255), nullable=False)
    fare = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    vehicles = relationship("Vehicle", back_populates="route", lazy="raise")

    __table_args__ = (
        CheckConstraint("fare > 0", name="check_route_fare_positive"),
        Index("ix_routes_origin_destination", "origin", "destination"),
    )

    def __repr__(self) -> str:
        return f"<Route(id={self.id}, {self.origin} -> {self.destination}, fare={self.fare})>"
