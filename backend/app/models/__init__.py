from app.models.user import User
from app.models.route import Route
from app.models.vehicle import Vehicle
from app.models.reservation import Reservation
from app.models.seat_allocation import SeatAllocation

__all__ = ["User", "Route", "Vehicle", "Reservation", "SeatAllocation"]
