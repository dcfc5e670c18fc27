"""
Vehicle/route lookup. Fleet data is maintained elsewhere; the reservation
core only reads capacity, sellability and the route fare.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import VehicleNotFound, VehicleNotSellable
from app.models.vehicle import Vehicle


async def get_vehicle(db: AsyncSession, vehicle_id: int) -> Vehicle:
    """Get a single vehicle (with its route) by ID."""
    result = await db.execute(select(Vehicle).where(Vehicle.id == vehicle_id))
    vehicle = result.scalar_one_or_none()

    if not vehicle:
        raise VehicleNotFound(vehicle_id)
    return vehicle


async def get_sellable_vehicle(db: AsyncSession, vehicle_id: int) -> Vehicle:
    vehicle = await get_vehicle(db, vehicle_id)
    if not vehicle.is_sellable or not vehicle.route.is_active:
        status = vehicle.status if vehicle.is_active else "inactive"
        raise VehicleNotSellable(vehicle_id, status)
    return vehicle
