from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.courier import Courier
from app.models.delivery import Delivery
from app.models.driver_location import DriverLocation
from app.providers.base import LatLng
from app.services.deliveries import get_delivery, get_delivery_by_reference
from app.services.driver_locations import DriverLocationStore
from app.services.geocode_cache import GeocodeCache
from app.services.route_cache import RouteCache


@dataclass(frozen=True)
class TrackingSnapshot:
    delivery: Delivery
    courier: Courier | None
    courier_location: DriverLocation | None
    pickup: LatLng | None
    dropoff: LatLng | None
    route: list[list[float]] | None

    @property
    def courier_name(self) -> str | None:
        if self.courier is None:
            return None
        return self.courier.name or f"Driver #{self.courier.id}"


class TrackingAggregator:
    """
    Read path for the live map: delivery + courier + last location + geometry.

    Geometry comes from the geocode and route caches, which repair stale
    entries as a side effect. Only a missing delivery fails the read; provider
    trouble shows up as null coordinates or a straight-line route.
    """

    def __init__(
        self,
        db: AsyncSession,
        geocodes: GeocodeCache,
        routes: RouteCache,
        locations: DriverLocationStore | None = None,
    ):
        self.db = db
        self.geocodes = geocodes
        self.routes = routes
        self.locations = locations or DriverLocationStore(db)

    async def track(self, reference_no: str) -> TrackingSnapshot:
        d = await get_delivery_by_reference(self.db, reference_no)
        return await self.snapshot(d)

    async def track_delivery(self, delivery_id: str) -> TrackingSnapshot:
        d = await get_delivery(self.db, delivery_id)
        return await self.snapshot(d)

    async def snapshot(self, d: Delivery) -> TrackingSnapshot:
        courier = None
        location = None
        if d.assigned_courier_id:
            courier = (await self.db.execute(
                select(Courier).where(Courier.id == d.assigned_courier_id)
            )).scalar_one_or_none()
            location = await self.locations.get_location(d.assigned_courier_id)

        pickup, dropoff, route = await self.repair_geometry(d)
        return TrackingSnapshot(
            delivery=d,
            courier=courier,
            courier_location=location,
            pickup=pickup,
            dropoff=dropoff,
            route=route,
        )

    async def repair_geometry(self, d: Delivery) -> tuple[LatLng | None, LatLng | None, list[list[float]] | None]:
        pickup, dropoff = await self.geocodes.resolve_both(d)
        route = await self.routes.resolve(d, pickup, dropoff)
        return pickup, dropoff, route
