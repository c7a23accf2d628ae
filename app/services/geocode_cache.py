from __future__ import annotations

import logging
from typing import Literal

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ExternalServiceDegraded
from app.models.base import utcnow
from app.models.delivery import Delivery
from app.providers.base import GeocodingProvider, LatLng
from app.services.geo_hashes import hash_address
from app.services.single_flight import SingleFlight


log = logging.getLogger(__name__)

AddressField = Literal["pickup", "dropoff"]
ADDRESS_FIELDS: tuple[AddressField, ...] = ("pickup", "dropoff")


def stored_point(delivery: Delivery, field: AddressField) -> LatLng | None:
    lat = getattr(delivery, f"{field}_lat")
    lng = getattr(delivery, f"{field}_lng")
    if lat is None or lng is None:
        return None
    return LatLng(lat=float(lat), lng=float(lng))


def is_geocode_fresh(delivery: Delivery, field: AddressField) -> bool:
    if stored_point(delivery, field) is None:
        return False
    current = hash_address(getattr(delivery, f"{field}_address"))
    return getattr(delivery, f"{field}_address_hash") == current


class GeocodeCache:
    """
    Address -> coordinates, memoized on the delivery row against the address hash.

    A miss (no coordinates, or hash differs from the current text) costs one
    provider call. Provider failures leave the stored values untouched, so the
    next read tries again.
    """

    def __init__(self, db: AsyncSession, geocoder: GeocodingProvider, *, single_flight: SingleFlight | None = None):
        self.db = db
        self.geocoder = geocoder
        self.single_flight = single_flight or SingleFlight()

    async def resolve(self, delivery: Delivery, field: AddressField) -> LatLng | None:
        previous = stored_point(delivery, field)
        if is_geocode_fresh(delivery, field):
            return previous

        address = getattr(delivery, f"{field}_address")
        current_hash = hash_address(address)

        try:
            point = await self.single_flight.do(
                ("geocode", delivery.id, field, current_hash),
                lambda: self.geocoder.geocode(address),
            )
        except ExternalServiceDegraded as e:
            log.warning("geocode degraded delivery=%s field=%s: %s", delivery.id, field, e)
            return previous

        if point is None:
            log.info("geocode miss unresolved delivery=%s field=%s", delivery.id, field)
            return previous

        # coordinates and hash are written together
        setattr(delivery, f"{field}_lat", point.lat)
        setattr(delivery, f"{field}_lng", point.lng)
        setattr(delivery, f"{field}_address_hash", current_hash)
        delivery.geocoded_at = utcnow()
        await self.db.flush()
        return point

    async def resolve_both(self, delivery: Delivery) -> tuple[LatLng | None, LatLng | None]:
        pickup = await self.resolve(delivery, "pickup")
        dropoff = await self.resolve(delivery, "dropoff")
        return pickup, dropoff
