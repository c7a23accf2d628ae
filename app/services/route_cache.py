from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ExternalServiceDegraded
from app.models.base import utcnow
from app.models.delivery import Delivery
from app.providers.base import LatLng, RoutingProvider
from app.services.geo_hashes import route_cache_key
from app.services.single_flight import SingleFlight


log = logging.getLogger(__name__)

MIN_ROUTE_POINTS = 2


def _usable(points: Any) -> bool:
    return isinstance(points, list) and len(points) >= MIN_ROUTE_POINTS


def straight_line(pickup: LatLng, dropoff: LatLng) -> list[list[float]]:
    return [pickup.as_pair(), dropoff.as_pair()]


class RouteCache:
    """
    (pickup, dropoff) -> polyline, memoized on the delivery row against a key
    derived from the four coordinate values.

    When the provider fails the caller gets a straight pickup->dropoff line.
    That fallback is never stored, so the next read asks the provider again.
    """

    def __init__(self, db: AsyncSession, router: RoutingProvider, *, single_flight: SingleFlight | None = None):
        self.db = db
        self.router = router
        self.single_flight = single_flight or SingleFlight()

    async def resolve(
        self,
        delivery: Delivery,
        pickup: LatLng | None,
        dropoff: LatLng | None,
    ) -> list[list[float]] | None:
        if pickup is None or dropoff is None:
            return None

        key = route_cache_key(pickup, dropoff)
        cached = delivery.route_points
        if delivery.route_cache_key == key and _usable(cached):
            return cached

        try:
            road = await self.single_flight.do(
                ("route", delivery.id, key),
                lambda: self.router.route(pickup, dropoff),
            )
        except ExternalServiceDegraded as e:
            log.warning("route degraded delivery=%s: %s", delivery.id, e)
            road = None

        if not _usable(road):
            return straight_line(pickup, dropoff)

        delivery.route_points = road
        delivery.route_cache_key = key
        delivery.route_cached_at = utcnow()
        await self.db.flush()
        return road
