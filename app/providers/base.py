from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float

    def as_pair(self) -> list[float]:
        return [self.lat, self.lng]


@runtime_checkable
class GeocodingProvider(Protocol):
    """
    Resolves free text to coordinates.

    Returns None when the provider answered but found nothing usable.
    Raises ExternalServiceDegraded on transport errors or non-2xx responses.
    """

    name: str

    async def geocode(self, query: str) -> LatLng | None:
        ...


@runtime_checkable
class RoutingProvider(Protocol):
    """
    Driving route between two points, returned in (lat, lng) order.

    Returns the provider's polyline as-is (possibly shorter than two points);
    the route cache decides what is usable.
    Raises ExternalServiceDegraded on transport errors or non-2xx responses.
    """

    name: str

    async def route(self, pickup: LatLng, dropoff: LatLng) -> list[list[float]]:
        ...
