from __future__ import annotations

import logging

from app.core.errors import ExternalServiceDegraded
from app.providers.base import LatLng
from app.services.http_client import ProviderHttpClient


log = logging.getLogger(__name__)


def _lon_lat(point: LatLng) -> str:
    # OSRM takes "lon,lat"
    return f"{point.lng},{point.lat}"


class OsrmRouter:
    """OSRM route service, driving profile, full GeoJSON overview geometry."""

    name = "osrm"

    def __init__(self, *, client: ProviderHttpClient, base_url: str):
        self._client = client
        self._base_url = base_url.rstrip("/")

    def route_url(self, pickup: LatLng, dropoff: LatLng) -> str:
        return f"{self._base_url}/route/v1/driving/{_lon_lat(pickup)};{_lon_lat(dropoff)}"

    async def route(self, pickup: LatLng, dropoff: LatLng) -> list[list[float]]:
        res = await self._client.get_json(
            url=self.route_url(pickup, dropoff),
            params={"overview": "full", "geometries": "geojson", "steps": "false"},
            headers={"Accept": "application/json"},
        )
        if not res.ok:
            raise ExternalServiceDegraded(self.name, res.error_message or "request failed")

        routes = res.detail.get("routes")
        if not isinstance(routes, list) or not routes or not isinstance(routes[0], dict):
            return []
        geometry = routes[0].get("geometry")
        coords = geometry.get("coordinates") if isinstance(geometry, dict) else None
        if not isinstance(coords, list):
            return []

        # GeoJSON is [lon, lat]; flip to [lat, lng]
        points: list[list[float]] = []
        for pair in coords:
            try:
                lon, lat = float(pair[0]), float(pair[1])
            except (IndexError, KeyError, TypeError, ValueError):
                # any bad vertex rejects the whole line
                log.warning("osrm: unusable coordinate %r", pair)
                raise ExternalServiceDegraded(self.name, "malformed route geometry")
            points.append([lat, lon])
        return points
