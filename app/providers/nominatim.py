from __future__ import annotations

import logging

from app.core.errors import ExternalServiceDegraded
from app.providers.base import LatLng
from app.services.http_client import ProviderHttpClient


log = logging.getLogger(__name__)


class NominatimGeocoder:
    """
    OpenStreetMap Nominatim search API.

    Nominatim's usage policy requires an identifying User-Agent and no tight
    loops; callers go through the geocode cache, which asks at most once per read.
    """

    name = "nominatim"

    def __init__(self, *, client: ProviderHttpClient, url: str, user_agent: str):
        self._client = client
        self._url = url
        self._user_agent = user_agent

    async def geocode(self, query: str) -> LatLng | None:
        q = (query or "").strip()
        if not q:
            return None

        res = await self._client.get_json(
            url=self._url,
            params={"q": q, "format": "json", "limit": "1"},
            headers={"User-Agent": self._user_agent, "Accept": "application/json"},
        )
        if not res.ok:
            raise ExternalServiceDegraded(self.name, res.error_message or "request failed")

        candidates = res.detail.get("data")
        if not isinstance(candidates, list) or not candidates:
            return None

        # only the first candidate is used
        first = candidates[0]
        try:
            return LatLng(lat=float(first["lat"]), lng=float(first["lon"]))
        except (KeyError, TypeError, ValueError):
            log.warning("nominatim: unusable candidate for %r: %s", q, first)
            return None
