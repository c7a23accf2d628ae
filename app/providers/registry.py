from app.core.config import settings
from app.providers.base import GeocodingProvider, RoutingProvider
from app.providers.nominatim import NominatimGeocoder
from app.providers.osrm import OsrmRouter
from app.services.http_client import ProviderHttpClient
from app.services.single_flight import SingleFlight


def build_geocoder(client: ProviderHttpClient) -> GeocodingProvider:
    return NominatimGeocoder(client=client, url=settings.geocoder_url, user_agent=settings.geocoder_user_agent)


def build_router(client: ProviderHttpClient) -> RoutingProvider:
    return OsrmRouter(client=client, base_url=settings.router_url)


def build_http_client() -> ProviderHttpClient:
    return ProviderHttpClient(timeout_seconds=settings.provider_timeout_seconds)


# Process-wide instances for the API. Tests override the get_* dependencies.
_http_client: ProviderHttpClient | None = None
_single_flight = SingleFlight()


def _shared_client() -> ProviderHttpClient:
    global _http_client
    if _http_client is None:
        _http_client = build_http_client()
    return _http_client


async def close_providers() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


def get_geocoder() -> GeocodingProvider:
    return build_geocoder(_shared_client())


def get_router() -> RoutingProvider:
    return build_router(_shared_client())


def get_single_flight() -> SingleFlight:
    return _single_flight
