from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.providers.base import GeocodingProvider, RoutingProvider
from app.providers.registry import get_geocoder, get_router, get_single_flight
from app.schemas.common import ErrorResponse
from app.schemas.delivery import DriverLocationOut, DriverOut, PointOut, TrackingView, delivery_out
from app.services.auth import Actor, get_actor
from app.services.geocode_cache import GeocodeCache
from app.services.route_cache import RouteCache
from app.services.single_flight import SingleFlight
from app.services.tracking import TrackingAggregator

router = APIRouter()


def get_tracking(
    db: AsyncSession = Depends(get_db),
    geocoder: GeocodingProvider = Depends(get_geocoder),
    routing: RoutingProvider = Depends(get_router),
    single_flight: SingleFlight = Depends(get_single_flight),
) -> TrackingAggregator:
    return TrackingAggregator(
        db,
        GeocodeCache(db, geocoder, single_flight=single_flight),
        RouteCache(db, routing, single_flight=single_flight),
    )


@router.get("/track", response_model=TrackingView, responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}})
async def track(
    ref: str = Query(default=""),
    actor: Actor = Depends(get_actor),
    tracking: TrackingAggregator = Depends(get_tracking),
) -> TrackingView:
    snap = await tracking.track(ref)
    # persist whatever cache repair happened during the read
    await tracking.db.commit()

    loc = snap.courier_location
    return TrackingView(
        delivery=delivery_out(snap.delivery),
        driver=DriverOut(name=snap.courier_name) if snap.courier is not None else None,
        driver_location=DriverLocationOut(lat=loc.lat, lng=loc.lng, updated_at=loc.updated_at) if loc else None,
        pickup=PointOut(lat=snap.pickup.lat, lng=snap.pickup.lng) if snap.pickup else None,
        dropoff=PointOut(lat=snap.dropoff.lat, lng=snap.dropoff.lng) if snap.dropoff else None,
        route=snap.route,
    )
