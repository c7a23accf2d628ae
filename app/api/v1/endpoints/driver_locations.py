from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.db import get_db
from app.models.base import utcnow
from app.schemas.delivery import CourierLocationList, CourierLocationOut
from app.services.auth import Actor, require_dispatcher
from app.services.driver_locations import DriverLocationStore, is_stale, location_age

router = APIRouter()


@router.get("/driver-locations", response_model=CourierLocationList)
async def list_driver_locations(
    actor: Actor = Depends(require_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> CourierLocationList:
    threshold = timedelta(minutes=settings.driver_location_stale_minutes)
    now = utcnow()
    rows = await DriverLocationStore(db).list_locations()
    return CourierLocationList(
        stale_after_minutes=settings.driver_location_stale_minutes,
        items=[
            CourierLocationOut(
                courier_id=loc.courier_id,
                courier_name=courier.name,
                lat=loc.lat,
                lng=loc.lng,
                accuracy=loc.accuracy,
                heading=loc.heading,
                speed=loc.speed,
                updated_at=loc.updated_at,
                age_seconds=max(0, int(location_age(loc, now).total_seconds())),
                is_stale=is_stale(loc, threshold, now),
            )
            for loc, courier in rows
        ],
    )
