from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound, ValidationError
from app.models.base import as_utc, utcnow
from app.models.courier import Courier
from app.models.driver_location import DriverLocation


log = logging.getLogger(__name__)


def _coord(value: Any, field: str, limit: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError("lat and lng must be numbers", field=field)
    if not -limit <= value <= limit:
        raise ValidationError(f"{field} out of range", field=field)
    return float(value)


def _optional(value: Any, field: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(f"{field} must be a number", field=field)
    return float(value)


def location_age(loc: DriverLocation, now: datetime | None = None) -> timedelta:
    return (now or utcnow()) - as_utc(loc.updated_at)


def is_stale(loc: DriverLocation, threshold: timedelta, now: datetime | None = None) -> bool:
    # Staleness is never stored; it depends on who is asking and when
    return location_age(loc, now) >= threshold


class DriverLocationStore:
    """Latest-position store: one row per courier, last write wins, no history."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def push_location(
        self,
        courier_id: str,
        lat: Any,
        lng: Any,
        *,
        accuracy: Any = None,
        heading: Any = None,
        speed: Any = None,
    ) -> DriverLocation:
        values = {
            "lat": _coord(lat, "lat", 90.0),
            "lng": _coord(lng, "lng", 180.0),
            "accuracy": _optional(accuracy, "accuracy"),
            "heading": _optional(heading, "heading"),
            "speed": _optional(speed, "speed"),
        }

        exists = (await self.db.execute(select(Courier.id).where(Courier.id == courier_id))).scalar_one_or_none()
        if exists is None:
            raise NotFound("Courier not found")

        now = utcnow()

        # single-statement upsert keyed by courier; no read-then-write window
        insert = sqlite.insert if self.db.get_bind().dialect.name == "sqlite" else postgresql.insert
        stmt = (
            insert(DriverLocation)
            .values(courier_id=courier_id, updated_at=now, **values)
            .on_conflict_do_update(
                index_elements=[DriverLocation.courier_id],
                set_={**values, "updated_at": now},
            )
            .returning(DriverLocation)
            .execution_options(populate_existing=True)
        )
        loc = (await self.db.execute(stmt)).scalar_one()
        log.debug("driver_locations: courier=%s lat=%s lng=%s", courier_id, loc.lat, loc.lng)
        return loc

    async def get_location(self, courier_id: str) -> DriverLocation | None:
        stmt = select(DriverLocation).where(DriverLocation.courier_id == courier_id)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def list_locations(self) -> list[tuple[DriverLocation, Courier]]:
        stmt = (
            select(DriverLocation, Courier)
            .join(Courier, Courier.id == DriverLocation.courier_id)
            .order_by(DriverLocation.updated_at.desc())
        )
        return [(loc, courier) for loc, courier in (await self.db.execute(stmt)).all()]
