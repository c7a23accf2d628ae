from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.core.errors import NotFound, ValidationError
from app.models.base import utcnow
from app.models.driver_location import DriverLocation
from app.services.driver_locations import DriverLocationStore, is_stale


@pytest.mark.asyncio
async def test_push_overwrites_single_row(db_session, seed_actors):
    courier_id = seed_actors["courier_id"]
    store = DriverLocationStore(db_session)

    await store.push_location(courier_id, 40.71, -74.0, accuracy=12.5)
    loc = await store.push_location(courier_id, 40.72, -73.99, heading=90, speed=8.3)
    await db_session.commit()

    assert (loc.lat, loc.lng) == (40.72, -73.99)
    # last write wins for every field, including the optional ones
    assert loc.accuracy is None
    assert loc.heading == 90.0 and loc.speed == 8.3

    rows = (await db_session.execute(select(func.count()).select_from(DriverLocation))).scalar_one()
    assert rows == 1

    current = await store.get_location(courier_id)
    assert (current.lat, current.lng) == (40.72, -73.99)


@pytest.mark.asyncio
async def test_absent_location_is_none(db_session, seed_actors):
    assert await DriverLocationStore(db_session).get_location(seed_actors["courier_id"]) is None


@pytest.mark.asyncio
async def test_push_validation(db_session, seed_actors):
    store = DriverLocationStore(db_session)
    courier_id = seed_actors["courier_id"]

    with pytest.raises(ValidationError):
        await store.push_location(courier_id, 91, 0)
    with pytest.raises(ValidationError):
        await store.push_location(courier_id, 0, -180.5)
    with pytest.raises(ValidationError):
        await store.push_location(courier_id, "north", 0)
    with pytest.raises(ValidationError):
        await store.push_location(courier_id, float("nan"), 0)
    with pytest.raises(NotFound):
        await store.push_location("cou_missing", 1, 1)


@pytest.mark.asyncio
async def test_list_includes_courier(db_session, seed_second_courier):
    store = DriverLocationStore(db_session)
    await store.push_location(seed_second_courier["courier_id"], 1.0, 1.0)
    await store.push_location(seed_second_courier["courier2_id"], 2.0, 2.0)

    rows = await store.list_locations()
    assert {c.name for _, c in rows} == {"Courier One", "Courier Two"}


def test_staleness_is_computed_at_read_time():
    now = utcnow()
    threshold = timedelta(minutes=10)
    fresh = DriverLocation(courier_id="c1", lat=0, lng=0, updated_at=now - timedelta(minutes=9, seconds=59))
    old = DriverLocation(courier_id="c2", lat=0, lng=0, updated_at=(now - timedelta(minutes=10)).replace(tzinfo=None))

    assert not is_stale(fresh, threshold, now)
    assert is_stale(old, threshold, now)
