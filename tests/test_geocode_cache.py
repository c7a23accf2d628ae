import asyncio

import pytest

from app.providers.base import LatLng
from app.services.deliveries import create_delivery, update_addresses
from app.services.geo_hashes import hash_address
from app.services.geocode_cache import GeocodeCache, is_geocode_fresh
from app.services.single_flight import SingleFlight

from tests.stubs import DROPOFF_ADDRESS, DROPOFF_POINT, PICKUP_ADDRESS, PICKUP_POINT, StubGeocoder


async def _delivery(db, pickup=PICKUP_ADDRESS, dropoff=DROPOFF_ADDRESS):
    d = await create_delivery(db=db, customer_name="Geo Test", pickup_address=pickup, dropoff_address=dropoff)
    await db.commit()
    return d


def test_address_hash_ignores_surrounding_whitespace():
    assert hash_address("  1 Market St ") == hash_address("1 Market St")
    assert hash_address("1 Market St") != hash_address("2 Market St")


@pytest.mark.asyncio
async def test_hit_after_first_resolve(db_session, geocoder):
    d = await _delivery(db_session)
    cache = GeocodeCache(db_session, geocoder)

    assert await cache.resolve_both(d) == (PICKUP_POINT, DROPOFF_POINT)
    assert geocoder.calls == [PICKUP_ADDRESS, DROPOFF_ADDRESS]
    assert d.pickup_address_hash == hash_address(PICKUP_ADDRESS)
    assert d.geocoded_at is not None

    assert await cache.resolve_both(d) == (PICKUP_POINT, DROPOFF_POINT)
    assert len(geocoder.calls) == 2


@pytest.mark.asyncio
async def test_address_edit_forces_one_new_lookup(db_session, geocoder):
    moved = "7 New Street, Shelbyville"
    geocoder.table[moved] = LatLng(lat=41.0, lng=-73.5)
    d = await _delivery(db_session)
    cache = GeocodeCache(db_session, geocoder)
    await cache.resolve_both(d)

    d, changed = await update_addresses(db=db_session, delivery_id=d.id, pickup_address=moved)
    assert changed
    assert not is_geocode_fresh(d, "pickup")
    assert is_geocode_fresh(d, "dropoff")

    assert await cache.resolve(d, "pickup") == LatLng(lat=41.0, lng=-73.5)
    assert geocoder.calls[-1] == moved
    calls = len(geocoder.calls)

    await cache.resolve_both(d)
    assert len(geocoder.calls) == calls


@pytest.mark.asyncio
async def test_provider_failure_keeps_previous_values(db_session):
    geocoder = StubGeocoder({PICKUP_ADDRESS: PICKUP_POINT}, fail={"bad address"})
    d = await _delivery(db_session, dropoff="bad address")
    cache = GeocodeCache(db_session, geocoder)

    pickup, dropoff = await cache.resolve_both(d)
    assert pickup == PICKUP_POINT
    assert dropoff is None
    assert d.dropoff_lat is None and d.dropoff_address_hash is None

    # nothing was cached for the failed field, so the next read asks again
    await cache.resolve(d, "dropoff")
    assert geocoder.calls.count("bad address") == 2


@pytest.mark.asyncio
async def test_failure_after_edit_returns_last_known_point(db_session, geocoder):
    d = await _delivery(db_session)
    cache = GeocodeCache(db_session, geocoder)
    await cache.resolve_both(d)

    geocoder.fail.add("Nowhere 1")
    d, _ = await update_addresses(db=db_session, delivery_id=d.id, dropoff_address="Nowhere 1")

    assert await cache.resolve(d, "dropoff") == DROPOFF_POINT
    assert d.dropoff_address_hash == hash_address(DROPOFF_ADDRESS)


@pytest.mark.asyncio
async def test_no_candidates_leaves_field_unresolved(db_session):
    geocoder = StubGeocoder({})
    d = await _delivery(db_session)

    assert await GeocodeCache(db_session, geocoder).resolve(d, "pickup") is None
    assert d.pickup_lat is None


@pytest.mark.asyncio
async def test_concurrent_repairs_share_one_lookup(db_session):
    release = asyncio.Event()

    class SlowGeocoder(StubGeocoder):
        async def geocode(self, query):
            self.calls.append(query)
            await release.wait()
            return self.table.get(query)

    geocoder = SlowGeocoder({PICKUP_ADDRESS: PICKUP_POINT})
    flight = SingleFlight()
    d = await _delivery(db_session)
    cache = GeocodeCache(db_session, geocoder, single_flight=flight)

    first = asyncio.create_task(flight.do(("geocode", d.id, "pickup", hash_address(PICKUP_ADDRESS)),
                                          lambda: geocoder.geocode(PICKUP_ADDRESS)))
    await asyncio.sleep(0)
    second = asyncio.create_task(cache.resolve(d, "pickup"))
    await asyncio.sleep(0)
    release.set()

    assert await first == PICKUP_POINT
    assert await second == PICKUP_POINT
    assert geocoder.calls == [PICKUP_ADDRESS]
