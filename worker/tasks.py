import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from worker.celery_app import celery
from app.core.config import settings
import app.models  # noqa: F401  # ensures Models are registered
from app.models.delivery import Delivery
from app.providers.registry import build_geocoder, build_http_client, build_router
from app.services.geocode_cache import GeocodeCache
from app.services.route_cache import RouteCache


log = logging.getLogger(__name__)


def refresh_query(delivery_id: str):
    # no FOR UPDATE: state machine writes must not wait on provider calls
    return select(Delivery).where(Delivery.id == delivery_id)


async def _refresh_delivery_geometry(delivery_id: str) -> dict:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    http = build_http_client()

    try:
        async with Session() as db:
            d = (await db.execute(refresh_query(delivery_id))).scalar_one_or_none()
            if not d:
                # deleted between enqueue and run
                return {"delivery_id": delivery_id, "found": False}

            geocodes = GeocodeCache(db, build_geocoder(http))
            routes = RouteCache(db, build_router(http))

            pickup, dropoff = await geocodes.resolve_both(d)
            route = await routes.resolve(d, pickup, dropoff)
            await db.commit()

            log.info(
                "refresh_delivery_geometry: delivery=%s pickup=%s dropoff=%s route_cached=%s",
                delivery_id, pickup is not None, dropoff is not None, d.route_cache_key is not None,
            )
            return {
                "delivery_id": delivery_id,
                "found": True,
                "pickup": pickup is not None,
                "dropoff": dropoff is not None,
                "route_points": len(route) if route else 0,
            }
    finally:
        await http.aclose()
        await engine.dispose()


@celery.task(name="worker.tasks.refresh_delivery_geometry", bind=True, max_retries=0)
def refresh_delivery_geometry(self, delivery_id: str) -> dict:
    return asyncio.run(_refresh_delivery_geometry(delivery_id))
