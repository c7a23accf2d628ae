import logging

from app.core.config import settings
from worker.celery_app import celery


log = logging.getLogger(__name__)

REFRESH_TASK = "worker.tasks.refresh_delivery_geometry"


def schedule_geometry_refresh(delivery_id: str) -> bool:
    """
    Ask the worker to warm the geocode/route caches for a delivery.

    Call after commit so the worker reads the new address/assignment.
    Best effort: a broker failure is logged and the read path repairs instead.
    """
    if not settings.geometry_refresh_enabled:
        return False
    try:
        celery.send_task(REFRESH_TASK, args=[delivery_id], queue="geometry")
    except Exception as e:
        log.warning("geometry refresh enqueue failed delivery=%s: %s: %s", delivery_id, type(e).__name__, e)
        return False
    return True
