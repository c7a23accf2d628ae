from fastapi import APIRouter

from app.api.v1.endpoints.health import router as health_router
from app.api.v1.endpoints.deliveries import router as deliveries_router
from app.api.v1.endpoints.driver import router as driver_router
from app.api.v1.endpoints.tracking import router as tracking_router
from app.api.v1.endpoints.driver_locations import router as driver_locations_router


router = APIRouter(prefix="/v1")
router.include_router(health_router, tags=["health"])
router.include_router(deliveries_router, tags=["deliveries"])
router.include_router(driver_router, tags=["driver"])
router.include_router(tracking_router, tags=["tracking"])
router.include_router(driver_locations_router, tags=["driver-locations"])
