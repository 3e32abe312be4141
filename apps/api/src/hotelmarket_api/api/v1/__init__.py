from fastapi import APIRouter

from .endpoints import bookings, health, loyalty, observability

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(loyalty.router)
router.include_router(bookings.router)
router.include_router(observability.router)
