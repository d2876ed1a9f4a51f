from fastapi import APIRouter

from .endpoints import health, loyalty

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(loyalty.router)
