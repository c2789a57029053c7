from fastapi import APIRouter

from . import identify, sightings, subscription, users

router = APIRouter(prefix="/v1")
router.include_router(users.router)
router.include_router(identify.router)
router.include_router(subscription.router)
router.include_router(sightings.router)
