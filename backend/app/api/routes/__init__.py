from fastapi import APIRouter

from app.api.routes.health import router as health_router
from app.api.routes.lowcard import router as lowcard_router
from app.api.routes.messages import router as messages_router
from app.api.routes.rooms import router as rooms_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(rooms_router, prefix="/rooms", tags=["rooms"])
router.include_router(messages_router, prefix="/messages", tags=["messages"])
router.include_router(lowcard_router, prefix="/lowcard", tags=["lowcard"])
