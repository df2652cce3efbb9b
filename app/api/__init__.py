from fastapi import APIRouter
from .health import router as health_router
from .admin import router as admin_router

router = APIRouter()

router.include_router(health_router, prefix="/health", tags=["health"])
router.include_router(admin_router, prefix="/realtime", tags=["realtime-admin"])
