"""Dashboard API routes.

All routes are prefixed with /api for clear API namespace separation.
"""

from fastapi import APIRouter

from tinker_studio.dashboard.routes.catalog import router as catalog_router
from tinker_studio.dashboard.routes.credentials import router as credentials_router
from tinker_studio.dashboard.routes.stream import router as stream_router
from tinker_studio.dashboard.routes.training import router as training_router

router = APIRouter()
router.include_router(training_router)
router.include_router(stream_router)
router.include_router(credentials_router)
router.include_router(catalog_router)

__all__ = ["router"]
