from fastapi import APIRouter

from app.api.admin.agents import router as agents_router
from app.api.admin.support import router as support_router

router = APIRouter()
router.include_router(agents_router)
router.include_router(support_router)
