from fastapi import APIRouter

from trust_safety.api.routes.guard import router as guard_router
from trust_safety.api.routes.moderation import router as moderation_router
from trust_safety.api.routes.ops import router as ops_router
from trust_safety.api.routes.security import router as security_router

api_router = APIRouter()
api_router.include_router(guard_router, prefix="/guard", tags=["guard"])
api_router.include_router(moderation_router, prefix="/moderation", tags=["moderation"])
api_router.include_router(security_router, prefix="/security", tags=["security"])
api_router.include_router(ops_router, prefix="/ops", tags=["ops"])
