from fastapi import APIRouter

from app.rolegate.routers.health import router as health_router
from app.rolegate.routers.permissions import router as permissions_router
from app.rolegate.routers.roles import router as roles_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(roles_router, prefix="/rolegate", tags=["roles"])
api_router.include_router(permissions_router, prefix="/rolegate", tags=["permissions"])
