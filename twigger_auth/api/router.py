from fastapi import APIRouter

from twigger_auth.api.auth import router as auth_router
from twigger_auth.api.health import router as health_router

api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router)
