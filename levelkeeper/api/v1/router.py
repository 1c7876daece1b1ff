from fastapi import APIRouter

from levelkeeper.api.v1.endpoints import health, progression, saves

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(progression.router)
api_router.include_router(saves.router)
