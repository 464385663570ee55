from fastapi import APIRouter

from app.api.routes.auth import router as auth_router
from app.api.routes.health import router as health_router
from app.api.routes.teams import router as teams_router
from app.api.routes.transcripts import router as transcripts_router

api_router = APIRouter()
v1_router = APIRouter(prefix="/v1")

api_router.include_router(health_router)

# Unversioned routes kept for existing clients.
api_router.include_router(auth_router)
api_router.include_router(teams_router)
api_router.include_router(transcripts_router)

v1_router.include_router(auth_router)
v1_router.include_router(teams_router)
v1_router.include_router(transcripts_router)
api_router.include_router(v1_router)
