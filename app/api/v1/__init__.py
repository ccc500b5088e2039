from fastapi import APIRouter
from app.api.v1.routes import (
    auth,
    engineers,
    location,
    visits,
)

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(engineers.router, prefix="/engineers", tags=["engineers"])
api_router.include_router(visits.router, prefix="/visits", tags=["visits"])
api_router.include_router(location.router, prefix="/location", tags=["location"])
