"""API routes."""

from fastapi import APIRouter

from cueclub.api.routes import bills, promotions, sessions, settings

api_router = APIRouter()

api_router.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
api_router.include_router(bills.router, prefix="/bills", tags=["bills"])
api_router.include_router(promotions.router, prefix="/promotions", tags=["promotions"])
api_router.include_router(settings.router, prefix="/settings", tags=["settings"])
