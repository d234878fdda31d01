"""API router initialization."""

# Hey future me, this aggregates the sub-routers and gets mounted under /api in main.py,
# so "/auth" here becomes /api/auth/... The health router is NOT part of it, probes live
# at /health/* without the /api prefix (see main.py).

from fastapi import APIRouter

from earshot.api.routers import auth, health, listening, search, social

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_router.include_router(listening.router, prefix="/listening", tags=["Listening"])
api_router.include_router(social.router, prefix="/social", tags=["Social"])
api_router.include_router(search.router, prefix="/search", tags=["Search"])

health_router = health.router

__all__ = ["api_router", "health_router"]
