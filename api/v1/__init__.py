"""
API v1 module initialization
"""

from fastapi import APIRouter
from .platforms import router as platforms_router
from .accounts import router as accounts_router
from .posts import router as posts_router
from .analytics import router as analytics_router
from .cron import router as cron_router

# Create v1 API router
v1_router = APIRouter(prefix="/v1")

# Include all sub-routers
v1_router.include_router(platforms_router, prefix="/platforms", tags=["Platforms"])
v1_router.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
v1_router.include_router(posts_router, prefix="/posts", tags=["Posts"])
v1_router.include_router(analytics_router, prefix="/analytics", tags=["Analytics"])
v1_router.include_router(cron_router, prefix="/cron", tags=["Cron"])
