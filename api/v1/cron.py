"""
Externally triggered scheduler endpoints (shared-secret protected)
"""

from fastapi import APIRouter, Depends

from services.scheduler import SyncReport, TickReport, scheduler
from utils.auth import verify_cron_secret

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


@router.post("/tick", response_model=TickReport)
async def cron_tick():
    """Publish due scheduled posts and re-drive due retries"""
    return await scheduler.tick()


@router.post("/sync", response_model=SyncReport)
async def cron_sync():
    """Run the analytics sync cycle"""
    return await scheduler.sync_tick()
