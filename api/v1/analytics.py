"""
Analytics endpoints
"""

from datetime import date, timedelta
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from models.database import utcnow
from schemas.requests import SyncRequest
from schemas.responses import DailySnapshotResponse, OptimalTimeResponse, QueuedJobResponse, SyncResponse
from services.analytics_sync import analytics_sync_engine
from services.platforms.connection_manager import connection_manager
from utils.auth import CurrentUser, get_current_user
from utils.exceptions import AccountNotFoundError, SyncError, handle_platform_error
from utils.task_queue import task_queue

router = APIRouter()


async def _site_account(account_id: UUID, current_user: CurrentUser):
    try:
        return await connection_manager.get_account(account_id, site_id=current_user.site_id)
    except AccountNotFoundError as e:
        raise handle_platform_error(e, "account")


@router.get("/accounts/{account_id}/daily", response_model=List[DailySnapshotResponse])
async def get_daily_snapshots(
    account_id: UUID,
    start: Optional[date] = Query(None, description="Defaults to 30 days ago"),
    end: Optional[date] = Query(None, description="Defaults to today"),
    current_user: CurrentUser = Depends(get_current_user),
):
    account = await _site_account(account_id, current_user)
    end = end or utcnow().date()
    start = start or end - timedelta(days=30)
    return await analytics_sync_engine.daily_snapshots(account.id, start, end)


@router.get("/accounts/{account_id}/optimal-times", response_model=List[OptimalTimeResponse])
async def get_optimal_times(
    account_id: UUID,
    limit: Optional[int] = Query(None, ge=1, le=168, description="Only the best N slots"),
    current_user: CurrentUser = Depends(get_current_user),
):
    account = await _site_account(account_id, current_user)
    if limit:
        return await analytics_sync_engine.best_times([account.id], limit)
    slots = await analytics_sync_engine.optimal_times(account.id)
    if not slots:
        slots = await analytics_sync_engine.calculate_optimal_times(account)
    return slots


@router.get("/optimal-times", response_model=List[OptimalTimeResponse])
async def get_best_times(
    limit: int = Query(5, ge=1, le=50),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Best slots across every account of the site"""
    accounts = await connection_manager.list_accounts(current_user.site_id)
    return await analytics_sync_engine.best_times([account.id for account in accounts], limit)


@router.post("/sync", response_model=SyncResponse)
async def sync_analytics(
    request: Optional[SyncRequest] = None,
    current_user: CurrentUser = Depends(get_current_user),
):
    """Sync the site's accounts now; failures are reported per account"""
    request = request or SyncRequest()
    now = utcnow()
    day = request.day or now.date()
    accounts = await connection_manager.list_accounts(current_user.site_id)
    if request.account_ids:
        wanted = set(request.account_ids)
        accounts = [account for account in accounts if account.id in wanted]

    response = SyncResponse(accounts_synced=0, accounts_failed=0)
    for account in accounts:
        try:
            await analytics_sync_engine.sync_account(account, day, now)
            await analytics_sync_engine.calculate_optimal_times(account, now)
            response.accounts_synced += 1
        except SyncError as e:
            response.accounts_failed += 1
            response.errors[str(account.id)] = e.message
    if request.include_post_metrics:
        response.posts_synced = await analytics_sync_engine.sync_post_metrics(now)
    return response


@router.post(
    "/accounts/{account_id}/sync",
    response_model=QueuedJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def queue_account_sync(account_id: UUID, current_user: CurrentUser = Depends(get_current_user)):
    """Sync one account in the worker"""
    account = await _site_account(account_id, current_user)
    return QueuedJobResponse(job_id=await task_queue.enqueue_account_sync(account.id))
