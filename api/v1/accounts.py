"""
Connected account endpoints
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from models.database import utcnow
from schemas.responses import AccountResponse
from services.credentials import credential_manager
from services.health import account_health, effective_status
from services.platforms.connection_manager import connection_manager
from utils.auth import CurrentUser, get_current_user
from utils.exceptions import AccountNotFoundError, handle_platform_error

router = APIRouter()


def to_response(account) -> AccountResponse:
    """Health and rate-limit status are computed at read time"""
    now = utcnow()
    response = AccountResponse.model_validate(account)
    response.health_score = account_health(account, now)
    response.status = effective_status(account, now)
    return response


@router.get("", response_model=List[AccountResponse])
async def list_accounts(
    platform: Optional[str] = Query(None),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List connected accounts of the caller's site"""
    accounts = await connection_manager.list_accounts(current_user.site_id, platform)
    return [to_response(account) for account in accounts]


@router.get("/{account_id}", response_model=AccountResponse)
async def get_account(account_id: UUID, current_user: CurrentUser = Depends(get_current_user)):
    try:
        account = await connection_manager.get_account(account_id, site_id=current_user.site_id)
    except AccountNotFoundError as e:
        raise handle_platform_error(e, "account")
    return to_response(account)


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect_account(account_id: UUID, current_user: CurrentUser = Depends(get_current_user)):
    """Revoke where the platform allows it, then delete the account"""
    try:
        account = await connection_manager.get_account(account_id, site_id=current_user.site_id)
    except AccountNotFoundError as e:
        raise handle_platform_error(e, "account")
    await credential_manager.disconnect(account)
