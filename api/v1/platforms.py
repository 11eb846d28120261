"""
RESTful platform connection endpoints
"""

from typing import List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from schemas.requests import BlueskySessionRequest, ConnectRequest, MastodonRegisterRequest
from schemas.responses import AccountResponse, ConnectResponse, MastodonAppResponse, PlatformResponse
from services.oauth import oauth_coordinator
from services.platforms.registry import platform_registry
from utils.auth import CurrentUser, get_current_user
from utils.config import get_config
from utils.exceptions import (
    ExpiredStateError,
    InvalidStateError,
    SocialBridgeException,
    handle_platform_error,
)
from utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _dashboard_redirect(**params: str) -> RedirectResponse:
    url = f"{get_config().app_url.rstrip('/')}/social/accounts?{urlencode(params)}"
    return RedirectResponse(url, status_code=302)


@router.get("", response_model=List[PlatformResponse])
async def list_platforms(current_user: CurrentUser = Depends(get_current_user)):
    """List platforms whose credentials are configured"""
    return [
        PlatformResponse(
            platform=config.platform,
            display_name=config.display_name,
            auth_type=config.auth_type.value,
            scopes=config.scopes,
            constraints=config.constraints,
        )
        for config in platform_registry.list_configured()
    ]


@router.get("/oauth/callback")
async def oauth_callback(
    state: Optional[str] = Query(None),
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
):
    """Provider redirect target; always lands the user back on the dashboard"""
    if error or not code:
        platform = await oauth_coordinator.discard(state) if state else None
        logger.info(f"OAuth declined at provider for {platform or 'unknown platform'}: {error}")
        return _dashboard_redirect(error="access_denied")
    if not state:
        return _dashboard_redirect(error="invalid_state")

    try:
        account = await oauth_coordinator.complete(code, state)
    except InvalidStateError:
        return _dashboard_redirect(error="invalid_state")
    except ExpiredStateError:
        return _dashboard_redirect(error="expired_state")
    except Exception as e:
        logger.error(f"OAuth callback failed: {str(e)}")
        return _dashboard_redirect(error="exchange_failed")

    return _dashboard_redirect(connected=account.platform)


@router.post("/bluesky/session", response_model=AccountResponse)
async def connect_bluesky(
    request: BlueskySessionRequest,
    current_user: CurrentUser = Depends(get_current_user),
):
    """Connect Bluesky with a handle and app password"""
    try:
        return await oauth_coordinator.connect_by_password(
            site_id=current_user.site_id,
            user_id=current_user.user_id,
            identifier=request.identifier,
            app_password=request.app_password,
            tenant_id=current_user.tenant_id,
            service_url=request.service_url,
        )
    except SocialBridgeException as e:
        raise handle_platform_error(e, "bluesky")


@router.post("/mastodon/register", response_model=MastodonAppResponse)
async def register_mastodon_instance(
    request: MastodonRegisterRequest,
    current_user: CurrentUser = Depends(get_current_user),
):
    """Register SocialBridge with a Mastodon instance (cached per instance)"""
    try:
        app = await oauth_coordinator.register_instance(request.instance)
    except SocialBridgeException as e:
        raise handle_platform_error(e, "mastodon")
    return MastodonAppResponse(instance=app.instance, registered_at=app.created_at)


@router.post("/{platform}/connect", response_model=ConnectResponse)
async def connect_platform(
    platform: str,
    request: Optional[ConnectRequest] = None,
    current_user: CurrentUser = Depends(get_current_user),
):
    """Start the OAuth flow; the client redirects the user to auth_url"""
    request = request or ConnectRequest()
    try:
        start = await oauth_coordinator.initiate(
            platform,
            site_id=current_user.site_id,
            user_id=current_user.user_id,
            redirect_uri=request.redirect_uri,
            tenant_id=current_user.tenant_id,
            instance=request.instance,
        )
    except SocialBridgeException as e:
        raise handle_platform_error(e, platform)
    return ConnectResponse(auth_url=start.auth_url, state=start.state, platform=platform.lower())
